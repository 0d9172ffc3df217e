# -*- coding: utf-8 -*-
"""JavaScript injected into the controlled page.

The script only forwards what the Python agent needs to see: media events
of tracked videos, DOM additions/removals and intercepted clicks. All
decisions are made on the Python side. Messages are JSON strings passed to
a ``Runtime.addBinding`` binding.
"""

# Name of the CDP binding the page script reports through
BINDING_NAME = "playbackControlNotify"

# Isolated world the page script runs in, one per frame
WORLD_NAME = "playback-control"

# Media events forwarded for tracked videos
MEDIA_EVENTS = (
    "loadedmetadata",
    "fullscreenchange",
    "timeupdate",
    "canplay",
    "ended",
    "pause",
    "play",
    "playing",
    "seeking",
    "seeked",
    "volumechange",
)

PAGE_SCRIPT = """
(function() {
    // Prevent re-initialization
    if (window.PlaybackControl && window.PlaybackControl.initialized) {
        return { success: true, reused: true };
    }

    const notify = (message) => {
        if (typeof window.__BINDING__ === 'function') {
            window.__BINDING__(JSON.stringify(message));
        }
    };

    window.PlaybackControl = {
        initialized: true,
        counter: 0,
        observer: null,
        clickListener: null,
        MEDIA_EVENTS: __MEDIA_EVENTS__,

        keyOf(element) {
            if (element.__playbackControlKey === undefined) {
                element.__playbackControlKey = ++this.counter;
            }
            return { key: element.__playbackControlKey, tag: element.tagName };
        },

        track(video) {
            if (video.__playbackControlTracked) {
                return false;
            }
            video.__playbackControlTracked = true;
            const key = this.keyOf(video).key;
            for (const type of this.MEDIA_EVENTS) {
                video.addEventListener(type, () => notify({ kind: 'event', key: key, type: type }), true);
            }
            return true;
        },

        armClick() {
            if (this.clickListener) {
                return false;
            }
            // Runs before the page's own handlers and swallows the click
            this.clickListener = (e) => {
                e.preventDefault();
                e.stopPropagation();
                this.disarmClick();
                notify({ kind: 'click', trusted: e.isTrusted });
            };
            document.addEventListener('click', this.clickListener, true);
            return true;
        },

        disarmClick() {
            if (!this.clickListener) {
                return false;
            }
            document.removeEventListener('click', this.clickListener, true);
            this.clickListener = null;
            return true;
        },

        observe() {
            const root = document.documentElement;
            if (!root || this.observer) {
                return;
            }
            this.observer = new MutationObserver((mutations) => {
                let added = 0, removed = 0;
                for (const mutation of mutations) {
                    for (const node of mutation.addedNodes) {
                        if (node.nodeType === Node.ELEMENT_NODE) added++;
                    }
                    for (const node of mutation.removedNodes) {
                        if (node.nodeType === Node.ELEMENT_NODE) removed++;
                    }
                }
                if (added || removed) {
                    notify({ kind: 'mutation', added: added, removed: removed });
                }
            });
            this.observer.observe(root, { childList: true, subtree: true });
        }
    };

    if (document.documentElement) {
        window.PlaybackControl.observe();
    } else {
        document.addEventListener('DOMContentLoaded', () => window.PlaybackControl.observe(), true);
    }
    return { success: true };
})();
"""


def get_page_script() -> str:
    """Get the page script for injection.

    Returns:
        JavaScript code string to inject into the page.
    """
    media_events = "[" + ", ".join(f"'{name}'" for name in MEDIA_EVENTS) + "]"
    return (
        PAGE_SCRIPT
        .replace("__BINDING__", BINDING_NAME)
        .replace("__MEDIA_EVENTS__", media_events)
    )


def get_arm_click_call() -> str:
    """Get JavaScript code to intercept the next click.

    Returns:
        JavaScript code string.
    """
    return "window.PlaybackControl ? window.PlaybackControl.armClick() : false"


def get_disarm_click_call() -> str:
    """Get JavaScript code to stop intercepting clicks.

    Returns:
        JavaScript code string.
    """
    return "window.PlaybackControl ? window.PlaybackControl.disarmClick() : false"
