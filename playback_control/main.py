# -*- coding: utf-8 -*-
"""Main entry point and orchestration for Playback Control."""

import argparse
import logging
import signal
import sys
import threading
from typing import Optional

import uvicorn

from .api import create_api
from .browser import BrowserManager
from .cdp import CDPPage
from .config import config
from .runner import AgentRunner, GestureResponder


class PlaybackControl:
    """Main application controller."""

    def __init__(self):
        """Initialize the application."""
        self.browser = BrowserManager(config)
        self.runner = AgentRunner(self._build_window, config)
        self.responder = GestureResponder(self.runner, self.browser.mouse_click, self.browser.viewport_center)
        self.api = create_api(self.runner, self.browser)
        self._shutdown_event = threading.Event()
        self._api_thread: Optional[threading.Thread] = None
        self._monitor_thread: Optional[threading.Thread] = None

    def start(self) -> None:
        """Start the application."""
        # Setup signal handlers
        signal.signal(signal.SIGINT, self._signal_handler)
        signal.signal(signal.SIGTERM, self._signal_handler)

        print("Playback Control starting...")

        # Launch browser
        print("Launching browser...")
        self.browser.launch()

        # Connect to browser
        print("Connecting to browser via CDP...")
        session = self.browser.connect()
        print("Connected to browser")

        if config.page_url and config.page_url != "about:blank":
            self.browser.request("Page.enable")
            self.browser.navigate(config.page_url)

        # Start the agent loop; CDP events are handled on it from now on
        print("Starting playback agent...")
        session.dispatch = self.runner.post
        agent = self.runner.start()
        self.responder.attach()
        found = self.runner.call(agent.activate, config.video_selector).result(10.0)
        if found:
            print(f"Tracking video matching '{config.video_selector}'")
        else:
            print(f"Waiting for a video matching '{config.video_selector}'")

        # Start API server in background thread
        print(f"Starting API server on {config.api_host}:{config.api_port}...")
        self._start_api_server()

        # Start browser monitor to detect if browser is closed
        self._start_browser_monitor()

        print("\nPlayback Control is ready!")
        print(f"API available at: http://{config.api_host}:{config.api_port}")
        print("Press Ctrl+C to exit\n")

        # Wait for shutdown
        self._shutdown_event.wait()

    def _build_window(self, scheduler):
        """Attach to the frame hosting the player (runs on the agent loop)."""
        page = CDPPage(self.browser.session, scheduler)
        window = page.install()
        if config.frame_url:
            frame = page.find_window(config.frame_url)
            if frame is None:
                print(f"No frame matching '{config.frame_url}', using the top frame")
            else:
                print(f"Running in frame {frame.url}")
                window = frame
        return window

    def _start_api_server(self) -> None:
        """Start the API server in a background thread."""
        uvicorn_config = uvicorn.Config(
            self.api,
            host=config.api_host,
            port=config.api_port,
            log_level="warning",
        )
        server = uvicorn.Server(uvicorn_config)

        self._api_thread = threading.Thread(target=server.run, daemon=True)
        self._api_thread.start()

    def _start_browser_monitor(self) -> None:
        """Start the browser monitoring thread."""
        self._monitor_thread = threading.Thread(target=self._monitor_browser, daemon=True)
        self._monitor_thread.start()

    def _monitor_browser(self) -> None:
        """Wait for browser process to exit and trigger shutdown."""
        self.browser.wait_for_exit()
        if not self._shutdown_event.is_set():
            print("\nBrowser closed - shutting down application...")
            self.stop()

    def _signal_handler(self, signum, frame) -> None:
        """Handle shutdown signals."""
        print("\nShutting down...")
        self.stop()

    def stop(self) -> None:
        """Stop the application and cleanup."""
        if self._shutdown_event.is_set():
            return
        self._shutdown_event.set()

        try:
            self.runner.stop()
        except Exception as e:
            print(f"Error stopping agent: {e}")

        try:
            print("Closing browser...")
            self.browser.close()
        except Exception as e:
            print(f"Error closing browser: {e}")

        print("Goodbye!")


def parse_args(argv=None):
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="Playback Control - monitor and remote-control video playback in a browser"
    )

    parser.add_argument(
        "--url",
        type=str,
        help="Page to open after the browser starts"
    )

    parser.add_argument(
        "--selector",
        type=str,
        default="video",
        help="CSS selector of the video to track (default: video)"
    )

    parser.add_argument(
        "--frame",
        type=str,
        help="Part of the URL of the frame hosting the player (default: top frame)"
    )

    parser.add_argument(
        "--port",
        type=int,
        default=8080,
        help="API server port (default: 8080)"
    )

    parser.add_argument(
        "--host",
        type=str,
        default="0.0.0.0",
        help="API server host (default: 0.0.0.0)"
    )

    parser.add_argument(
        "--cdp-port",
        type=int,
        default=9222,
        help="Browser remote debugging port (default: 9222)"
    )

    parser.add_argument(
        "--command-timeout",
        type=float,
        default=30.0,
        help="Seconds the API waits for a gated command (default: 30)"
    )

    parser.add_argument(
        "--no-kiosk",
        action="store_true",
        help="Disable kiosk mode (useful for debugging)"
    )

    parser.add_argument(
        "--browser",
        type=str,
        help="Path to browser executable"
    )

    parser.add_argument(
        "--log-level",
        type=str,
        default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: WARNING)"
    )

    return parser.parse_args(argv)


def apply_args(args) -> None:
    """Apply CLI arguments to the global config."""
    config.api_port = args.port
    config.api_host = args.host
    config.cdp_port = args.cdp_port
    config.command_timeout = args.command_timeout
    config.kiosk_mode = not args.no_kiosk
    config.video_selector = args.selector

    if args.url:
        config.page_url = args.url
    if args.frame:
        config.frame_url = args.frame
    if args.browser:
        config.browser_path = args.browser


def run():
    """Main entry point."""
    args = parse_args()
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    apply_args(args)

    # Create and start application
    app = PlaybackControl()

    try:
        app.start()
    except KeyboardInterrupt:
        pass
    except Exception as e:
        print(f"Error: {e}")
        sys.exit(1)
    finally:
        app.stop()


if __name__ == "__main__":
    run()
