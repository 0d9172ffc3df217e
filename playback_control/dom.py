# -*- coding: utf-8 -*-
"""In-memory page surface.

A small page model with the pieces the playback agent relies on: nested
windows with origins, documents, elements, ``<iframe>`` and ``<video>``
elements, capture/bubble event dispatch and mutation notifications. It is
the surface the agent is tested against and the reference for what the CDP
surface in ``playback_control.cdp`` has to provide.

Only compound selectors are supported (``video``, ``#id``, ``.cls``,
``tag[attr="value"]`` and comma separated lists of those).
"""

import logging
import math
import re
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple

from .errors import OriginBlocked

logger = logging.getLogger(__name__)

# HTMLMediaElement.readyState values
HAVE_NOTHING = 0
HAVE_METADATA = 1
HAVE_CURRENT_DATA = 2
HAVE_FUTURE_DATA = 3
HAVE_ENOUGH_DATA = 4


@dataclass
class Rect:
    """Bounding box in the coordinate space of one frame's viewport."""
    x: float = 0.0
    y: float = 0.0
    width: float = 0.0
    height: float = 0.0

    @classmethod
    def nan(cls) -> "Rect":
        return cls(math.nan, math.nan, math.nan, math.nan)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Rect":
        return cls(
            float(data.get("x", math.nan)),
            float(data.get("y", math.nan)),
            float(data.get("width", math.nan)),
            float(data.get("height", math.nan)),
        )

    def to_dict(self) -> Dict[str, float]:
        return {"x": self.x, "y": self.y, "width": self.width, "height": self.height}


class Event:
    """A dispatched DOM event."""

    CAPTURING_PHASE = 1
    AT_TARGET = 2
    BUBBLING_PHASE = 3

    def __init__(self, type: str, bubbles: bool = True, is_trusted: bool = False,
                 data: Any = None, source: Any = None):
        self.type = type
        self.bubbles = bubbles
        self.is_trusted = is_trusted
        self.data = data
        self.source = source
        self.target = None
        self.current_target = None
        self.event_phase = 0
        self.default_prevented = False
        self.propagation_stopped = False
        self.immediate_propagation_stopped = False

    def prevent_default(self) -> None:
        self.default_prevented = True

    def stop_propagation(self) -> None:
        self.propagation_stopped = True

    def stop_immediate_propagation(self) -> None:
        self.propagation_stopped = True
        self.immediate_propagation_stopped = True

    def __repr__(self) -> str:
        return f"Event({self.type!r}, target={self.target!r})"


Listener = Callable[[Event], Any]


class EventTarget:
    """Listener registry with DOM add/remove semantics."""

    def __init__(self):
        self._listeners: Dict[str, List[Tuple[Listener, bool]]] = {}

    def add_event_listener(self, type: str, listener: Listener, capture: bool = False) -> None:
        entries = self._listeners.setdefault(type, [])
        if (listener, capture) not in entries:
            entries.append((listener, capture))

    def remove_event_listener(self, type: str, listener: Listener, capture: bool = False) -> None:
        entries = self._listeners.get(type, [])
        if (listener, capture) in entries:
            entries.remove((listener, capture))

    def listener_count(self, type: str) -> int:
        return len(self._listeners.get(type, []))

    def _invoke(self, event: Event, capture: Optional[bool]) -> None:
        """Run listeners for ``event`` on this target.

        ``capture`` selects capture listeners (True), bubble listeners
        (False) or both (None, used at the target). Listeners removed by an
        earlier listener in the same pass are skipped.
        """
        event.current_target = self
        entries = self._listeners.get(event.type, [])
        for entry in list(entries):
            if capture is not None and entry[1] != capture:
                continue
            if entry not in entries:
                continue
            entry[0](event)
            if event.immediate_propagation_stopped:
                return


class Node(EventTarget):
    """Tree node."""

    def __init__(self):
        super().__init__()
        self.parent: Optional["Node"] = None
        self.children: List["Element"] = []

    @property
    def root(self) -> "Node":
        node = self
        while node.parent is not None:
            node = node.parent
        return node

    @property
    def is_connected(self) -> bool:
        return isinstance(self.root, Document)

    @property
    def owner_document(self) -> Optional["Document"]:
        root = self.root
        return root if isinstance(root, Document) else None

    def append_child(self, child: "Element") -> "Element":
        if child.parent is not None:
            child.parent.remove_child(child)
        child.parent = self
        self.children.append(child)
        document = self.owner_document
        if document is not None:
            document._notify([child], [])
        return child

    def remove_child(self, child: "Element") -> "Element":
        document = self.owner_document
        self.children.remove(child)
        child.parent = None
        if document is not None:
            document._notify([], [child])
        return child

    def remove(self) -> None:
        if self.parent is not None:
            self.parent.remove_child(self)

    def iter_descendants(self):
        for child in self.children:
            yield child
            yield from child.iter_descendants()

    def query_selector(self, selector: str) -> Optional["Element"]:
        matcher = compile_selector(selector)
        for node in self.iter_descendants():
            if matcher(node):
                return node
        return None

    def query_selector_all(self, selector: str) -> List["Element"]:
        matcher = compile_selector(selector)
        return [node for node in self.iter_descendants() if matcher(node)]


class Element(Node):
    """Generic HTML element."""

    def __init__(self, tag_name: str, rect: Optional[Rect] = None, **attributes: str):
        super().__init__()
        self.tag_name = tag_name.upper()
        # class_="a b", data_vid="3"
        self.attributes: Dict[str, str] = {
            k.rstrip("_").replace("_", "-"): str(v) for k, v in attributes.items()
        }
        self.rect = rect or Rect()

    def __repr__(self) -> str:
        return f"<{self.tag_name.lower()} {self.attributes}>"

    @property
    def id(self) -> str:
        return self.attributes.get("id", "")

    @property
    def class_list(self) -> List[str]:
        return self.attributes.get("class", "").split()

    def get_attribute(self, name: str) -> Optional[str]:
        return self.attributes.get(name)

    def set_attribute(self, name: str, value: Any) -> None:
        self.attributes[name] = str(value)

    def matches(self, selector: str) -> bool:
        return compile_selector(selector)(self)

    def get_bounding_client_rect(self) -> Rect:
        return Rect(self.rect.x, self.rect.y, self.rect.width, self.rect.height)

    def dispatch_event(self, event: Event) -> bool:
        """Dispatch ``event`` with this element as target.

        Returns:
            False if a listener called ``prevent_default``.
        """
        document = self.owner_document
        if document is None:
            event.target = self
            event.event_phase = Event.AT_TARGET
            self._invoke(event, None)
            return not event.default_prevented
        return document.dispatch_event(event, self)

    def click(self, trusted: bool = False) -> Event:
        """Fire a click on this element.

        Args:
            trusted: Simulate genuine user input. Trusted clicks grant the
                document transient user activation for their dispatch.
        """
        event = Event("click", is_trusted=trusted)
        document = self.owner_document
        if trusted and document is not None:
            document.user_activation_depth += 1
            try:
                self.dispatch_event(event)
            finally:
                document.user_activation_depth -= 1
        else:
            self.dispatch_event(event)
        return event

    def request_fullscreen(self) -> None:
        document = self.owner_document
        if document is None:
            return
        document.fullscreen_element = self
        self.dispatch_event(Event("fullscreenchange"))


class IFrameElement(Element):
    """``<iframe>`` hosting a child window."""

    def __init__(self, content_window: "Window", rect: Optional[Rect] = None, **attributes: str):
        super().__init__("iframe", rect=rect, **attributes)
        self.content_window = content_window


class VideoElement(Element):
    """``<video>`` with the media state the agent samples.

    Playback does not progress on its own; call ``advance`` to simulate
    decoding. When ``requires_user_gesture`` is set, ``play``/``pause`` and
    the muted/volume setters are refused unless invoked while a trusted
    click is being dispatched.
    """

    def __init__(self, rect: Optional[Rect] = None, requires_user_gesture: bool = False, **attributes: str):
        super().__init__("video", rect=rect, **attributes)
        self.requires_user_gesture = requires_user_gesture
        self.paused = True
        self.ended = False
        self.seeking = False
        self.ready_state = HAVE_NOTHING
        self.duration = math.nan
        self.video_width = 0
        self.video_height = 0
        self.buffered: List[Tuple[float, float]] = []
        self.total_video_frames = 0
        self.dropped_video_frames = 0
        self._current_time = 0.0
        self._muted = False
        self._volume = 1.0

    # Media state

    @property
    def current_time(self) -> float:
        return self._current_time

    @current_time.setter
    def current_time(self, value: float) -> None:
        """Seek. ``seeked`` fires asynchronously once the position lands."""
        self._current_time = float(value)
        self.ended = False
        self.seeking = True
        self._fire("seeking")
        self._queue(self._finish_seek)

    def _finish_seek(self) -> None:
        self.seeking = False
        self._fire("timeupdate")
        self._fire("seeked")

    @property
    def buffered_end(self) -> float:
        return self.buffered[-1][1] if self.buffered else 0.0

    @property
    def muted(self) -> bool:
        return self._muted

    @muted.setter
    def muted(self, value: bool) -> None:
        if self._allowed("muted"):
            self._muted = bool(value)
            self._fire("volumechange")

    @property
    def volume(self) -> float:
        return self._volume

    @volume.setter
    def volume(self, value: float) -> None:
        if self._allowed("volume"):
            self._volume = float(value)
            self._fire("volumechange")

    def get_video_playback_quality(self) -> Dict[str, int]:
        return {
            "totalVideoFrames": self.total_video_frames,
            "droppedVideoFrames": self.dropped_video_frames,
        }

    # Media control

    def play(self) -> bool:
        """Start playback.

        Returns:
            False if the play request was refused for lack of a user gesture.
        """
        if not self._allowed("play"):
            return False
        if not self.paused:
            return True
        self.paused = False
        if self.ended:
            self._current_time = 0.0
            self.ended = False
        self._fire_soon("play")
        if self.ready_state >= HAVE_FUTURE_DATA:
            self._fire_soon("playing")
        return True

    def pause(self) -> None:
        if not self._allowed("pause") or self.paused:
            return
        self.paused = True
        self._fire_soon("timeupdate")
        self._fire_soon("pause")

    # Simulation helpers

    def load_metadata(self, width: int, height: int, duration: float,
                      ready_state: int = HAVE_ENOUGH_DATA) -> None:
        self.video_width = width
        self.video_height = height
        self.duration = float(duration)
        self.ready_state = ready_state
        self._fire("loadedmetadata")
        if ready_state >= HAVE_FUTURE_DATA:
            self._fire("canplay")

    def advance(self, seconds: float, frames: int = 0) -> None:
        """Progress playback by ``seconds`` as if decoded."""
        if self.paused or self.seeking:
            return
        self._current_time += seconds
        self.total_video_frames += frames
        self._fire("timeupdate")
        if not math.isnan(self.duration) and self._current_time >= self.duration:
            self._current_time = self.duration
            self.ended = True
            self.paused = True
            self._fire("pause")
            self._fire("ended")

    def set_buffered(self, *ranges: Tuple[float, float]) -> None:
        self.buffered = list(ranges)

    # Internals

    def _allowed(self, operation: str) -> bool:
        if not self.requires_user_gesture:
            return True
        document = self.owner_document
        if document is not None and document.has_transient_activation:
            return True
        logger.debug("Refused %s on %r without user activation", operation, self)
        return False

    def _fire(self, type: str) -> None:
        self.dispatch_event(Event(type, bubbles=False))

    def _fire_soon(self, type: str) -> None:
        self._queue(lambda: self._fire(type))

    def _queue(self, callback: Callable[[], Any]) -> None:
        document = self.owner_document
        scheduler = document.window.scheduler if document is not None and document.window else None
        if scheduler is None:
            callback()
        else:
            scheduler.call_soon(callback)


class Document(Node):
    """Document of one window."""

    def __init__(self, window: Optional["Window"] = None, with_body: bool = True):
        super().__init__()
        self.window = window
        self.fullscreen_element: Optional[Element] = None
        self.user_activation_depth = 0
        self._observers: List[Callable[[List[Element], List[Element]], Any]] = []
        self.body: Optional[Element] = None
        if with_body:
            self.create_body()

    def __repr__(self) -> str:
        origin = self.window.origin if self.window else None
        return f"<document {origin}>"

    @property
    def has_transient_activation(self) -> bool:
        return self.user_activation_depth > 0

    def create_body(self) -> Element:
        """Attach ``<body>`` and fire ``DOMContentLoaded``."""
        if self.body is None:
            self.body = Element("body")
            self.append_child(self.body)
            event = Event("DOMContentLoaded")
            event.target = self
            event.event_phase = Event.AT_TARGET
            self._invoke(event, None)
        return self.body

    def observe_mutations(self, callback: Callable[[List[Element], List[Element]], Any]) -> Callable[[], None]:
        """Subscribe to subtree additions/removals.

        Returns:
            Function that unsubscribes ``callback``.
        """
        self._observers.append(callback)

        def disconnect():
            if callback in self._observers:
                self._observers.remove(callback)

        return disconnect

    def _notify(self, added: List[Element], removed: List[Element]) -> None:
        for callback in list(self._observers):
            if callback in self._observers:
                callback(added, removed)

    def exit_fullscreen(self) -> None:
        element = self.fullscreen_element
        if element is None:
            return
        self.fullscreen_element = None
        element.dispatch_event(Event("fullscreenchange"))

    def dispatch_event(self, event: Event, target: Node) -> bool:
        """Dispatch through capture, target and bubble phases."""
        event.target = target
        path: List[Node] = []
        node = target.parent
        while node is not None:
            path.append(node)
            node = node.parent

        event.event_phase = Event.CAPTURING_PHASE
        for node in reversed(path):
            node._invoke(event, True)
            if event.propagation_stopped:
                return not event.default_prevented

        event.event_phase = Event.AT_TARGET
        target._invoke(event, None)
        if event.propagation_stopped or not event.bubbles:
            return not event.default_prevented

        event.event_phase = Event.BUBBLING_PHASE
        for node in path:
            node._invoke(event, False)
            if event.propagation_stopped:
                break
        return not event.default_prevented


class Window(EventTarget):
    """Browsing context: a document plus its place in the frame tree."""

    def __init__(self, origin: str = "https://example.com", scheduler=None,
                 parent: Optional["Window"] = None, with_body: bool = True):
        super().__init__()
        self.origin = origin
        self.scheduler = scheduler
        self.parent = parent
        self.frames: List["Window"] = []
        self.document = Document(self, with_body=with_body)

    def __repr__(self) -> str:
        return f"<window {self.origin} depth={self.depth}>"

    @property
    def is_top(self) -> bool:
        return self.parent is None

    @property
    def top(self) -> "Window":
        window = self
        while window.parent is not None:
            window = window.parent
        return window

    @property
    def depth(self) -> int:
        return 0 if self.parent is None else self.parent.depth + 1

    def document_for(self, accessor: "Window") -> Document:
        """Return this window's document as seen from ``accessor``.

        Raises:
            OriginBlocked: If the two windows are not same-origin.
        """
        if accessor.origin != self.origin:
            raise OriginBlocked(f"{accessor.origin} cannot access document of {self.origin}")
        return self.document

    def embed(self, origin: Optional[str] = None, rect: Optional[Rect] = None,
              container: Optional[Element] = None, **attributes: str) -> IFrameElement:
        """Create a child window hosted by a new ``<iframe>`` in this document.

        Args:
            origin: Child origin; defaults to this window's origin.
            rect: Box of the ``<iframe>`` in this window's viewport.
            container: Parent element; defaults to the body.
        """
        child = Window(origin or self.origin, scheduler=self.scheduler, parent=self)
        iframe = IFrameElement(child, rect=rect, **attributes)
        self.frames.append(child)
        (container or self.document.body).append_child(iframe)
        return iframe

    def unembed(self, iframe: IFrameElement) -> None:
        """Remove ``iframe`` and detach its window from ``frames``."""
        iframe.remove()
        if iframe.content_window in self.frames:
            self.frames.remove(iframe.content_window)

    def post_message(self, data: Any, source: Optional["Window"] = None) -> None:
        """Deliver a ``message`` event to this window asynchronously."""
        def deliver():
            event = Event("message", bubbles=False, data=data, source=source)
            event.target = self
            event.event_phase = Event.AT_TARGET
            self._invoke(event, None)

        if self.scheduler is None:
            deliver()
        else:
            self.scheduler.call_soon(deliver)


# Selector matching

_SIMPLE = re.compile(
    r"""\s*(?:
        (?P<tag>\*|[a-zA-Z][-\w]*)
      | \#(?P<id>[-\w]+)
      | \.(?P<cls>[-\w]+)
      | \[\s*(?P<attr>[-\w]+)\s*(?:=\s*(?:"(?P<dq>[^"]*)"|'(?P<sq>[^']*)'|(?P<bare>[-\w]+)))?\s*\]
    )""",
    re.VERBOSE,
)

_CACHE: Dict[str, Callable[[Node], bool]] = {}


def compile_selector(selector: str) -> Callable[[Node], bool]:
    """Compile a selector list into a predicate over nodes.

    Raises:
        ValueError: If the selector uses unsupported syntax.
    """
    cached = _CACHE.get(selector)
    if cached is not None:
        return cached

    alternatives = []
    for part in selector.split(","):
        part = part.strip()
        if not part:
            raise ValueError(f"Empty selector in {selector!r}")
        tests = []
        pos = 0
        while pos < len(part):
            match = _SIMPLE.match(part, pos)
            if match is None or match.end() == pos:
                raise ValueError(f"Unsupported selector {selector!r}")
            pos = match.end()
            tests.append(_simple_test(match))
        alternatives.append(tests)

    def matcher(node: Node) -> bool:
        if not isinstance(node, Element):
            return False
        return any(all(test(node) for test in tests) for tests in alternatives)

    _CACHE[selector] = matcher
    return matcher


def _simple_test(match) -> Callable[[Element], bool]:
    groups = match.groupdict()
    if groups["tag"]:
        tag = groups["tag"].upper()
        return lambda node: tag == "*" or node.tag_name == tag
    if groups["id"]:
        return lambda node: node.id == groups["id"]
    if groups["cls"]:
        return lambda node: groups["cls"] in node.class_list
    name = groups["attr"]
    value = next((groups[key] for key in ("dq", "sq", "bare") if groups[key] is not None), None)
    if value is None:
        return lambda node: name in node.attributes
    return lambda node: node.attributes.get(name) == value
