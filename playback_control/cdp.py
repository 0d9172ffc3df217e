# -*- coding: utf-8 -*-
"""Page surface backed by the Chrome DevTools Protocol.

``CDPPage`` exposes the frames of a page target through the same interface
as ``playback_control.dom``: each frame is a ``CDPWindow`` whose elements
and videos are proxies over remote objects. Properties are read with
``Runtime.callFunctionOn``. The page script runs in a ``playback-control``
isolated world of every frame and reports media events, DOM changes and
intercepted clicks through a ``Runtime.addBinding`` binding.

Mutation notifications only carry counts, so ``observe_mutations``
callbacks receive the document element as the single added node and one
``None`` placeholder per removed node.
"""

import concurrent.futures
import functools
import json
import logging
import threading
from collections import defaultdict
from typing import Any, Callable, Dict, List, Optional

import websocket

from .dom import Event, EventTarget, Rect
from .page_script import (
    BINDING_NAME,
    WORLD_NAME,
    get_arm_click_call,
    get_disarm_click_call,
    get_page_script,
)

logger = logging.getLogger(__name__)


def remote_value(remote: Dict[str, Any]) -> Any:
    """Python value of a by-value RemoteObject (NaN and infinities included)."""
    if "unserializableValue" in remote:
        try:
            return float(remote["unserializableValue"])
        except ValueError:
            return remote["unserializableValue"]
    return remote.get("value")


class CDPSession:
    """WebSocket connection to one page target.

    Responses are matched to requests on a reader thread, so ``request`` may
    be called from any other thread. Event handlers are passed to
    ``dispatch``; the default runs them on the reader thread, where they
    must not issue requests themselves.

    Args:
        endpoint: ``webSocketDebuggerUrl`` of the page target.
        dispatch: Schedules an event handler call, e.g. onto the agent loop.
        create_connection: WebSocket factory.
    """

    def __init__(self, endpoint: str, dispatch: Optional[Callable[[Callable[[], Any]], Any]] = None,
                 create_connection: Callable[..., Any] = websocket.create_connection):
        self.endpoint = endpoint
        self.dispatch = dispatch or (lambda callback: callback())
        self._create_connection = create_connection
        self._ws = None
        self._msg_id = 0
        self._pending: Dict[int, concurrent.futures.Future] = {}
        self._handlers: Dict[str, List[Callable[[Dict[str, Any]], Any]]] = defaultdict(list)
        self._waiters: Dict[str, List[Callable[[Dict[str, Any]], Any]]] = defaultdict(list)
        self._lock = threading.Lock()
        self._reader: Optional[threading.Thread] = None
        self._running = False

    @property
    def is_connected(self) -> bool:
        """Check if WebSocket is connected."""
        return self._ws is not None and self._ws.connected

    def connect(self, timeout: float = 5.0) -> None:
        """Open the WebSocket and start the reader thread."""
        # Timeout on the socket so recv() doesn't block forever
        self._ws = self._create_connection(self.endpoint, timeout=timeout)
        self._running = True
        self._reader = threading.Thread(target=self._read_loop, args=(self._ws,),
                                        name="cdp-reader", daemon=True)
        self._reader.start()

    def close(self) -> None:
        self._running = False
        ws, self._ws = self._ws, None
        if ws is not None:
            try:
                ws.close()
            except (websocket.WebSocketException, OSError) as e:
                logger.debug("Error closing CDP socket: %s", e)
        self._fail_pending(ConnectionError("CDP session closed"))

    def request(self, method: str, params: Optional[Dict[str, Any]] = None,
                timeout: float = 10.0) -> Dict[str, Any]:
        """Send a CDP request and wait for its response.

        Args:
            method: CDP method name.
            params: Optional parameters for the method.
            timeout: Maximum time to wait for response.

        Returns:
            The result from the CDP response.

        Raises:
            TimeoutError: If no response within timeout.
            RuntimeError: If not connected or the browser reports an error.
        """
        if self._ws is None:
            raise RuntimeError("Not connected to browser")

        future: concurrent.futures.Future = concurrent.futures.Future()
        with self._lock:
            self._msg_id += 1
            req_id = self._msg_id
            self._pending[req_id] = future
            self._ws.send(json.dumps({"id": req_id, "method": method, "params": params or {}}))

        try:
            return future.result(timeout=timeout)
        except concurrent.futures.TimeoutError:
            self._pending.pop(req_id, None)
            raise TimeoutError(f"CDP request '{method}' timed out") from None

    def on(self, method: str, handler: Callable[[Dict[str, Any]], Any]) -> None:
        """Call ``handler(params)`` through ``dispatch`` for every ``method`` event."""
        self._handlers[method].append(handler)

    def wait_event(self, method: str, timeout: float = 10.0) -> Dict[str, Any]:
        """Block until the next ``method`` event.

        Raises:
            TimeoutError: If event not received within timeout.
        """
        received = threading.Event()
        box: Dict[str, Any] = {}

        def waiter(params):
            box["params"] = params
            received.set()

        self._waiters[method].append(waiter)
        try:
            if not received.wait(timeout):
                raise TimeoutError(f"CDP event '{method}' timed out")
        finally:
            self._waiters[method].remove(waiter)
        return box["params"]

    # Reader thread

    def _read_loop(self, ws) -> None:
        while self._running:
            try:
                raw = ws.recv()
            except websocket.WebSocketTimeoutException:
                continue
            except (websocket.WebSocketConnectionClosedException, OSError) as e:
                logger.info("CDP connection closed: %s", e)
                break
            try:
                message = json.loads(raw)
            except (TypeError, ValueError):
                logger.warning("Ignoring undecodable CDP message")
                continue
            if isinstance(message, dict):
                self._route(message)
        self._running = False
        self._fail_pending(ConnectionError("CDP connection lost"))

    def _route(self, message: Dict[str, Any]) -> None:
        if "id" in message:
            future = self._pending.pop(message["id"], None)
            if future is None:
                return
            if "error" in message:
                future.set_exception(RuntimeError(f"CDP error: {message['error']}"))
            else:
                future.set_result(message.get("result", {}))
            return

        method = message.get("method")
        params = message.get("params", {})
        for waiter in list(self._waiters.get(method, [])):
            waiter(params)
        for handler in list(self._handlers.get(method, [])):
            self.dispatch(functools.partial(handler, params))

    def _fail_pending(self, error: Exception) -> None:
        pending, self._pending = self._pending, {}
        for future in pending.values():
            if not future.done():
                future.set_exception(error)


def _js_property(name: str, writable: bool = False) -> property:
    """Proxy property reading (and optionally writing) ``this.<name>``."""
    def getter(self):
        return self._get(f"function() {{ return this.{name}; }}")

    def setter(self, value):
        self._call(f"function(v) {{ this.{name} = v; }}", value)

    return property(getter, setter if writable else None)


class CDPElement(EventTarget):
    """Proxy of a page element.

    Listeners registered here receive the events the page script forwards
    for this element.
    """

    def __init__(self, window: "CDPWindow", object_id: str, key: int, tag_name: str):
        super().__init__()
        self.window = window
        self.page = window.page
        self.object_id = object_id
        self.key = key
        self.tag_name = tag_name

    def __repr__(self) -> str:
        return f"<{self.tag_name.lower()} key={self.key}>"

    def _call(self, declaration: str, *args: Any, by_value: bool = True) -> Dict[str, Any]:
        result = self.page.session.request("Runtime.callFunctionOn", {
            "objectId": self.object_id,
            "functionDeclaration": declaration,
            "arguments": [{"value": arg} for arg in args],
            "returnByValue": by_value,
        })
        if "exceptionDetails" in result:
            raise RuntimeError(f"Page error: {result['exceptionDetails'].get('text')}")
        return result.get("result", {})

    def _get(self, declaration: str, *args: Any) -> Any:
        return remote_value(self._call(declaration, *args))

    @property
    def is_connected(self) -> bool:
        """Whether the element is still in its document.

        Raises:
            TimeoutError: If the page did not answer in time.
        """
        try:
            return bool(self._get("function() { return this.isConnected; }"))
        except (RuntimeError, ConnectionError):
            # Stale object after navigation or a closed session
            return False

    @property
    def content_window(self) -> Optional["CDPWindow"]:
        """Window of the frame hosted by this ``<iframe>``, if it is attached."""
        if self.tag_name not in ("IFRAME", "FRAME"):
            return None
        node = self.page.session.request("DOM.describeNode", {"objectId": self.object_id}).get("node", {})
        return self.page.windows.get(node.get("frameId"))

    def matches(self, selector: str) -> bool:
        return bool(self._get("function(s) { return this.matches(s); }", selector))

    def query_selector(self, selector: str) -> Optional["CDPElement"]:
        remote = self._call("function(s) { return this.querySelector(s); }", selector, by_value=False)
        return self.window.wrap(remote)

    def get_attribute(self, name: str) -> Optional[str]:
        return self._get("function(n) { return this.getAttribute(n); }", name)

    def set_attribute(self, name: str, value: Any) -> None:
        self._call("function(n, v) { this.setAttribute(n, v); }", name, str(value))

    def get_bounding_client_rect(self) -> Rect:
        data = self._get(
            "function() { const r = this.getBoundingClientRect();"
            " return { x: r.x, y: r.y, width: r.width, height: r.height }; }"
        )
        return Rect.from_dict(data or {})

    def deliver(self, type: str) -> None:
        """Run Python listeners for a forwarded page event."""
        event = Event(type, bubbles=False)
        event.target = self
        event.event_phase = Event.AT_TARGET
        self._invoke(event, None)


class CDPVideo(CDPElement):
    """Proxy of a ``<video>`` element."""

    current_time = _js_property("currentTime", writable=True)
    duration = _js_property("duration")
    paused = _js_property("paused")
    ended = _js_property("ended")
    seeking = _js_property("seeking")
    ready_state = _js_property("readyState")
    video_width = _js_property("videoWidth")
    video_height = _js_property("videoHeight")
    muted = _js_property("muted", writable=True)
    volume = _js_property("volume", writable=True)

    @property
    def buffered_end(self) -> float:
        return self._get("function() { const b = this.buffered; return b.length ? b.end(b.length - 1) : 0; }")

    def get_video_playback_quality(self) -> Dict[str, int]:
        return self._get(
            "function() { const q = this.getVideoPlaybackQuality();"
            " return { totalVideoFrames: q.totalVideoFrames, droppedVideoFrames: q.droppedVideoFrames }; }"
        )

    def track(self) -> None:
        """Have the page script forward this video's media events."""
        self._call("function() { return window.PlaybackControl.track(this); }")

    def play(self) -> None:
        # The returned promise rejects when the page refuses playback
        self._call("function() { const p = this.play(); if (p) { p.catch(() => {}); } }")

    def pause(self) -> None:
        self._call("function() { this.pause(); }")

    def request_fullscreen(self) -> None:
        self._call("function() { const p = this.requestFullscreen(); if (p) { p.catch(() => {}); } }")


class CDPDocument(EventTarget):
    """Proxy of the document of one frame.

    Click listeners are backed by a one-shot capture listener in the page
    that swallows the click and reports it; it is re-armed while Python
    click listeners remain.
    """

    def __init__(self, window: "CDPWindow"):
        super().__init__()
        self.window = window
        self.page = window.page
        self._observers: List[Callable[[List[Any], List[Any]], Any]] = []
        self._armed = False

    @property
    def body(self) -> Optional[CDPElement]:
        return self.window.wrap(self.window.evaluate("document.body", by_value=False))

    @property
    def fullscreen_element(self) -> Optional[CDPElement]:
        return self.window.wrap(self.window.evaluate("document.fullscreenElement", by_value=False))

    def query_selector(self, selector: str) -> Optional[CDPElement]:
        remote = self.window.evaluate(f"document.querySelector({json.dumps(selector)})", by_value=False)
        return self.window.wrap(remote)

    def query_selector_all(self, selector: str) -> List[CDPElement]:
        remote = self.window.evaluate(f"Array.from(document.querySelectorAll({json.dumps(selector)}))",
                                      by_value=False)
        if "objectId" not in remote:
            return []
        properties = self.page.session.request("Runtime.getProperties", {
            "objectId": remote["objectId"],
            "ownProperties": True,
        })
        elements = []
        for prop in properties.get("result", []):
            if prop.get("name", "").isdigit():
                element = self.window.wrap(prop.get("value", {}))
                if element is not None:
                    elements.append(element)
        return elements

    def observe_mutations(self, callback: Callable[[List[Any], List[Any]], Any]) -> Callable[[], None]:
        self._observers.append(callback)

        def disconnect():
            if callback in self._observers:
                self._observers.remove(callback)

        return disconnect

    def add_event_listener(self, type: str, listener, capture: bool = False) -> None:
        super().add_event_listener(type, listener, capture)
        if type == "click":
            self._sync_click()

    def remove_event_listener(self, type: str, listener, capture: bool = False) -> None:
        super().remove_event_listener(type, listener, capture)
        if type == "click":
            self._sync_click()

    def _sync_click(self) -> None:
        wanted = self.listener_count("click") > 0
        if wanted == self._armed:
            return
        self.window.evaluate(get_arm_click_call() if wanted else get_disarm_click_call())
        self._armed = wanted

    def _clicked(self, trusted: bool) -> None:
        # The page listener disarmed itself
        self._armed = False
        event = Event("click", is_trusted=trusted)
        event.target = self
        event.event_phase = Event.AT_TARGET
        self._invoke(event, None)
        self._sync_click()

    def _mutated(self, added: int, removed: int) -> None:
        root = None
        if added:
            root = self.window.wrap(self.window.evaluate("document.documentElement", by_value=False))
        added_nodes = [root] if root is not None else []
        removed_nodes = [None] * removed
        for callback in list(self._observers):
            if callback in self._observers:
                callback(added_nodes, removed_nodes)


class CDPWindow(EventTarget):
    """One frame of the page.

    Scripts run in the frame's ``playback-control`` isolated world once it
    is known, in the page's default context before that. The debugger may
    inspect every frame whatever its origin, so ``document_for`` never
    raises and positions resolve without the frame protocol.

    Args:
        page: Page the frame belongs to.
        scheduler: Agent scheduler, used for message delivery.
        frame_id: CDP frame id, None until the frame tree is known.
        parent: Window of the embedding frame, None for the top frame.
        origin: Security origin reported by the browser.
        url: Current document URL.
    """

    def __init__(self, page: "CDPPage", scheduler=None, frame_id: Optional[str] = None,
                 parent: Optional["CDPWindow"] = None, origin: Optional[str] = None, url: str = ""):
        super().__init__()
        self.page = page
        self.scheduler = scheduler
        self.frame_id = frame_id
        self.parent = parent
        self.url = url
        self.frames: List["CDPWindow"] = []
        self.context_id: Optional[int] = None
        self.document = CDPDocument(self)
        self._origin = origin
        self._elements: Dict[int, CDPElement] = {}

    def __repr__(self) -> str:
        return f"<frame {self.frame_id} {self.url}>"

    @property
    def is_top(self) -> bool:
        return self.parent is None

    @property
    def top(self) -> "CDPWindow":
        window = self
        while window.parent is not None:
            window = window.parent
        return window

    @property
    def origin(self) -> str:
        if self._origin is None and (self.context_id is not None or self.is_top):
            self._origin = remote_value(self.evaluate("location.origin"))
        return self._origin or ""

    def document_for(self, accessor) -> CDPDocument:
        return self.document

    def post_message(self, data: Any, source=None) -> None:
        def deliver():
            event = Event("message", bubbles=False, data=data, source=source)
            event.target = self
            event.event_phase = Event.AT_TARGET
            self._invoke(event, None)

        if self.scheduler is None:
            deliver()
        else:
            self.scheduler.call_soon(deliver)

    def evaluate(self, expression: str, by_value: bool = True) -> Dict[str, Any]:
        """Evaluate ``expression`` in this frame and return the RemoteObject."""
        params: Dict[str, Any] = {"expression": expression, "returnByValue": by_value}
        if self.context_id is not None:
            params["contextId"] = self.context_id
        result = self.page.session.request("Runtime.evaluate", params)
        if "exceptionDetails" in result:
            raise RuntimeError(f"Page error: {result['exceptionDetails'].get('text')}")
        return result.get("result", {})

    def wrap(self, remote: Dict[str, Any]) -> Optional[CDPElement]:
        """Proxy for an element RemoteObject, reusing earlier proxies."""
        if remote.get("type") != "object" or remote.get("subtype") == "null" or "objectId" not in remote:
            return None
        object_id = remote["objectId"]
        info = self.page.session.request("Runtime.callFunctionOn", {
            "objectId": object_id,
            "functionDeclaration": "function() { return window.PlaybackControl.keyOf(this); }",
            "returnByValue": True,
        })
        identity = remote_value(info.get("result", {})) or {}
        key = identity.get("key")
        if key is None:
            return None

        existing = self._elements.get(key)
        if existing is not None:
            self.page.session.request("Runtime.releaseObject", {"objectId": object_id})
            return existing

        tag_name = identity.get("tag", "")
        if tag_name == "VIDEO":
            element = CDPVideo(self, object_id, key, tag_name)
            element.track()
        else:
            element = CDPElement(self, object_id, key, tag_name)
        self._elements[key] = element
        return element

    def element(self, key: Any) -> Optional[CDPElement]:
        return self._elements.get(key)

    def use_context(self, context_id: Optional[int]) -> None:
        """Switch to a new execution context; earlier proxies go stale."""
        self.context_id = context_id
        self._elements.clear()


class CDPPage:
    """Page target seen through one CDP session.

    Every frame of the page gets a ``CDPWindow`` linked into the frame
    tree. Frames attached or navigated later are followed through
    ``Page`` and ``Runtime`` events.

    Args:
        session: Connected session whose ``dispatch`` runs handlers on the
            agent thread.
        scheduler: Agent scheduler, used for message delivery.
    """

    def __init__(self, session: CDPSession, scheduler=None):
        self.session = session
        self.scheduler = scheduler
        self.window = CDPWindow(self, scheduler)
        self.windows: Dict[str, CDPWindow] = {}

    @property
    def document(self) -> CDPDocument:
        return self.window.document

    def install(self) -> CDPWindow:
        """Inject the page script into every frame and follow frame changes.

        Returns:
            The window proxy of the top frame.
        """
        self.session.request("Runtime.enable")
        self.session.request("Page.enable")
        self.session.request("Runtime.addBinding", {"name": BINDING_NAME, "executionContextName": WORLD_NAME})
        self.session.on("Runtime.bindingCalled", self._on_binding)
        self.session.on("Runtime.executionContextCreated", self._on_context_created)
        self.session.on("Page.frameAttached", self._on_frame_attached)
        self.session.on("Page.frameNavigated", self._on_frame_navigated)
        self.session.on("Page.frameDetached", self._on_frame_detached)
        script = get_page_script()
        # Documents loaded from now on get the script in their isolated world
        self.session.request("Page.addScriptToEvaluateOnNewDocument", {"source": script, "worldName": WORLD_NAME})

        tree = self.session.request("Page.getFrameTree").get("frameTree")
        if tree:
            self._attach_tree(tree, None)
        for window in [self.window] + [w for w in self.windows.values() if w is not self.window]:
            self._inject(window, script)
        return self.window

    def evaluate(self, expression: str, by_value: bool = True) -> Dict[str, Any]:
        """Evaluate ``expression`` in the top frame and return the RemoteObject."""
        return self.window.evaluate(expression, by_value)

    def wrap(self, remote: Dict[str, Any]) -> Optional[CDPElement]:
        return self.window.wrap(remote)

    def find_window(self, url_part: str) -> Optional[CDPWindow]:
        """First frame, in tree order, whose URL contains ``url_part``."""
        pending = [self.window]
        while pending:
            window = pending.pop(0)
            if url_part in window.url:
                return window
            pending.extend(window.frames)
        return None

    # Frame tree

    def _attach_tree(self, tree: Dict[str, Any], parent: Optional[CDPWindow]) -> None:
        frame = tree.get("frame", {})
        window = self._attach(frame.get("id"), parent, frame.get("securityOrigin"), frame.get("url", ""))
        for child in tree.get("childFrames", []):
            self._attach_tree(child, window)

    def _attach(self, frame_id: Optional[str], parent: Optional[CDPWindow],
                origin: Optional[str] = None, url: str = "") -> CDPWindow:
        if parent is None:
            window = self.window
            window.frame_id, window._origin, window.url = frame_id, origin, url
        else:
            window = CDPWindow(self, self.scheduler, frame_id, parent, origin, url)
            parent.frames.append(window)
        if frame_id is not None:
            self.windows[frame_id] = window
        return window

    def _inject(self, window: CDPWindow, script: str) -> None:
        if window.frame_id is not None:
            world = self.session.request("Page.createIsolatedWorld", {
                "frameId": window.frame_id,
                "worldName": WORLD_NAME,
            })
            window.use_context(world.get("executionContextId"))
        result = remote_value(window.evaluate(script))
        logger.info("Page script installed in %r: %s", window, result)

    def _on_frame_attached(self, params: Dict[str, Any]) -> None:
        parent = self.windows.get(params.get("parentFrameId"))
        frame_id = params.get("frameId")
        if parent is None or frame_id in self.windows:
            return
        logger.debug("Frame %s attached below %r", frame_id, parent)
        self._attach(frame_id, parent)

    def _on_frame_navigated(self, params: Dict[str, Any]) -> None:
        frame = params.get("frame", {})
        window = self.windows.get(frame.get("id"))
        if window is not None:
            window.url = frame.get("url", "")
            window._origin = frame.get("securityOrigin")

    def _on_frame_detached(self, params: Dict[str, Any]) -> None:
        window = self.windows.get(params.get("frameId"))
        if window is None or window.parent is None:
            return
        window.parent.frames.remove(window)
        pending = [window]
        while pending:
            detached = pending.pop()
            self.windows.pop(detached.frame_id, None)
            detached.use_context(None)
            pending.extend(detached.frames)
        logger.debug("Frame %s detached", params.get("frameId"))

    def _on_context_created(self, params: Dict[str, Any]) -> None:
        context = params.get("context", {})
        if context.get("name") != WORLD_NAME:
            return
        window = self.windows.get((context.get("auxData") or {}).get("frameId"))
        if window is None or window.context_id == context.get("id"):
            return
        # A new document in the frame; the script already ran in it
        logger.debug("New isolated world %s for %r", context.get("id"), window)
        window.use_context(context.get("id"))

    def _window_for_context(self, context_id: Optional[int]) -> Optional[CDPWindow]:
        if context_id is None or context_id == self.window.context_id:
            return self.window
        for window in self.windows.values():
            if window.context_id == context_id:
                return window
        return None

    def _on_binding(self, params: Dict[str, Any]) -> None:
        if params.get("name") != BINDING_NAME:
            return
        window = self._window_for_context(params.get("executionContextId"))
        if window is None:
            logger.debug("Ignoring binding call from unknown context %s", params.get("executionContextId"))
            return
        try:
            message = json.loads(params.get("payload", ""))
        except ValueError:
            logger.debug("Ignoring undecodable binding payload")
            return
        if not isinstance(message, dict):
            return

        kind = message.get("kind")
        if kind == "event":
            element = window.element(message.get("key"))
            if element is not None:
                element.deliver(str(message.get("type")))
        elif kind == "mutation":
            window.document._mutated(int(message.get("added", 0)), int(message.get("removed", 0)))
        elif kind == "click":
            window.document._clicked(bool(message.get("trusted")))
