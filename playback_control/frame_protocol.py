# -*- coding: utf-8 -*-
"""Request/response protocol between a frame and its parent.

Messages travel over the window ``message`` channel, which is shared with
whatever else the page posts. Only objects carrying the ``md: true`` marker
are considered; everything else is dropped without error.

Two queries are built in. ``iframe-rect`` answers with the box of the
``<iframe>`` hosting the asking child. ``frame-position`` answers with that
box already offset by the answering frame's own top-level position, which
lets a chain of cross-origin frames resolve hop by hop. The second one is
registered by the position resolver of the answering frame.

Requests have no timeout. A parent that never answers (navigated away, no
responder installed) leaves the requester waiting.
"""

import logging
import math
from typing import Any, Callable, Dict, Literal, Optional

from pydantic import BaseModel, ValidationError

from .dom import Rect
from .errors import ProtocolIgnored

logger = logging.getLogger(__name__)

MARKER = "md"

# Query names
IFRAME_RECT = "iframe-rect"
FRAME_POSITION = "frame-position"

Reply = Callable[[Any], None]


class FrameMessage(BaseModel):
    """Envelope of every protocol message."""
    md: Literal[True]
    type: Literal["request", "response"]
    name: str
    data: Optional[Any] = None

    def to_wire(self) -> Dict[str, Any]:
        payload = {MARKER: True, "type": self.type, "name": self.name}
        if self.data is not None:
            payload["data"] = self.data
        return payload


def decode(payload: Any) -> FrameMessage:
    """Validate an incoming message.

    Raises:
        ProtocolIgnored: If the payload is foreign or malformed.
    """
    if not isinstance(payload, dict) or payload.get(MARKER) is not True:
        raise ProtocolIgnored("Missing protocol marker")
    try:
        return FrameMessage.model_validate(payload)
    except ValidationError as e:
        raise ProtocolIgnored(str(e)) from e


class FrameProtocol:
    """Protocol endpoint bound to one window.

    The responder side answers requests from directly embedded child frames;
    the requester side sends a single request to another window and waits
    for the matching response.
    """

    def __init__(self, window):
        self.window = window
        self._handlers: Dict[str, Callable[[Any, Reply], None]] = {
            IFRAME_RECT: _replying(self._iframe_rect),
        }
        self._listening = False

    def listen(self) -> None:
        """Start answering requests posted to this window."""
        if not self._listening:
            self.window.add_event_listener("message", self._on_request)
            self._listening = True

    def close(self) -> None:
        self.window.remove_event_listener("message", self._on_request)
        self._listening = False

    def register(self, name: str, handler: Callable[[Any], Any]) -> None:
        """Answer requests called ``name`` with ``handler(source_window)``."""
        self._handlers[name] = _replying(handler)

    def register_deferred(self, name: str, handler: Callable[[Any, Reply], None]) -> None:
        """Answer requests called ``name`` through ``handler(source_window, reply)``.

        The handler calls ``reply(data)`` exactly once, possibly after
        waiting on requests of its own.
        """
        self._handlers[name] = handler

    def hosting_iframe(self, source):
        """The ``<iframe>`` in this document whose content window is ``source``."""
        for iframe in self.window.document.query_selector_all("iframe"):
            if iframe.content_window is source:
                return iframe
        return None

    def request(self, target, name: str, callback: Callable[[Any], Any]) -> None:
        """Send one ``name`` request to ``target`` and wait for its response.

        Args:
            target: Window to ask, normally the parent.
            name: Query name.
            callback: Called once with the response ``data``.
        """
        def on_response(event):
            try:
                message = decode(event.data)
            except ProtocolIgnored:
                return
            if message.type != "response" or message.name != name:
                return
            self.window.remove_event_listener("message", on_response)
            callback(message.data)

        self.window.add_event_listener("message", on_response)
        target.post_message(FrameMessage(md=True, type="request", name=name).to_wire(), source=self.window)

    def _on_request(self, event) -> None:
        try:
            message = decode(event.data)
        except ProtocolIgnored as e:
            logger.debug("Ignoring message: %s", e)
            return
        if message.type != "request":
            return
        handler = self._handlers.get(message.name)
        if handler is None or event.source is None:
            logger.debug("Ignoring unsupported request %r", message.name)
            return
        source = event.source

        def reply(data):
            response = FrameMessage(md=True, type="response", name=message.name, data=data)
            source.post_message(response.to_wire(), source=self.window)

        handler(source, reply)

    def _iframe_rect(self, source) -> Dict[str, float]:
        """Box of the ``<iframe>`` in this document hosting ``source``."""
        iframe = self.hosting_iframe(source)
        if iframe is None:
            return {"x": math.nan, "y": math.nan}
        return iframe.get_bounding_client_rect().to_dict()


def _replying(handler: Callable[[Any], Any]) -> Callable[[Any, Reply], None]:
    return lambda source, reply: reply(handler(source))


def rect_from_reply(data: Any) -> Rect:
    """Read a rect reply, falling back to NaN for anything unexpected."""
    if not isinstance(data, dict):
        return Rect.nan()
    try:
        return Rect.from_dict(data)
    except (TypeError, ValueError):
        return Rect.nan()
