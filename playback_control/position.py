# -*- coding: utf-8 -*-
"""Absolute (top-level frame) coordinates of elements in nested frames."""

import logging
import math
from dataclasses import dataclass
from typing import Any, Callable, Optional, Tuple

from .discovery import is_element, when_present
from .dom import Rect
from .errors import OriginBlocked
from .frame_protocol import FRAME_POSITION, FrameProtocol, rect_from_reply

logger = logging.getLogger(__name__)


@dataclass
class Position:
    """Offset accumulated from the current frame up to the top frame."""
    x: float = 0.0
    y: float = 0.0

    @classmethod
    def nan(cls) -> "Position":
        return cls(math.nan, math.nan)

    def shifted(self, rect: Rect) -> "Position":
        return Position(self.x + rect.x, self.y + rect.y)

    def to_dict(self):
        return {"x": self.x, "y": self.y}


class PositionResolver:
    """Resolves element positions by walking the frame ancestry.

    Same-origin ancestors are inspected directly. When an ancestor's document
    is blocked by its origin, the parent is asked over the frame protocol, if
    one is available, for the top-level offset of the ``<iframe>`` hosting
    us. The parent answers from its own resolver, so every further origin
    boundary costs one more hop. Without a protocol, or on a NaN answer, the
    partial sum gathered so far is the answer. Resolution never raises.

    Constructing a resolver with a protocol makes that protocol answer
    ``frame-position`` queries of child frames.

    Args:
        window: Window the agent runs in.
        protocol: Optional frame protocol endpoint of ``window``.
    """

    def __init__(self, window, protocol: Optional[FrameProtocol] = None):
        self.window = window
        self.protocol = protocol
        if protocol is not None:
            protocol.register_deferred(FRAME_POSITION, self._answer_frame_position)

    def local_frame_position(self) -> Position:
        """Offset of this frame reachable without messaging."""
        position, _ = self._walk(self.window, Position())
        return position

    def frame_position(self, callback: Callable[[Position], Any]) -> None:
        """Offset of this frame, asking the parent when it is cross-origin."""
        self._resolve_from(self.window, Position(), callback)

    def bbox(self, target, callback: Callable[[Rect], Any]) -> None:
        """Absolute bounding box of an element or of a selector's first match.

        Calls ``callback`` with NaNs if ``target`` is neither an element nor
        a selector, or if the selector matches nothing right now.
        """
        element = self._element(target)
        if element is None:
            callback(Rect.nan())
            return
        rect = element.get_bounding_client_rect()

        def done(position: Position):
            callback(Rect(rect.x + position.x, rect.y + position.y, rect.width, rect.height))

        self.frame_position(done)

    def resolve_position(self, target, callback: Callable[[Position], Any], wait: bool = False) -> None:
        """Absolute top-left position of ``target``.

        Args:
            target: Element or selector.
            callback: Receives the position, NaNs if nothing was found.
            wait: For selectors, wait until a matching element appears
                instead of answering NaN right away.
        """
        if wait and isinstance(target, str):
            when_present(self.window.document, target, lambda element: self.resolve_position(element, callback))
            return
        self.bbox(target, lambda rect: callback(Position(rect.x, rect.y)))

    def report_click_target(self, selector: str, report: Callable[[Rect], Any]) -> None:
        """Report where the element matching ``selector`` is, once it exists.

        The host uses the box to click the element with real input. The box
        is reported once; the element's click listener is dropped after the
        first click.
        """
        def found(element):
            def clicked(event):
                element.remove_event_listener("click", clicked)
                logger.debug("Click target %r clicked", selector)

            element.add_event_listener("click", clicked)
            self.bbox(element, report)

        when_present(self.window.document, selector, found)

    # Internals

    def _element(self, target):
        if is_element(target):
            return target
        if isinstance(target, str):
            return self.window.document.query_selector(target)
        return None

    def _walk(self, start, position: Position) -> Tuple[Position, Any]:
        """Ascend from ``start`` while ancestor documents are accessible.

        Returns:
            The accumulated position and the frame whose parent could not be
            inspected, or None if the top frame was reached.
        """
        current = start
        while not current.is_top:
            parent = current.parent
            if not any(frame is current for frame in parent.frames):
                logger.warning("%r is not listed among its parent's frames", current)
                return position, None
            try:
                document = parent.document_for(self.window)
            except OriginBlocked:
                return position, current
            for iframe in document.query_selector_all("iframe"):
                if iframe.content_window is current:
                    position = position.shifted(iframe.get_bounding_client_rect())
                    break
            current = parent
        return position, None

    def _resolve_from(self, start, position: Position, callback: Callable[[Position], Any]) -> None:
        position, blocked = self._walk(start, position)
        if blocked is None:
            callback(position)
            return
        if self.protocol is None:
            logger.debug("Origin boundary above %r, returning partial position", blocked)
            callback(position)
            return

        def on_reply(data):
            offset = rect_from_reply(data)
            if math.isnan(offset.x) or math.isnan(offset.y):
                callback(position)
            else:
                callback(position.shifted(offset))

        # The parent only recognizes its direct child as the sender
        sender = self.protocol if blocked is self.window else FrameProtocol(blocked)
        sender.request(blocked.parent, FRAME_POSITION, on_reply)

    def _answer_frame_position(self, source, reply: Callable[[Any], None]) -> None:
        """Top-level offset of the child frame ``source``, for the protocol."""
        iframe = self.protocol.hosting_iframe(source)
        if iframe is None:
            reply(Position.nan().to_dict())
            return
        rect = iframe.get_bounding_client_rect()
        self.frame_position(lambda position: reply(position.shifted(rect).to_dict()))
