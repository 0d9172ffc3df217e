# -*- coding: utf-8 -*-
"""Wire format of the host bridge.

Outbound lines are ``<name>:<json>``. Telemetry events carry the event data
plus a ``now`` millisecond timestamp; responses to requests are named
``<request>.<status>`` and carry ``{"data": ..., "now": ...}``. Inbound
commands are addressed as ``<command>:<videoId>`` with a JSON payload.
"""

import json
import logging
import math
import threading
import time
from collections import deque
from typing import Any, Callable, Deque, Dict, List, Optional, Tuple

logger = logging.getLogger(__name__)

# Telemetry event names
METADATA = "metadata"
FULLSCREEN = "fullscreen"
CANPLAY = "canplay"
ENDED = "ended"
WAITING = "waiting"
PLAYING = "playing"
UPDATE = "update"
BUFFER_PAUSE = "bufferPause"
BUFFER_PLAY = "bufferPlay"

EVENT_NAMES = (
    METADATA, FULLSCREEN, CANPLAY, ENDED, WAITING, PLAYING, UPDATE, BUFFER_PAUSE, BUFFER_PLAY,
)

# Request the host to perform a genuine click
USER_INTERACTION = "doUserInteraction"


def _json_safe(value: Any) -> Any:
    """Replace NaN/infinity with None, as ``JSON.stringify`` does."""
    if isinstance(value, float) and not math.isfinite(value):
        return None
    if isinstance(value, dict):
        return {key: _json_safe(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_json_safe(item) for item in value]
    return value


def encode_line(name: str, payload: Dict[str, Any]) -> str:
    body = json.dumps(_json_safe(payload), separators=(",", ":"), allow_nan=False)
    return f"{name}:{body}" if name else body


def parse_line(line: str) -> Tuple[str, Dict[str, Any]]:
    """Split an outbound line into its name and decoded payload.

    Raises:
        ValueError: If the line has no name or the payload is not a JSON object.
    """
    name, sep, body = line.partition(":")
    if not sep or not name:
        raise ValueError(f"Malformed host line: {line!r}")
    payload = json.loads(body)
    if not isinstance(payload, dict):
        raise ValueError(f"Host line payload is not an object: {line!r}")
    return name, payload


def parse_address(address: str) -> Tuple[str, int]:
    """Parse a ``<command>:<videoId>`` address.

    Raises:
        ValueError: If the address is malformed or the id is not an integer.
    """
    command, sep, video_id = address.partition(":")
    if not sep or not command:
        raise ValueError(f"Malformed command address: {address!r}")
    try:
        return command, int(video_id)
    except ValueError:
        raise ValueError(f"Malformed video id in address: {address!r}") from None


class HostChannel:
    """Outbound half of the host bridge.

    Args:
        send: Opaque primitive delivering one line to the host.
        clock: Returns the current time in seconds.
    """

    def __init__(self, send: Callable[[str], Any], clock: Callable[[], float] = time.time):
        self._send = send
        self._clock = clock

    def now(self) -> int:
        return int(self._clock() * 1000)

    def provide(self, name: str, data: Dict[str, Any]) -> None:
        """Push a telemetry event."""
        self._send(encode_line(name, {**data, "now": self.now()}))

    def respond(self, request: str, status: int, data: Optional[Dict[str, Any]] = None) -> None:
        """Push the completion of a request."""
        self._send(encode_line(f"{request}.{int(status)}", {"data": data or {}, "now": self.now()}))

    def request_user_interaction(self) -> None:
        """Ask the host to perform a real click."""
        self.respond(USER_INTERACTION, 0, {})


class TelemetryLog:
    """Bounded, thread-safe record of outbound host lines.

    ``send`` is suitable as the ``HostChannel`` primitive. Subscribers are
    called with ``(name, payload)`` for every line, on the sending thread.
    """

    def __init__(self, capacity: int = 500):
        self._entries: Deque[Dict[str, Any]] = deque(maxlen=capacity)
        self._subscribers: List[Callable[[str, Dict[str, Any]], Any]] = []
        self._lock = threading.Lock()
        self._sequence = 0

    def subscribe(self, callback: Callable[[str, Dict[str, Any]], Any]) -> None:
        self._subscribers.append(callback)

    def send(self, line: str) -> None:
        try:
            name, payload = parse_line(line)
        except ValueError:
            logger.warning("Dropping malformed host line %r", line)
            return
        with self._lock:
            self._sequence += 1
            self._entries.append({"seq": self._sequence, "name": name, "payload": payload})
        for callback in list(self._subscribers):
            callback(name, payload)

    def entries(self, since: int = 0, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        with self._lock:
            entries = [entry for entry in self._entries if entry["seq"] > since]
        if limit is not None:
            entries = entries[-limit:] if limit > 0 else []
        return entries

    def names(self) -> List[str]:
        with self._lock:
            return [entry["name"] for entry in self._entries]
