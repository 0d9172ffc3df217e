# -*- coding: utf-8 -*-
"""Run actions inside a genuine user gesture.

Pages playing protected content often only honour play/pause/seek/volume
changes made while handling real user input. The gate intercepts the next
click on the document (capture phase, so it runs before the page's own
handlers), swallows it and runs the pending action inside that click. The
host is asked to produce the click.

There is no timeout: if no click ever arrives, the action never runs.
Callers that need bounded waiting must add their own.
"""

import logging
from typing import Any, Callable

from .host import HostChannel

logger = logging.getLogger(__name__)


class InteractionGate:
    """Defers actions to the next user click.

    Every call installs its own one-shot listener; there is no queue. Two
    calls made before a click both run on that click, in call order.

    Args:
        document: Document receiving the user's click.
        host: Channel used to ask the host for a click.
    """

    def __init__(self, document, host: HostChannel):
        self.document = document
        self.host = host
        self._pending = 0

    @property
    def pending(self) -> int:
        """Number of actions waiting for a click."""
        return self._pending

    def run_on_next_user_gesture(self, action: Callable[[], Any]) -> None:
        def on_click(event):
            event.prevent_default()
            event.stop_propagation()
            self.document.remove_event_listener("click", on_click, True)
            self._pending -= 1
            action()

        self.document.add_event_listener("click", on_click, True)
        self._pending += 1
        logger.debug("Waiting for user gesture (%d pending)", self._pending)
        self.host.request_user_interaction()
