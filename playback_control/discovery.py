# -*- coding: utf-8 -*-
"""Element discovery by selector, including elements added later."""

import logging
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)


def is_element(value: Any) -> bool:
    """Check whether ``value`` looks like an element of a page surface."""
    return not isinstance(value, str) and callable(getattr(value, "get_bounding_client_rect", None))


class _Watch:
    """Single-shot observer waiting for ``selector`` to match an added node."""

    def __init__(self, document, selector: str, callback: Callable[[Any], Any]):
        self.document = document
        self.selector = selector
        self.callback = callback
        self.done = False
        self._disconnect: Optional[Callable[[], None]] = None

    def start(self) -> None:
        if self.document.body is None:
            self.document.add_event_listener("DOMContentLoaded", self._on_ready, True)
        else:
            self._observe()

    def cancel(self) -> None:
        self.done = True
        self.document.remove_event_listener("DOMContentLoaded", self._on_ready, True)
        if self._disconnect is not None:
            self._disconnect()
            self._disconnect = None

    def _on_ready(self, event) -> None:
        self.document.remove_event_listener("DOMContentLoaded", self._on_ready, True)
        if not self.done:
            self._observe()

    def _observe(self) -> None:
        self._disconnect = self.document.observe_mutations(self._on_mutation)
        # The element may have appeared between the first lookup and now
        found = self.document.query_selector(self.selector)
        if found is not None:
            self._resolve(found)

    def _on_mutation(self, added, removed) -> None:
        if self.done:
            return
        for node in added:
            if not is_element(node):
                continue
            found = node if node.matches(self.selector) else node.query_selector(self.selector)
            if found is not None:
                self._resolve(found)
                return

    def _resolve(self, element) -> None:
        if self.done:
            return
        self.cancel()
        logger.debug("Selector %r resolved to %r", self.selector, element)
        self.callback(element)


def when_present(document, selector: str, callback: Callable[[Any], Any]) -> Callable[[], None]:
    """Call ``callback`` once with the first element matching ``selector``.

    Resolves immediately if the element is already in the document,
    otherwise waits for it to be added (also inside added subtrees). If the
    document has no body yet, observation starts on ``DOMContentLoaded``.

    Args:
        document: Document to search.
        selector: CSS selector.
        callback: Called exactly once with the element.

    Returns:
        Function that cancels the wait.
    """
    element = document.query_selector(selector)
    if element is not None:
        callback(element)
        return lambda: None

    watch = _Watch(document, selector, callback)
    watch.start()
    return watch.cancel
