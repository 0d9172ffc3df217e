# -*- coding: utf-8 -*-
"""Browser manager for launching Chromium and driving it via CDP."""

import json
import logging
import os
import subprocess
import time
from typing import Any, Dict, Optional, Tuple
from urllib.error import URLError
from urllib.request import urlopen

from .cdp import CDPSession
from .config import Config, config as default_config, detect_browser_path

logger = logging.getLogger(__name__)


class BrowserManager:
    """Manages browser lifecycle and trusted input via CDP."""

    def __init__(self, config: Optional[Config] = None):
        """Initialize the browser manager.

        Args:
            config: Application configuration; defaults to the global one.
        """
        self.config = config or default_config
        self.session: Optional[CDPSession] = None
        self._process: Optional[subprocess.Popen] = None

    @property
    def is_running(self) -> bool:
        """Check if browser process is running."""
        return self._process is not None and self._process.poll() is None

    @property
    def is_connected(self) -> bool:
        """Check if the CDP session is connected."""
        return self.session is not None and self.session.is_connected

    def launch(self) -> None:
        """Launch the browser with remote debugging enabled."""
        if self.is_running:
            return

        browser_path = self.config.browser_path or detect_browser_path()
        params = [
            f"--user-data-dir={self.config.browser_profile_dir}",
            f"--remote-debugging-port={self.config.cdp_port}",
            "--remote-allow-origins=*",
            "--no-first-run",
            "--no-default-browser-check",
            "--disable-infobars",
            "--disable-session-crashed-bubble",
        ]

        if self.config.kiosk_mode:
            params.extend([
                "--kiosk",
                "--start-fullscreen",
            ])

        # Start with about:blank, we'll navigate after connecting
        params.append("about:blank")

        with open(os.devnull, "wb") as dev_null:
            self._process = subprocess.Popen(
                [browser_path] + params,
                stdout=dev_null,
                stderr=subprocess.STDOUT,
            )

    def discover_endpoint(self, timeout: float = 15.0) -> str:
        """Find the WebSocket URL of the first page target.

        Raises:
            ConnectionError: If no page target shows up within timeout.
        """
        start_time = time.time()

        while time.time() - start_time < timeout:
            try:
                data = urlopen(self.config.cdp_url, timeout=1).read().decode("utf-8")
                for target in json.loads(data or "[]"):
                    if target.get("type") == "page" and target.get("webSocketDebuggerUrl"):
                        return target["webSocketDebuggerUrl"]
            except (URLError, OSError, ValueError):
                pass
            time.sleep(0.5)

        raise ConnectionError("Unable to connect to browser CDP endpoint")

    def connect(self, timeout: float = 15.0, session: Optional[CDPSession] = None) -> CDPSession:
        """Connect to the browser's page target.

        Args:
            timeout: Maximum time to wait for the endpoint.
            session: Pre-built session to use instead of discovering one.

        Returns:
            The connected session.
        """
        if session is None:
            session = CDPSession(self.discover_endpoint(timeout))
        self.session = session
        if not session.is_connected:
            session.connect()
        logger.info("Connected to %s", session.endpoint)
        return session

    def close(self) -> None:
        """Close browser and cleanup."""
        if self.session is not None:
            try:
                self.session.request("Browser.close", timeout=2.0)
            except (RuntimeError, TimeoutError, ConnectionError) as e:
                logger.debug("Browser.close failed: %s", e)
            self.session.close()
            self.session = None

        if self._process:
            try:
                self._process.terminate()
                self._process.wait(timeout=5)
            except subprocess.TimeoutExpired:
                self._process.kill()
            self._process = None

    def wait_for_exit(self) -> None:
        """Block until the browser process exits."""
        if self._process is not None:
            self._process.wait()

    def request(self, method: str, params: Optional[Dict[str, Any]] = None, timeout: float = 10.0) -> Dict[str, Any]:
        """Send a CDP request on the page session."""
        if self.session is None:
            raise RuntimeError("Not connected to browser")
        return self.session.request(method, params, timeout=timeout)

    # Navigation methods

    def navigate(self, url: str, wait_for_load: bool = True, timeout: float = 30.0) -> None:
        """Navigate to a URL and optionally wait for load.

        Args:
            url: URL to navigate to.
            wait_for_load: Whether to wait for page load.
            timeout: Maximum time to wait for load.
        """
        logger.info("Navigating to %s", url)
        result = self.request("Page.navigate", {"url": url})

        if "errorText" in result:
            raise RuntimeError(f"Navigation failed: {result['errorText']}")

        if wait_for_load:
            try:
                self.session.wait_event("Page.loadEventFired", timeout=timeout)
            except TimeoutError:
                # Page might still be usable even if load event times out
                logger.warning("Page load event timed out for %s", url)

    def get_current_url(self) -> str:
        """Get the current page URL."""
        history = self.request("Page.getNavigationHistory")
        index = history.get("currentIndex", 0)
        entries = history.get("entries", [])
        if entries and index < len(entries):
            return entries[index].get("url", "")
        return ""

    # Mouse input methods

    def mouse_click(self, x: float, y: float, button: str = "left") -> None:
        """Click at viewport coordinates with trusted input events.

        Args:
            x: X coordinate.
            y: Y coordinate.
            button: Mouse button ('left', 'right', 'middle').
        """
        self.request("Input.dispatchMouseEvent", {"type": "mouseMoved", "x": x, "y": y})
        for event_type in ("mousePressed", "mouseReleased"):
            self.request("Input.dispatchMouseEvent", {
                "type": event_type,
                "x": x,
                "y": y,
                "button": button,
                "clickCount": 1,
            })

    def viewport_center(self) -> Tuple[float, float]:
        """Get the center of the layout viewport."""
        metrics = self.request("Page.getLayoutMetrics")
        viewport = metrics.get("cssLayoutViewport") or metrics.get("layoutViewport", {})
        return (
            viewport.get("clientWidth", 0) / 2.0,
            viewport.get("clientHeight", 0) / 2.0,
        )
