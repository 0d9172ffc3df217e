# -*- coding: utf-8 -*-
"""Configuration management for Playback Control."""

import platform
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional


@dataclass
class Config:
    """Application configuration."""
    
    # CDP settings
    cdp_port: int = 9222
    cdp_host: str = "127.0.0.1"
    
    # API settings
    api_host: str = "0.0.0.0"
    api_port: int = 8080
    
    # Browser settings
    browser_path: Optional[str] = None
    kiosk_mode: bool = True
    
    # Data paths
    data_dir: Path = field(default_factory=lambda: Path.home() / ".playback-control")
    
    # Page settings
    page_url: str = "about:blank"
    video_selector: str = "video"
    frame_url: Optional[str] = None
    
    # Playback monitoring
    frame_interval: float = 1.0 / 60.0
    buffer_margin: float = 1.0
    position_epsilon: float = 0.000001
    playing_ready_state: int = 2
    
    # Host side
    command_timeout: float = 30.0
    telemetry_capacity: int = 500
    
    def __post_init__(self):
        """Normalize paths."""
        self.data_dir = Path(self.data_dir)
    
    @property
    def browser_profile_dir(self) -> Path:
        """Get the browser profile directory, creating it on first use."""
        profile_dir = self.data_dir / "browser_profile"
        profile_dir.mkdir(parents=True, exist_ok=True)
        return profile_dir
    
    @property
    def cdp_url(self) -> str:
        """Get the CDP JSON endpoint URL."""
        return f"http://{self.cdp_host}:{self.cdp_port}/json"


def detect_browser_path() -> str:
    """Detect installed Chromium-based browser path.
    
    Returns:
        Path to the browser executable.
        
    Raises:
        RuntimeError: If no supported browser is found.
    """
    if platform.system().lower() == "darwin":
        for path in (
            "/Applications/Google Chrome.app/Contents/MacOS/Google Chrome",
            "/Applications/Chromium.app/Contents/MacOS/Chromium",
            "/Applications/Brave Browser.app/Contents/MacOS/Brave Browser",
        ):
            if Path(path).exists():
                return path
    else:
        for name in (
            "google-chrome",
            "google-chrome-stable",
            "chromium",
            "chromium-browser",
            "brave-browser",
        ):
            path = shutil.which(name)
            if path:
                return path
    
    raise RuntimeError(
        "No supported browser found. Please install Chrome, Chromium, or Brave, "
        "or pass --browser with the executable path."
    )


# Global config instance
config = Config()
