# -*- coding: utf-8 -*-
"""REST API for remote playback control."""

import asyncio
import math
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from fastapi import Body, FastAPI, HTTPException, Query
from pydantic import BaseModel, Field

from .bridge import Status

if TYPE_CHECKING:
    from .browser import BrowserManager
    from .runner import AgentRunner


class SeekRequest(BaseModel):
    """Request body for seek operations."""
    position_seconds: float = Field(ge=0)
    keep_paused: bool = False


class MutedRequest(BaseModel):
    """Request body for mute operations."""
    muted: bool


class VolumeRequest(BaseModel):
    """Request body for volume operations."""
    level: float = Field(ge=0.0, le=1.0)


class VideoInfo(BaseModel):
    """State of a tracked video."""
    id: int
    playing: bool
    buffering: str
    awaiting_resume: bool
    active: bool


class StatusResponse(BaseModel):
    """Response for status endpoint."""
    status: str
    url: Optional[str] = None
    videos: List[VideoInfo]
    active_player: Optional[int] = None


class CommandResponse(BaseModel):
    """Completion of a playback command."""
    success: bool
    status: int
    message: str
    data: Dict[str, Any] = {}


class BoundingBox(BaseModel):
    """Absolute element box; fields are None when nothing was found."""
    x: Optional[float] = None
    y: Optional[float] = None
    width: Optional[float] = None
    height: Optional[float] = None


class ClickTarget(BoundingBox):
    """Box of a click target and whether it was clicked."""
    clicked: bool = False


# HTTP status for failed command completions
_HTTP_STATUS = {
    Status.TARGET_NOT_FOUND: 404,
    Status.INVALID_ARGUMENT: 422,
    Status.UNKNOWN_COMMAND: 400,
}


def _finite(value: float) -> Optional[float]:
    return value if math.isfinite(value) else None


def create_api(runner: "AgentRunner", browser: Optional["BrowserManager"] = None) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        runner: Runner hosting the playback agent.
        browser: BrowserManager instance, used for the current URL.

    Returns:
        Configured FastAPI application.
    """
    app = FastAPI(
        title="Playback Control API",
        description="Remote control and telemetry for video playback in a controlled browser",
        version="0.1.0",
    )

    # Store references
    app.state.runner = runner
    app.state.browser = browser

    timeout = runner.config.command_timeout

    async def wait(future) -> Any:
        # Shielded: on timeout the command keeps waiting for its gesture
        return await asyncio.wait_for(asyncio.shield(asyncio.wrap_future(future)), timeout=timeout)

    async def run_command(future, message: str) -> CommandResponse:
        try:
            status, data = await wait(future)
        except asyncio.TimeoutError:
            raise HTTPException(
                status_code=504,
                detail=f"Command still pending after {timeout:.0f}s (no user gesture observed)",
            )
        if status != Status.OK:
            raise HTTPException(
                status_code=_HTTP_STATUS.get(status, 500),
                detail={"status": int(status), "name": status.name, "data": data},
            )
        return CommandResponse(success=True, status=int(status), message=message, data=data)

    # Status endpoints

    @app.get("/status", response_model=StatusResponse)
    async def get_status():
        """Get application status and tracked videos."""
        try:
            videos = await wait(runner.videos())
            url = browser.get_current_url() if browser is not None else None
        except Exception as e:
            raise HTTPException(status_code=500, detail=str(e))
        active = next((video["id"] for video in videos if video["active"]), None)
        return StatusResponse(status="running", url=url, videos=videos, active_player=active)

    @app.get("/videos", response_model=List[VideoInfo])
    async def list_videos():
        """List tracked videos."""
        try:
            return await wait(runner.videos())
        except Exception as e:
            raise HTTPException(status_code=500, detail=str(e))

    # Playback control endpoints

    @app.post("/videos/{video_id}/play", response_model=CommandResponse)
    async def play(video_id: int):
        """Start playback; completes once the page reports it playing."""
        return await run_command(runner.submit_command("play", video_id), "Playback started")

    @app.post("/videos/{video_id}/pause", response_model=CommandResponse)
    async def pause(video_id: int):
        """Pause playback; completes once the page reports it paused."""
        return await run_command(runner.submit_command("pause", video_id), "Playback paused")

    @app.post("/videos/{video_id}/time", response_model=CommandResponse)
    async def seek(video_id: int, request: SeekRequest):
        """Seek to an absolute position in seconds."""
        payload = {"time": request.position_seconds, "keepPaused": request.keep_paused}
        return await run_command(
            runner.submit_command("time", video_id, payload),
            f"Seeked to {request.position_seconds:.3f}s",
        )

    @app.post("/videos/{video_id}/muted", response_model=CommandResponse)
    async def set_muted(video_id: int, request: MutedRequest):
        """Mute or unmute."""
        return await run_command(
            runner.submit_command("muted", video_id, {"value": request.muted}),
            "Muted" if request.muted else "Unmuted",
        )

    @app.post("/videos/{video_id}/volume", response_model=CommandResponse)
    async def set_volume(video_id: int, request: VolumeRequest):
        """Set volume level (0.0-1.0)."""
        return await run_command(
            runner.submit_command("volume", video_id, {"value": request.level}),
            f"Volume set to {request.level}",
        )

    @app.get("/videos/{video_id}/playing", response_model=CommandResponse)
    async def is_playing(video_id: int):
        """Check whether the video is currently playing."""
        return await run_command(runner.submit_command("isPlaying", video_id), "Playback state")

    @app.post("/command/{address}", response_model=CommandResponse)
    async def raw_command(address: str, payload: Optional[Dict[str, Any]] = Body(default=None)):
        """Run a command in wire form, e.g. ``time:3`` with ``{"time": 12.5}``."""
        return await run_command(runner.submit_wire_command(address, payload), f"{address} completed")

    # Telemetry and geometry endpoints

    @app.get("/events")
    async def get_events(since: int = Query(0, ge=0), limit: int = Query(100, ge=0, le=1000)):
        """Get recent host events (telemetry, responses, gesture requests)."""
        return {"events": runner.telemetry.entries(since=since, limit=limit)}

    @app.get("/position", response_model=BoundingBox)
    async def get_position(selector: str):
        """Get the absolute bounding box of the first element matching a selector."""
        try:
            rect = await wait(runner.bbox(selector))
        except asyncio.TimeoutError:
            raise HTTPException(status_code=504, detail="Position query still pending")
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))
        except Exception as e:
            raise HTTPException(status_code=500, detail=str(e))
        return BoundingBox(
            x=_finite(rect.x),
            y=_finite(rect.y),
            width=_finite(rect.width),
            height=_finite(rect.height),
        )

    @app.post("/click-target", response_model=ClickTarget)
    async def click_target(selector: str):
        """Wait for an element matching a selector and click its centre with real input."""
        try:
            rect = await wait(runner.click_target(selector))
        except asyncio.TimeoutError:
            raise HTTPException(status_code=504, detail=f"No element matching '{selector}' appeared")
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))
        except Exception as e:
            raise HTTPException(status_code=500, detail=str(e))
        target = ClickTarget(
            x=_finite(rect.x),
            y=_finite(rect.y),
            width=_finite(rect.width),
            height=_finite(rect.height),
        )
        x, y = rect.x + rect.width / 2.0, rect.y + rect.height / 2.0
        if browser is not None and math.isfinite(x) and math.isfinite(y):
            try:
                browser.mouse_click(x, y)
            except Exception as e:
                raise HTTPException(status_code=500, detail=str(e))
            target.clicked = True
        return target

    return app
