# -*- coding: utf-8 -*-
"""Error types shared by the playback agent."""


class PlaybackControlError(Exception):
    """Base class for all playback agent errors."""


class OriginBlocked(PlaybackControlError):
    """A frame tried to inspect a document of a different origin."""


class TargetNotFound(PlaybackControlError, LookupError):
    """A command addressed a video that is unknown or no longer attached."""

    def __init__(self, video_id):
        super().__init__(f"No live video with id {video_id!r}")
        self.video_id = video_id


class ProtocolIgnored(PlaybackControlError):
    """A cross-frame message is foreign or malformed and must be dropped."""
