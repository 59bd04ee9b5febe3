"""
Error types raised by the video saver

Every error carries the offending path or command and a hint telling the
operator what to do about it.
"""

from typing import Optional


class VideoSaverError(Exception):
    """Base class for all video saver errors"""

    def __init__(
        self,
        message: str,
        path: Optional[str] = None,
        command: Optional[str] = None,
        hint: Optional[str] = None
    ):
        self.message = message
        self.path = path
        self.command = command
        self.hint = hint
        super().__init__(self._render())

    def _render(self) -> str:
        parts = [self.message]
        if self.path:
            parts.append(f"Path: {self.path}")
        if self.command:
            parts.append(f"Command: {self.command}")
        if self.hint:
            parts.append(self.hint)
        return "\n".join(parts)


class ConfigurationError(VideoSaverError):
    """Invalid settings detected while constructing a saver"""


class InputError(VideoSaverError):
    """Frames handed to write() cannot be accepted"""


class BackendOpenError(VideoSaverError):
    """The streaming encoder could not be opened"""


class PipelineError(VideoSaverError):
    """An ffmpeg step failed during teardown"""

    def __init__(
        self,
        message: str,
        step: str,
        returncode: Optional[int] = None,
        path: Optional[str] = None,
        command: Optional[str] = None,
        hint: Optional[str] = None
    ):
        self.step = step
        self.returncode = returncode
        super().__init__(message, path=path, command=command, hint=hint)
