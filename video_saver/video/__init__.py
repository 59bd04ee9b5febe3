"""
Video Saver Video Package
Handles frame buffering, streaming encoding and ffmpeg muxing
"""

from .frame_writer import FrameWriter
from .ffmpeg_wrapper import FFmpegWrapper, ProcessResult
from .saver import (
    BufferedPipeline,
    DirectEncode,
    SaverConfig,
    SessionState,
    StepResult,
    TeardownReport,
    VideoSaver,
)

__all__ = [
    'FrameWriter',
    'FFmpegWrapper',
    'ProcessResult',
    'VideoSaver',
    'SaverConfig',
    'SessionState',
    'DirectEncode',
    'BufferedPipeline',
    'StepResult',
    'TeardownReport',
]
