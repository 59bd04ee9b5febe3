"""
Video Saver Main Package
Writes frame streams to video files through OpenCV or ffmpeg
"""

__version__ = "0.1.0"
__author__ = "Video Saver Project"

from .config import SaverSettings, EncodingDefaults, load_settings
from .errors import (
    VideoSaverError,
    ConfigurationError,
    InputError,
    BackendOpenError,
    PipelineError,
)
from .video import VideoSaver, TeardownReport

__all__ = [
    'VideoSaver',
    'TeardownReport',
    'SaverSettings',
    'EncodingDefaults',
    'load_settings',
    'VideoSaverError',
    'ConfigurationError',
    'InputError',
    'BackendOpenError',
    'PipelineError',
]
