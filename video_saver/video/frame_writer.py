"""
Frame Writer - Persists buffered video frames as numbered images

This module handles:
- Writing one frame per call under a caller-chosen name
- Format specific quality parameters
- Frame patterns for ffmpeg
"""

import logging
from pathlib import Path
from typing import List, Optional, Union

import cv2
import numpy as np

logger = logging.getLogger(__name__)


class FrameWriter:
    """
    Writes video frames to a directory through OpenCV.

    Frames are written as supplied (BGR, like everything else handed to
    OpenCV), so resolution and channel count round-trip.
    """

    SUPPORTED_FORMATS = {
        'png': {'extension': '.png', 'quality': None, 'lossless': True},
        'jpg': {'extension': '.jpg', 'quality': 95, 'lossless': False},
        'jpeg': {'extension': '.jpg', 'quality': 95, 'lossless': False},
        'webp': {'extension': '.webp', 'quality': 90, 'lossless': False},
        'bmp': {'extension': '.bmp', 'quality': None, 'lossless': True},
        'tiff': {'extension': '.tiff', 'quality': None, 'lossless': True},
    }

    def __init__(
        self,
        output_dir: Union[str, Path],
        format: str = "jpg",
        quality: Optional[int] = None,
        suffix: str = "_rendered"
    ):
        """
        Initialize the frame writer.

        Args:
            output_dir: Directory to write frames to (created if missing)
            format: Output format (png, jpg, webp, etc.)
            quality: Quality for lossy formats (1-100)
            suffix: Appended to every frame name before the extension
        """
        format = format.lower()
        if format not in self.SUPPORTED_FORMATS:
            raise ValueError(f"Unsupported format: {format}")

        self.output_dir = Path(output_dir)
        self.output_dir.mkdir(parents=True, exist_ok=True)

        self.format = format
        self.format_info = self.SUPPORTED_FORMATS[format]
        self.quality = quality or self.format_info['quality']
        self.suffix = suffix

        # Track written frames
        self.written_frames: List[Path] = []

    def _get_filename(self, name: str) -> Path:
        return self.output_dir / f"{name}{self.suffix}{self.format_info['extension']}"

    def _imwrite_params(self) -> List[int]:
        if self.format in ['jpg', 'jpeg'] and self.quality:
            return [cv2.IMWRITE_JPEG_QUALITY, int(self.quality)]
        if self.format == 'png':
            return [cv2.IMWRITE_PNG_COMPRESSION, 6]
        if self.format == 'webp' and self.quality:
            return [cv2.IMWRITE_WEBP_QUALITY, int(self.quality)]
        return []

    def persist(self, image: np.ndarray, name: str) -> Path:
        """
        Write a single frame to disk.

        Args:
            image: Frame data as numpy array [H, W] or [H, W, C]
            name: Unique frame name, without suffix or extension

        Returns:
            Path to written frame
        """
        filepath = self._get_filename(name)
        if not cv2.imwrite(str(filepath), image, self._imwrite_params()):
            raise OSError(f"Could not write frame image: {filepath}")

        self.written_frames.append(filepath)
        return filepath

    def get_frame_pattern(self, zero_pad: int) -> str:
        """
        Get the frame pattern for FFmpeg.

        Returns:
            Pattern string like "/tmp/dir/%012d_rendered.jpg"
        """
        return str(self.output_dir / f"%0{zero_pad}d{self.suffix}{self.format_info['extension']}")

