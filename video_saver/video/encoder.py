"""
Streaming encoder backed by cv2.VideoWriter
"""

import logging
from typing import Tuple, Union

import cv2

from ..errors import BackendOpenError, ConfigurationError

logger = logging.getLogger(__name__)

Codec = Union[str, int]


def fourcc_from_codec(codec: Codec) -> int:
    """
    Convert a codec identifier to an OpenCV fourcc.

    Args:
        codec: Four character code such as "MJPG", or an integer fourcc

    Returns:
        Integer fourcc
    """
    if isinstance(codec, int):
        return codec
    if not isinstance(codec, str) or len(codec) != 4:
        raise ConfigurationError(
            f"Invalid codec identifier: {codec!r}",
            hint="Use a four character code such as 'MJPG', 'XVID' or 'mp4v'."
        )
    return cv2.VideoWriter_fourcc(*codec)


def open_video(
    path: str,
    codec: Codec,
    fps: float,
    size: Tuple[int, int],
    is_color: bool = True
) -> cv2.VideoWriter:
    """
    Open a streaming video encoder.

    Args:
        path: Output video path
        codec: Codec identifier (see fourcc_from_codec)
        fps: Frames per second
        size: Frame size as (width, height)
        is_color: False for single channel frames

    Returns:
        An opened cv2.VideoWriter
    """
    width, height = size
    writer = cv2.VideoWriter(path, fourcc_from_codec(codec), float(fps), (int(width), int(height)), is_color)

    if not writer.isOpened():
        raise BackendOpenError(
            "Video to write frames could not be opened.",
            path=path,
            hint=(
                "Please, check that:\n"
                "\t1. The path ends in a container extension OpenCV can write (e.g. `.avi`).\n"
                "\t2. The parent folder exists.\n"
                "\t3. OpenCV is built with the FFmpeg codecs needed for the selected codec.\n"
                "\t4. You have write permission for the destination folder."
            )
        )

    logger.info(f"Writing video {path} ({width}x{height} @ {fps} fps)")
    return writer
