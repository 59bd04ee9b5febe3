#!/usr/bin/env python3
"""
Video Saver - Command Line Interface

Write a directory of images, or the frames of an existing video, to a new
video file.

Usage:
    video-saver frames/ output.avi --fps 30
    video-saver frames/ output.mp4 --fps 25 --audio recording.mp4
    video-saver input.avi output.mp4 --side-by-side 2

Examples:
    video-saver renders/ result.avi --codec XVID
    video-saver camera.mp4 result.mp4 --audio camera.mp4
"""

import sys
import argparse
import logging
from pathlib import Path
from typing import Iterator, List, Optional

import cv2
import numpy as np

from .errors import VideoSaverError
from .video import VideoSaver

logger = logging.getLogger(__name__)

IMAGE_EXTENSIONS = {'.png', '.jpg', '.jpeg', '.bmp', '.tif', '.tiff', '.webp'}


def setup_logging(verbose: bool = False, log_file: Optional[str] = None):
    """Configure logging"""
    level = logging.DEBUG if verbose else logging.INFO

    handlers = [logging.StreamHandler()]

    if log_file:
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(
        level=level,
        format='%(asctime)s [%(levelname)s] %(name)s: %(message)s',
        datefmt='%H:%M:%S',
        handlers=handlers
    )


def iter_source_frames(source: Path) -> Iterator[np.ndarray]:
    """
    Yield frames from an image directory (name order) or a video file.

    Args:
        source: Directory of images or path to a video

    Returns:
        Iterator of BGR frames
    """
    if source.is_dir():
        paths = sorted(p for p in source.iterdir() if p.suffix.lower() in IMAGE_EXTENSIONS)
        if not paths:
            raise FileNotFoundError(f"No images found in {source}")
        for path in paths:
            frame = cv2.imread(str(path), cv2.IMREAD_COLOR)
            if frame is None:
                logger.warning(f"Skipping unreadable image: {path}")
                continue
            yield frame
        return

    capture = cv2.VideoCapture(str(source))
    if not capture.isOpened():
        raise FileNotFoundError(f"Could not open video: {source}")
    try:
        while True:
            ok, frame = capture.read()
            if not ok:
                break
            yield frame
    finally:
        capture.release()


def run(args) -> int:
    source = Path(args.source)
    if not source.exists():
        print(f"\nError: source not found: {source}")
        return 1

    try:
        saver = VideoSaver(
            args.output,
            codec=args.codec,
            fps=args.fps,
            audio_path=args.audio,
            config_dir=args.config_dir
        )
    except VideoSaverError as e:
        print(f"\nError: {e}")
        return 1

    group: List[np.ndarray] = []
    try:
        with saver:
            for frame in iter_source_frames(source):
                group.append(frame)
                if len(group) == args.side_by_side:
                    saver.write(group)
                    group = []
            if group:
                logger.warning(f"Dropping {len(group)} trailing frame(s) that do not fill a group")
    except (VideoSaverError, FileNotFoundError) as e:
        print(f"\nError: {e}")
        return 1

    report = saver.close()
    if not report.ok:
        for error in report.errors:
            print(f"\nError: {error}")
        return 1

    print(f"\nSaved {saver.frame_count} frames to {args.output}")
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point"""
    parser = argparse.ArgumentParser(
        description="Video Saver - Write image sequences to video files",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  video-saver frames/ output.avi --fps 30
  video-saver frames/ output.mp4 --audio recording.mp4
  video-saver input.avi output.mp4 --side-by-side 2
        """
    )

    parser.add_argument(
        'source',
        help='Directory of images or a video file'
    )

    parser.add_argument(
        'output',
        help='Output video path (.mp4 is encoded with ffmpeg)'
    )

    parser.add_argument(
        '--fps',
        type=float,
        default=30.0,
        help='Frames per second (default: 30)'
    )

    parser.add_argument(
        '--codec', '-c',
        default='MJPG',
        help='Four character codec for non-mp4 output (default: MJPG)'
    )

    parser.add_argument(
        '--audio', '-a',
        help='Add the audio track of this file (mp4 output only)'
    )

    parser.add_argument(
        '--side-by-side', '-n',
        type=int,
        default=1,
        help='Concatenate this many consecutive frames horizontally (default: 1)'
    )

    parser.add_argument(
        '--config-dir',
        help='Directory containing defaults.yaml'
    )

    # Logging
    parser.add_argument(
        '--verbose', '-v',
        action='store_true',
        help='Enable verbose logging'
    )

    parser.add_argument(
        '--log-file',
        type=str,
        help='Save logs to file'
    )

    args = parser.parse_args(argv)

    if args.side_by_side < 1:
        parser.error("--side-by-side must be at least 1")

    setup_logging(args.verbose, args.log_file)

    return run(args)


if __name__ == "__main__":
    sys.exit(main())
