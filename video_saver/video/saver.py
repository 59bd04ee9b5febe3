"""
Video Saver - Writes a stream of frames into one video file

This module handles:
- Choosing between direct OpenCV encoding and the ffmpeg pipeline
- Opening the backend lazily, once the frame size is known
- Horizontal concatenation of several frames per write
- The teardown pipeline (image sequence to video, cleanup, audio merge)
"""

import math
import os
import shutil
import logging
from dataclasses import dataclass, field, replace
from enum import Enum, auto
from pathlib import Path
from typing import List, Optional, Sequence, Tuple, Union

import cv2
import numpy as np

from ..config import SaverSettings, load_settings
from ..errors import BackendOpenError, ConfigurationError, InputError, PipelineError
from .encoder import Codec, fourcc_from_codec, open_video
from .ffmpeg_wrapper import FFmpegWrapper
from .frame_writer import FrameWriter

logger = logging.getLogger(__name__)

Frames = Union[np.ndarray, Sequence[np.ndarray]]


class SessionState(Enum):
    """Lifecycle of a VideoSaver"""
    UNSTARTED = auto()  # No frame seen yet, backend not created
    STARTED = auto()    # Frame size fixed, backend created
    CLOSED = auto()     # Teardown done, no more writes


@dataclass(frozen=True)
class SaverConfig:
    """Immutable session configuration"""
    output_path: str
    codec: Codec
    fps: float
    audio_path: Optional[str]
    uses_external_pipeline: bool
    fourcc: Optional[int] = None


@dataclass(frozen=True)
class DirectEncode:
    """Frames are streamed into cv2.VideoWriter"""


@dataclass(frozen=True)
class BufferedPipeline:
    """Frames are buffered as images and muxed by ffmpeg at close()"""
    temp_dir: Path
    audio_temp_path: Path


Strategy = Union[DirectEncode, BufferedPipeline]


@dataclass
class StepResult:
    """Record of one teardown step"""
    name: str
    ok: bool
    skipped: bool = False
    command: Optional[str] = None
    returncode: Optional[int] = None
    message: str = ""


@dataclass
class TeardownReport:
    """What close() did, step by step"""
    steps: List[StepResult] = field(default_factory=list)
    errors: List[PipelineError] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors

    @property
    def completed_steps(self) -> List[str]:
        return [step.name for step in self.steps if step.ok and not step.skipped]

    def step(self, name: str) -> Optional[StepResult]:
        for step in self.steps:
            if step.name == name:
                return step
        return None


class VideoSaver:
    """
    Writes frames to a video file.

    Destinations whose extension is listed in ``pipeline_extensions`` (by
    default only ``.mp4``) are produced by ffmpeg from frames buffered on
    disk; anything else is streamed through ``cv2.VideoWriter`` with the
    given codec. The frame size is taken from the first write and cannot
    change afterwards.

    Usage:
        with VideoSaver("out.mp4", fps=30) as saver:
            for frame in frames:
                saver.write(frame)

    close() must run (directly or through ``with``) for .mp4 output to be
    produced. The ffmpeg calls it makes have no timeout.
    """

    def __init__(
        self,
        output_path: Union[str, Path],
        codec: Codec = "MJPG",
        fps: float = 30.0,
        audio_path: Optional[Union[str, Path]] = None,
        ffmpeg: Optional[FFmpegWrapper] = None,
        settings: Optional[SaverSettings] = None,
        config_dir: Optional[Union[str, Path]] = None
    ):
        """
        Initialize the video saver.

        Args:
            output_path: Destination video path
            codec: Codec identifier for the OpenCV encoder (ignored for .mp4)
            fps: Frames per second, must be positive
            audio_path: Optional file whose audio track is added (.mp4 only)
            ffmpeg: FFmpeg wrapper to use instead of locating one
            settings: Saver settings (loaded from config_dir if None)
            config_dir: Directory containing defaults.yaml
        """
        self.settings = settings or load_settings(config_dir)

        output_path = str(output_path)
        extension = Path(output_path).suffix.lower().lstrip('.')
        self.config = SaverConfig(
            output_path=output_path,
            codec=codec,
            fps=fps,
            audio_path=str(audio_path) if audio_path else None,
            uses_external_pipeline=extension in self.settings.pipeline_extensions
        )

        # Sanity checks
        if fps is None or not math.isfinite(fps) or fps <= 0:
            raise ConfigurationError(
                f"Desired frame rate to save the video must be a positive number (got {fps}).",
                path=output_path,
                hint="Pass a positive fps."
            )

        if self.config.audio_path and not self.config.uses_external_pipeline:
            raise ConfigurationError(
                "In order to save the video with audio, it must be in MP4 format.",
                path=output_path,
                hint="Either do not set an audio path, or make sure the output path ends in `.mp4`."
            )

        self.ffmpeg: Optional[FFmpegWrapper] = None
        if self.config.uses_external_pipeline:
            self.ffmpeg = ffmpeg or FFmpegWrapper(self.settings.ffmpeg_path)
            if not self.ffmpeg.is_available():
                raise ConfigurationError(
                    "In order to save the video in MP4 format, FFmpeg must be installed on your system.",
                    path=output_path,
                    hint=(
                        "Use an `.avi` output path, install the imageio-ffmpeg package, "
                        "or install FFmpeg (e.g. `sudo apt-get install ffmpeg`)."
                    )
                )
            base = str(Path(output_path).with_suffix(''))
            self.strategy: Strategy = BufferedPipeline(
                temp_dir=Path(base + self.settings.temp_suffix),
                audio_temp_path=Path(output_path + self.settings.temp_suffix + '.mp4')
            )
        else:
            self.strategy = DirectEncode()
            self.config = replace(self.config, fourcc=fourcc_from_codec(codec))

        self._state = SessionState.UNSTARTED
        self._frame_size: Optional[Tuple[int, int]] = None
        self._channels: Optional[int] = None
        self._dtype: Optional[np.dtype] = None
        self._writer: Optional[cv2.VideoWriter] = None
        self._frame_writer: Optional[FrameWriter] = None
        self._frame_counter = 0
        self._report: Optional[TeardownReport] = None

    # -- State --------------------------------------------------------------

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def frame_size(self) -> Optional[Tuple[int, int]]:
        """(width, height) of every frame, None until the first write"""
        return self._frame_size

    @property
    def frame_count(self) -> int:
        """Number of composed frames accepted so far"""
        return self._frame_counter

    def is_opened(self) -> bool:
        """Whether the backend is ready to accept frames"""
        if isinstance(self.strategy, BufferedPipeline):
            return self._frame_writer is not None
        return self._writer is not None and self._writer.isOpened()

    # -- Writing ------------------------------------------------------------

    def write(self, frames: Frames):
        """
        Write one composed frame.

        Args:
            frames: One image, or a list of equal-height images that are
                concatenated left to right into a single frame
        """
        if self._state is SessionState.CLOSED:
            raise InputError(
                "Cannot write to a video saver that has been closed.",
                path=self.config.output_path,
                hint="Create a new VideoSaver for each video."
            )

        image = self._compose(self._check_frames(frames))
        height, width = image.shape[:2]
        channels = 1 if image.ndim == 2 else image.shape[2]

        # Open video on the first frame, once the resolution is known
        if self._state is SessionState.UNSTARTED:
            self._start((width, height), channels, image.dtype)

        if not self.is_opened():
            raise BackendOpenError(
                "Video to write frames is not opened.",
                path=self.config.output_path,
                hint="The encoder failed to open on the first write; create a new VideoSaver."
            )

        if (width, height) != self._frame_size:
            raise InputError(
                f"Frame size {width}x{height} differs from the video size "
                f"{self._frame_size[0]}x{self._frame_size[1]}.",
                path=self.config.output_path,
                hint="You can only save frames with the same resolution in one video."
            )
        if channels != self._channels or image.dtype != self._dtype:
            raise InputError(
                f"Frame format ({channels} channels, {image.dtype}) differs from the video format "
                f"({self._channels} channels, {self._dtype}).",
                path=self.config.output_path,
                hint="Convert frames to a single color format before writing them."
            )

        if isinstance(self.strategy, BufferedPipeline):
            name = str(self._frame_counter).zfill(self.settings.zero_pad)
            self._frame_writer.persist(image, name)
        else:
            self._writer.write(image)
        self._frame_counter += 1

    def _check_frames(self, frames: Frames) -> List[np.ndarray]:
        if isinstance(frames, np.ndarray):
            frames = [frames]
        frames = list(frames) if frames is not None else []

        if not frames:
            raise InputError(
                "The image(s) to be saved cannot be empty.",
                path=self.config.output_path,
                hint="Pass at least one frame to write()."
            )
        for index, frame in enumerate(frames):
            if frame is None or frame.size == 0 or frame.ndim not in (2, 3):
                raise InputError(
                    f"The image(s) to be saved cannot be empty (frame {index}).",
                    path=self.config.output_path,
                    hint="Every frame must be a non-empty [H, W] or [H, W, C] array."
                )
        return frames

    def _compose(self, frames: List[np.ndarray]) -> np.ndarray:
        if len(frames) == 1:
            return frames[0]

        first = frames[0]
        for frame in frames[1:]:
            if frame.shape[0] != first.shape[0]:
                raise InputError(
                    f"Frames written together must share the same height "
                    f"({frame.shape[0]} != {first.shape[0]}).",
                    path=self.config.output_path,
                    hint="Resize the frames to a common height before writing them."
                )
            if frame.shape[2:] != first.shape[2:] or frame.dtype != first.dtype:
                raise InputError(
                    "Frames written together must share channel count and dtype.",
                    path=self.config.output_path,
                    hint="Convert the frames to a single color format before writing them."
                )
        return np.hstack(frames)

    def _start(self, frame_size: Tuple[int, int], channels: int, dtype: np.dtype):
        self._state = SessionState.STARTED
        self._frame_size = frame_size
        self._channels = channels
        self._dtype = dtype

        if isinstance(self.strategy, BufferedPipeline):
            if self.strategy.temp_dir.exists():
                # Frames kept by an earlier failed session
                logger.warning(f"Removing stale temporary image folder: {self.strategy.temp_dir}")
                shutil.rmtree(self.strategy.temp_dir)
            logger.info(f"Temporarily saving video frames as images in: {self.strategy.temp_dir}")
            self._frame_writer = FrameWriter(
                self.strategy.temp_dir,
                format=self.settings.image_format,
                quality=self.settings.image_quality,
                suffix=self.settings.image_suffix
            )
        else:
            self._writer = open_video(
                self.config.output_path,
                self.config.fourcc,
                self.config.fps,
                frame_size,
                is_color=channels != 1
            )

    # -- Teardown -----------------------------------------------------------

    def close(self) -> TeardownReport:
        """
        Finish the video.

        Runs once; later calls return the first report. Failed ffmpeg steps
        are logged and collected in the report, never raised.
        """
        if self._report is not None:
            return self._report

        self._state = SessionState.CLOSED
        report = TeardownReport()

        if isinstance(self.strategy, BufferedPipeline):
            self._teardown_pipeline(report)
        elif self._writer is not None:
            self._writer.release()
            logger.info(f"Video saved: {self.config.output_path} ({self._frame_counter} frames)")

        self._report = report
        return report

    def _teardown_pipeline(self, report: TeardownReport):
        if self._frame_counter == 0:
            logger.debug("No frames were written, nothing to encode")
            return

        encoded = self._encode_sequence(report)
        self._remove_temp_dir(report, encoded)
        if self.config.audio_path:
            self._merge_audio(report, encoded)

    def _encode_sequence(self, report: TeardownReport) -> bool:
        """Images --> video"""
        pattern = self._frame_writer.get_frame_pattern(self.settings.zero_pad)
        cmd = self.ffmpeg.build_sequence_command(
            pattern,
            self.config.output_path,
            self.config.fps,
            self.settings.encoding
        )
        logger.info(
            f"Creating video out of {self._frame_counter} images in {self.strategy.temp_dir}"
        )
        result = self.ffmpeg.run(cmd)

        if result.ok:
            report.steps.append(StepResult(
                name='encode_sequence', ok=True, command=result.command_line,
                returncode=result.returncode, message=f"Video saved to {self.config.output_path}"
            ))
            return True

        error = PipelineError(
            f"Video {self.config.output_path} could not be saved (exit code: {result.returncode}).",
            step='encode_sequence',
            returncode=result.returncode,
            path=str(self.strategy.temp_dir),
            command=result.command_line,
            hint=(
                "The buffered frames were kept. Make sure you can manually run the command "
                "above (with no errors) from the terminal."
            )
        )
        self._fail(report, error, result.stderr)
        return False

    def _remove_temp_dir(self, report: TeardownReport, encoded: bool):
        temp_dir = self.strategy.temp_dir
        if not encoded:
            logger.warning(f"Temporary images kept in {temp_dir}")
            report.steps.append(StepResult(
                name='cleanup', ok=False, skipped=True,
                message=f"Skipped, encode_sequence failed; images kept in {temp_dir}"
            ))
            return

        try:
            shutil.rmtree(temp_dir)
        except OSError as e:
            error = PipelineError(
                f"Temporary image folder could not be removed: {e}",
                step='cleanup',
                path=str(temp_dir),
                hint="The video was saved; delete the folder manually."
            )
            self._fail(report, error)
            return

        logger.info("Video saved and temporary image folder removed.")
        report.steps.append(StepResult(name='cleanup', ok=True, message=f"Removed {temp_dir}"))

    def _merge_audio(self, report: TeardownReport, encoded: bool):
        """Video (no sound) --> video (with sound)"""
        if not encoded:
            report.steps.append(StepResult(
                name='merge_audio', ok=False, skipped=True,
                message="Skipped, encode_sequence failed"
            ))
            return

        temp_output = str(self.strategy.audio_temp_path)
        cmd = self.ffmpeg.build_audio_merge_command(
            self.config.output_path,
            self.config.audio_path,
            temp_output
        )
        logger.info(f"Adding audio from {self.config.audio_path}")
        result = self.ffmpeg.run(cmd)

        failure = None
        if result.ok:
            try:
                os.replace(temp_output, self.config.output_path)
            except OSError as e:
                failure = f"Could not move {temp_output} over the video: {e}"
        else:
            failure = f"exit code: {result.returncode}"

        if failure is None:
            report.steps.append(StepResult(
                name='merge_audio', ok=True, command=result.command_line,
                returncode=result.returncode, message=f"Audio added to {self.config.output_path}"
            ))
            return

        error = PipelineError(
            f"Video {self.config.output_path} could not be saved with audio ({failure}).",
            step='merge_audio',
            returncode=result.returncode,
            path=self.config.output_path,
            command=result.command_line,
            hint=(
                "The video without audio was kept. Make sure you can manually run the command "
                "above (with no errors) from the terminal."
            )
        )
        self._fail(report, error, result.stderr)

    def _fail(self, report: TeardownReport, error: PipelineError, stderr: str = ""):
        logger.error(str(error))
        if stderr:
            logger.debug(f"FFmpeg output:\n{stderr}")
        report.errors.append(error)
        report.steps.append(StepResult(
            name=error.step, ok=False, command=error.command,
            returncode=error.returncode, message=error.message
        ))

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
