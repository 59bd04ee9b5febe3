"""
FFmpeg Wrapper - Python interface to the ffmpeg binary

This module handles:
- Locating the ffmpeg executable
- Command construction as argument lists (no shell strings)
- Running a command to completion and capturing its output
"""

import os
import re
import shlex
import shutil
import subprocess
import logging
from dataclasses import dataclass
from typing import List, Optional

from ..config import EncodingDefaults

logger = logging.getLogger(__name__)


@dataclass
class ProcessResult:
    """Outcome of one ffmpeg invocation"""
    command: List[str]
    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    @property
    def command_line(self) -> str:
        """Shell-quoted command, suitable for pasting into a terminal"""
        return shlex.join(self.command)


class FFmpegWrapper:
    """
    Thin wrapper around the ffmpeg executable.

    Builds the two commands the buffered pipeline needs (image sequence to
    video, audio merge) and runs them. Calls block until ffmpeg exits; there
    is no timeout.
    """

    def __init__(self, ffmpeg_path: Optional[str] = None):
        """
        Initialize FFmpeg wrapper.

        Args:
            ffmpeg_path: Optional path to FFmpeg executable
        """
        self.ffmpeg_path = ffmpeg_path or self._find_ffmpeg()
        self._version: Optional[str] = None

    def _find_ffmpeg(self) -> Optional[str]:
        """Find FFmpeg executable"""
        # Try imageio_ffmpeg first (bundled, always works)
        try:
            import imageio_ffmpeg
            exe = imageio_ffmpeg.get_ffmpeg_exe()
            if exe and os.path.isfile(exe):
                return exe
        except (ImportError, RuntimeError):
            pass

        for name in ("ffmpeg", "ffmpeg.exe"):
            found = shutil.which(name)
            if found:
                return found

        return None

    @property
    def version(self) -> str:
        """FFmpeg version string, 'unknown' if it cannot be determined"""
        if self._version is None:
            result = self.run([self.ffmpeg_path or "ffmpeg", '-version'], quiet=True)
            first_line = result.stdout.split('\n')[0]
            match = re.search(r'ffmpeg version (\S+)', first_line)
            self._version = match.group(1) if match else "unknown"
        return self._version

    def is_available(self) -> bool:
        """Check that ffmpeg exists and runs"""
        if not self.ffmpeg_path:
            return False
        result = self.run([self.ffmpeg_path, '-version'], quiet=True)
        if result.ok:
            logger.debug(f"FFmpeg found: {self.ffmpeg_path} (version: {self.version})")
        return result.ok

    def build_sequence_command(
        self,
        frame_pattern: str,
        output_path: str,
        fps: float,
        settings: Optional[EncodingDefaults] = None
    ) -> List[str]:
        """
        Build the image sequence to video command.

        Args:
            frame_pattern: Path pattern for frames (e.g., "frames/%012d_rendered.jpg")
            output_path: Output video file path, overwritten if it exists
            fps: Frame rate of the image sequence
            settings: Encoding settings

        Returns:
            List of command arguments
        """
        if settings is None:
            settings = EncodingDefaults()

        cmd = [self.ffmpeg_path, '-y']

        # Frame rate for input (important for image sequences)
        cmd.extend(['-framerate', str(fps)])
        cmd.extend(['-start_number', '0'])
        cmd.extend(['-i', frame_pattern])

        cmd.extend(['-c:v', settings.codec])
        cmd.extend(['-crf', str(settings.crf)])
        if settings.preset:
            cmd.extend(['-preset', settings.preset])
        cmd.extend(['-pix_fmt', settings.pixel_format])

        if settings.codec in ('libx264', 'libx265'):
            # Ensure dimensions are even (required by most H.264/H.265 decoders)
            cmd.extend(['-vf', 'pad=ceil(iw/2)*2:ceil(ih/2)*2'])

        cmd.append('-an')

        output_ext = os.path.splitext(output_path)[1].lower()
        if output_ext in ('.mp4', '.m4v', '.mov'):
            # Move the MOOV atom to the front so the file can start
            # playing before it has finished downloading / copying
            cmd.extend(['-movflags', '+faststart'])

        cmd.append(output_path)
        return cmd

    def build_audio_merge_command(
        self,
        video_path: str,
        audio_path: str,
        output_path: str
    ) -> List[str]:
        """
        Build the command that adds an audio track to a video.

        Both streams are copied without re-encoding and the output stops at
        the end of the shorter one.

        Args:
            video_path: Video whose first video stream is kept
            audio_path: File whose first audio stream is added
            output_path: Output video path

        Returns:
            List of command arguments
        """
        return [
            self.ffmpeg_path, '-y',
            '-i', video_path,
            '-i', audio_path,
            '-map', '0:v:0',
            '-map', '1:a:0',
            '-c', 'copy',
            '-shortest',  # Match shorter of video/audio
            output_path
        ]

    def run(self, cmd: List[str], quiet: bool = False) -> ProcessResult:
        """
        Run a command and wait for it to finish.

        Args:
            cmd: Command arguments
            quiet: Log at DEBUG instead of INFO

        Returns:
            ProcessResult with exit status and captured output
        """
        log = logger.debug if quiet else logger.info
        log(f"FFmpeg command: {shlex.join(cmd)}")

        try:
            result = subprocess.run(cmd, capture_output=True, text=True)
        except OSError as e:
            # Executable missing or not runnable
            return ProcessResult(command=list(cmd), returncode=127, stderr=str(e))

        return ProcessResult(
            command=list(cmd),
            returncode=result.returncode,
            stdout=result.stdout,
            stderr=result.stderr
        )
