"""
Video Saver - Session Tests
============================
Covers construction checks, frame composition, size locking, the direct
OpenCV backend and the ffmpeg teardown pipeline.

Pipeline tests use a recording FFmpegWrapper so that no ffmpeg binary is
needed; the end-to-end test at the bottom runs the real one when available.

Run:
    python -m pytest test_saver.py -v --tb=short
"""

from __future__ import annotations

import os
import sys
from pathlib import Path
from typing import List

sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

import cv2
import numpy as np
import pytest

from video_saver import (
    BackendOpenError,
    ConfigurationError,
    InputError,
    PipelineError,
    SaverSettings,
)
from video_saver.video import (
    BufferedPipeline,
    DirectEncode,
    FFmpegWrapper,
    ProcessResult,
    SessionState,
    VideoSaver,
)


class RecordingFFmpeg(FFmpegWrapper):
    """FFmpegWrapper that records commands instead of running them."""

    def __init__(self, available: bool = True, returncodes: List[int] = None):
        super().__init__(ffmpeg_path="ffmpeg")
        self.available = available
        self.returncodes = list(returncodes or [])
        self.commands: List[List[str]] = []

    def is_available(self) -> bool:
        return self.available

    def run(self, cmd, quiet=False) -> ProcessResult:
        self.commands.append(list(cmd))
        code = self.returncodes.pop(0) if self.returncodes else 0
        if code == 0:
            # Pretend ffmpeg produced its output file
            Path(cmd[-1]).write_bytes(b"video with audio" if "-shortest" in cmd else b"silent video")
        return ProcessResult(command=list(cmd), returncode=code, stderr="" if code == 0 else "boom")


def make_frame(width: int = 64, height: int = 48, value: int = 0, channels: int = 3) -> np.ndarray:
    shape = (height, width) if channels == 1 else (height, width, channels)
    return np.full(shape, value, dtype=np.uint8)


def count_frames(path: Path) -> int:
    capture = cv2.VideoCapture(str(path))
    count = 0
    while True:
        ok, _ = capture.read()
        if not ok:
            break
        count += 1
    capture.release()
    return count


# ---------------------------------------------------------------------------
# Construction
# ---------------------------------------------------------------------------

class TestConstruction:

    def test_direct_strategy_does_not_touch_filesystem(self, tmp_path):
        saver = VideoSaver(tmp_path / "out.avi", codec="MJPG", fps=30)
        assert isinstance(saver.strategy, DirectEncode)
        assert not saver.config.uses_external_pipeline
        assert saver.state is SessionState.UNSTARTED
        assert saver.frame_size is None
        assert not saver.is_opened()
        assert list(tmp_path.iterdir()) == []

    @pytest.mark.parametrize("fps", [0, -1, -29.97, float("nan"), float("inf")])
    def test_non_positive_fps_rejected(self, tmp_path, fps):
        with pytest.raises(ConfigurationError):
            VideoSaver(tmp_path / "out.avi", fps=fps)

    def test_audio_requires_mp4(self, tmp_path):
        with pytest.raises(ConfigurationError) as info:
            VideoSaver(tmp_path / "out.avi", fps=30, audio_path=tmp_path / "audio.wav")
        assert "MP4" in str(info.value)
        assert list(tmp_path.iterdir()) == []

    def test_missing_ffmpeg_rejected_for_mp4(self, tmp_path):
        with pytest.raises(ConfigurationError) as info:
            VideoSaver(tmp_path / "out.mp4", fps=30, ffmpeg=RecordingFFmpeg(available=False))
        assert "FFmpeg" in str(info.value)

    def test_mp4_selects_pipeline_and_derives_temp_dir(self, tmp_path):
        saver = VideoSaver(tmp_path / "clip.MP4", fps=30, ffmpeg=RecordingFFmpeg())
        assert isinstance(saver.strategy, BufferedPipeline)
        assert saver.config.uses_external_pipeline
        temp_dir = saver.strategy.temp_dir
        assert temp_dir.parent == tmp_path
        assert temp_dir.name.startswith("clip")
        assert temp_dir.name != "clip"
        # Derived only, created on the first write
        assert not temp_dir.exists()

    def test_temp_dir_is_deterministic(self, tmp_path):
        first = VideoSaver(tmp_path / "clip.mp4", fps=30, ffmpeg=RecordingFFmpeg())
        second = VideoSaver(tmp_path / "clip.mp4", fps=30, ffmpeg=RecordingFFmpeg())
        assert first.strategy.temp_dir == second.strategy.temp_dir

    def test_pipeline_extensions_from_settings(self, tmp_path):
        settings = SaverSettings(pipeline_extensions=[".MKV"])
        saver = VideoSaver(tmp_path / "out.mkv", fps=30, ffmpeg=RecordingFFmpeg(), settings=settings)
        assert isinstance(saver.strategy, BufferedPipeline)
        saver = VideoSaver(tmp_path / "out.mp4", fps=30, settings=settings)
        assert isinstance(saver.strategy, DirectEncode)


# ---------------------------------------------------------------------------
# Writing
# ---------------------------------------------------------------------------

class TestWrite:

    @pytest.fixture
    def saver(self, tmp_path):
        saver = VideoSaver(tmp_path / "out.mp4", fps=30, ffmpeg=RecordingFFmpeg(returncodes=[1]))
        yield saver
        saver.close()

    def test_empty_list_rejected(self, saver):
        with pytest.raises(InputError):
            saver.write([])
        assert saver.state is SessionState.UNSTARTED

    def test_empty_frame_rejected(self, saver):
        with pytest.raises(InputError):
            saver.write([make_frame(), np.zeros((0, 0, 3), dtype=np.uint8)])
        with pytest.raises(InputError):
            saver.write([None])
        assert saver.state is SessionState.UNSTARTED

    def test_first_write_fixes_frame_size(self, saver):
        saver.write(make_frame(64, 48))
        assert saver.state is SessionState.STARTED
        assert saver.frame_size == (64, 48)
        assert saver.is_opened()
        assert saver.strategy.temp_dir.is_dir()

    def test_size_mismatch_rejected_and_state_kept(self, saver):
        saver.write(make_frame(64, 48))
        with pytest.raises(InputError):
            saver.write(make_frame(32, 48))
        with pytest.raises(InputError):
            saver.write(make_frame(64, 40))
        assert saver.frame_size == (64, 48)
        assert saver.frame_count == 1

        saver.write(make_frame(64, 48))
        assert saver.frame_count == 2

    def test_frames_are_concatenated_horizontally(self, saver):
        saver.write([make_frame(30, 48), make_frame(34, 48)])
        assert saver.frame_size == (64, 48)

        # Same total width from different pieces is fine
        saver.write([make_frame(20, 48), make_frame(20, 48), make_frame(24, 48)])
        saver.write(make_frame(64, 48))
        assert saver.frame_count == 3

        with pytest.raises(InputError):
            saver.write([make_frame(30, 40), make_frame(34, 40)])
        assert saver.frame_size == (64, 48)

    def test_unequal_heights_in_one_call_rejected(self, saver):
        with pytest.raises(InputError):
            saver.write([make_frame(32, 48), make_frame(32, 40)])
        assert saver.state is SessionState.UNSTARTED
        assert saver.frame_size is None

    def test_channel_count_is_locked(self, saver):
        saver.write(make_frame(64, 48, channels=3))
        with pytest.raises(InputError):
            saver.write(make_frame(64, 48, channels=1))
        with pytest.raises(InputError):
            saver.write(np.zeros((48, 64, 3), dtype=np.uint16))
        assert saver.frame_count == 1

    def test_frames_are_numbered_in_order(self, saver):
        for i in range(3):
            saver.write(make_frame(value=i * 100))
        names = sorted(p.name for p in saver.strategy.temp_dir.iterdir())
        assert names == [
            "000000000000_rendered.jpg",
            "000000000001_rendered.jpg",
            "000000000002_rendered.jpg",
        ]

    def test_write_after_close_rejected(self, saver):
        saver.write(make_frame())
        saver.close()
        assert saver.state is SessionState.CLOSED
        with pytest.raises(InputError):
            saver.write(make_frame())


# ---------------------------------------------------------------------------
# Direct OpenCV backend
# ---------------------------------------------------------------------------

class TestDirectEncode:

    def test_writes_every_frame(self, tmp_path):
        output = tmp_path / "out.avi"
        with VideoSaver(output, codec="MJPG", fps=25) as saver:
            for i in range(7):
                saver.write(make_frame(64, 48, value=i * 30))
            assert saver.is_opened()

        report = saver.close()
        assert report.ok
        assert report.steps == []
        assert output.exists()
        assert count_frames(output) == 7

        capture = cv2.VideoCapture(str(output))
        assert int(capture.get(cv2.CAP_PROP_FRAME_WIDTH)) == 64
        assert int(capture.get(cv2.CAP_PROP_FRAME_HEIGHT)) == 48
        assert capture.get(cv2.CAP_PROP_FPS) == pytest.approx(25, abs=0.01)
        capture.release()

    def test_side_by_side_frames(self, tmp_path):
        output = tmp_path / "wide.avi"
        with VideoSaver(output, codec="MJPG", fps=10) as saver:
            for _ in range(3):
                saver.write([make_frame(32, 48), make_frame(32, 48, value=255)])

        capture = cv2.VideoCapture(str(output))
        assert int(capture.get(cv2.CAP_PROP_FRAME_WIDTH)) == 64
        capture.release()
        assert count_frames(output) == 3

    def test_encoder_open_failure(self, tmp_path):
        saver = VideoSaver(tmp_path / "missing" / "out.avi", codec="MJPG", fps=30)
        with pytest.raises(BackendOpenError) as info:
            saver.write(make_frame())
        assert "parent folder" in str(info.value)
        assert not saver.is_opened()
        with pytest.raises(BackendOpenError):
            saver.write(make_frame())
        assert saver.close().ok

    @pytest.mark.parametrize("codec", ["H26", "", None])
    def test_invalid_codec_rejected_at_construction(self, tmp_path, codec):
        with pytest.raises(ConfigurationError):
            VideoSaver(tmp_path / "out.avi", codec=codec, fps=30)
        assert list(tmp_path.iterdir()) == []

    def test_integer_fourcc_accepted(self, tmp_path):
        fourcc = cv2.VideoWriter_fourcc(*"MJPG")
        saver = VideoSaver(tmp_path / "out.avi", codec=fourcc, fps=30)
        assert saver.config.fourcc == fourcc


# ---------------------------------------------------------------------------
# ffmpeg pipeline teardown
# ---------------------------------------------------------------------------

class TestPipelineTeardown:

    def test_close_without_frames_is_noop(self, tmp_path):
        ffmpeg = RecordingFFmpeg()
        saver = VideoSaver(tmp_path / "out.mp4", fps=30, ffmpeg=ffmpeg)
        report = saver.close()
        assert report.ok
        assert report.steps == []
        assert ffmpeg.commands == []
        assert not (tmp_path / "out.mp4").exists()

    def test_encode_and_cleanup(self, tmp_path):
        ffmpeg = RecordingFFmpeg()
        output = tmp_path / "out.mp4"
        saver = VideoSaver(output, fps=30, ffmpeg=ffmpeg)
        for i in range(5):
            saver.write(make_frame(64, 48, value=i * 50))
        temp_dir = saver.strategy.temp_dir

        report = saver.close()

        assert report.ok
        assert report.completed_steps == ["encode_sequence", "cleanup"]
        assert len(ffmpeg.commands) == 1
        cmd = ffmpeg.commands[0]
        assert cmd[cmd.index("-framerate") + 1] == "30"
        assert cmd[cmd.index("-i") + 1] == str(temp_dir / "%012d_rendered.jpg")
        assert "-y" in cmd
        assert cmd[-1] == str(output)
        assert not temp_dir.exists()
        assert output.read_bytes() == b"silent video"

    def test_close_runs_once(self, tmp_path):
        ffmpeg = RecordingFFmpeg()
        saver = VideoSaver(tmp_path / "out.mp4", fps=30, ffmpeg=ffmpeg)
        saver.write(make_frame())
        first = saver.close()
        assert saver.close() is first
        assert len(ffmpeg.commands) == 1

    def test_failed_encode_keeps_frames(self, tmp_path):
        ffmpeg = RecordingFFmpeg(returncodes=[1])
        saver = VideoSaver(tmp_path / "out.mp4", fps=30, ffmpeg=ffmpeg)
        values = [0, 120, 240]
        for value in values:
            saver.write(make_frame(value=value))
        temp_dir = saver.strategy.temp_dir

        report = saver.close()

        assert not report.ok
        assert len(report.errors) == 1
        error = report.errors[0]
        assert isinstance(error, PipelineError)
        assert error.step == "encode_sequence"
        assert error.returncode == 1
        assert "%012d_rendered.jpg" in error.command
        assert report.step("cleanup").skipped

        frames = sorted(temp_dir.glob("*_rendered.jpg"))
        assert len(frames) == 3
        for path, value in zip(frames, values):
            image = cv2.imread(str(path))
            assert image.shape == (48, 64, 3)
            assert abs(float(image.mean()) - value) < 5

    def test_audio_merge_replaces_output(self, tmp_path):
        ffmpeg = RecordingFFmpeg()
        output = tmp_path / "out.mp4"
        audio = tmp_path / "voice.m4a"
        saver = VideoSaver(output, fps=30, audio_path=audio, ffmpeg=ffmpeg)
        saver.write(make_frame())

        report = saver.close()

        assert report.ok
        assert report.completed_steps == ["encode_sequence", "cleanup", "merge_audio"]
        merge = ffmpeg.commands[1]
        assert merge[merge.index("-i") + 1] == str(output)
        assert str(audio) in merge
        assert "-shortest" in merge
        assert merge[merge.index("-c") + 1] == "copy"
        assert merge[-1] == str(saver.strategy.audio_temp_path)
        assert output.read_bytes() == b"video with audio"
        assert not saver.strategy.audio_temp_path.exists()

    def test_failed_audio_merge_keeps_silent_video(self, tmp_path):
        ffmpeg = RecordingFFmpeg(returncodes=[0, 1])
        output = tmp_path / "out.mp4"
        saver = VideoSaver(output, fps=30, audio_path=tmp_path / "voice.m4a", ffmpeg=ffmpeg)
        saver.write(make_frame())

        report = saver.close()

        assert [e.step for e in report.errors] == ["merge_audio"]
        assert "-shortest" in report.errors[0].command
        assert report.completed_steps == ["encode_sequence", "cleanup"]
        assert output.read_bytes() == b"silent video"

    def test_failed_encode_skips_audio_merge(self, tmp_path):
        ffmpeg = RecordingFFmpeg(returncodes=[1])
        saver = VideoSaver(tmp_path / "out.mp4", fps=30, audio_path=tmp_path / "a.wav", ffmpeg=ffmpeg)
        for _ in range(5):
            saver.write(make_frame())

        report = saver.close()

        assert len(ffmpeg.commands) == 1
        assert [e.step for e in report.errors] == ["encode_sequence"]
        assert "-framerate" in report.errors[0].command
        assert report.step("merge_audio").skipped
        assert len(list(saver.strategy.temp_dir.glob("*.jpg"))) == 5

    def test_new_session_discards_frames_kept_by_failed_session(self, tmp_path):
        output = tmp_path / "out.mp4"
        failed = VideoSaver(output, fps=30, ffmpeg=RecordingFFmpeg(returncodes=[1]))
        for _ in range(5):
            failed.write(make_frame(value=200))
        assert not failed.close().ok
        temp_dir = failed.strategy.temp_dir
        assert len(list(temp_dir.glob("*_rendered.jpg"))) == 5

        ffmpeg = RecordingFFmpeg(returncodes=[1])
        saver = VideoSaver(output, fps=30, ffmpeg=ffmpeg)
        assert saver.strategy.temp_dir == temp_dir
        for _ in range(2):
            saver.write(make_frame(value=10))

        frames = sorted(temp_dir.glob("*_rendered.jpg"))
        assert [p.name for p in frames] == ["000000000000_rendered.jpg", "000000000001_rendered.jpg"]
        for path in frames:
            assert abs(float(cv2.imread(str(path)).mean()) - 10) < 5
        saver.close()
        assert len(ffmpeg.commands) == 1

    def test_context_manager_closes_on_error(self, tmp_path):
        ffmpeg = RecordingFFmpeg()
        saver = VideoSaver(tmp_path / "out.mp4", fps=30, ffmpeg=ffmpeg)
        with pytest.raises(InputError):
            with saver:
                saver.write(make_frame(64, 48))
                saver.write(make_frame(32, 48))
        assert saver.state is SessionState.CLOSED
        assert len(ffmpeg.commands) == 1


# ---------------------------------------------------------------------------
# End to end with a real ffmpeg binary
# ---------------------------------------------------------------------------

@pytest.mark.skipif(not FFmpegWrapper().is_available(), reason="ffmpeg not available")
def test_mp4_end_to_end(tmp_path):
    output = tmp_path / "out.mp4"
    with VideoSaver(output, fps=30) as saver:
        for i in range(5):
            saver.write(make_frame(64, 48, value=i * 50))
        temp_dir = saver.strategy.temp_dir

    assert saver.close().ok
    assert not temp_dir.exists()
    assert output.exists()

    capture = cv2.VideoCapture(str(output))
    assert int(capture.get(cv2.CAP_PROP_FRAME_WIDTH)) == 64
    assert int(capture.get(cv2.CAP_PROP_FRAME_HEIGHT)) == 48
    capture.release()
    assert count_frames(output) == 5
