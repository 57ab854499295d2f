"""Tests for the frame pipeline and background processor."""

import os

import numpy as np
import pytest

from linemeasure.config import LineMeasureConfig
from linemeasure.io.save_artifacts import DebugArtifactWriter
from linemeasure.models import AlignmentMethod, CameraIntrinsics, LineSegment2D
from linemeasure.pipeline import FrameProcessor, process_frame, write_debug_artifacts
from linemeasure.sources import DepthEstimator, FramePacket, LineDetector


@pytest.fixture
def image_intrinsics():
    """Intrinsics at the 128x96 detection image resolution."""
    return CameraIntrinsics(fx=100.0, fy=100.0, cx=64.0, cy=48.0, width=128, height=96)


@pytest.fixture
def scene_lines():
    return [
        LineSegment2D(line_id=0, x1=10, y1=10, x2=110, y2=10),
        LineSegment2D(line_id=1, x1=20, y1=80, x2=100, y2=30),
        LineSegment2D(line_id=2, x1=60, y1=40, x2=62, y2=41),
    ]


class FixedDepth(DepthEstimator):
    def __init__(self, values):
        self.values = values
        self.calls = 0

    def estimate(self, image):
        self.calls += 1
        return self.values


class FixedLines(LineDetector):
    def __init__(self, lines):
        self.lines = lines

    def detect(self, image):
        return list(self.lines)


class BrokenDepth(DepthEstimator):
    def estimate(self, image):
        raise RuntimeError("model not loaded")


class TestProcessFrame:
    """Tests for the synchronous calibrate-and-measure step."""

    def test_metric_with_reference(self, relative_ramp, metric_reference, scene_lines,
                                   image_intrinsics, default_config):
        result = process_frame(
            relative_ramp, metric_reference, scene_lines, image_intrinsics, (128, 96),
            default_config, frame_index=7,
        )

        assert result.frame_index == 7
        assert result.metric_trusted
        assert result.alignment.method == AlignmentMethod.LEAST_SQUARES
        assert result.depth.size == (64, 48)
        assert len(result.lines) == 3
        assert all(seg.valid for seg in result.lines)
        # calibrated field equals the reference map at matching pixels
        assert result.depth.values[0, 0] == pytest.approx(metric_reference.values[0, 0], rel=1e-4)

    def test_ranked_respects_config(self, relative_ramp, metric_reference, scene_lines,
                                    image_intrinsics, default_config):
        default_config.measure.top_k = 1
        result = process_frame(
            relative_ramp, metric_reference, scene_lines, image_intrinsics, (128, 96),
            default_config,
        )

        assert len(result.ranked) == 1
        assert result.ranked[0].length == max(seg.length for seg in result.lines)

    def test_short_line_excluded_from_ranking(self, relative_ramp, metric_reference, scene_lines,
                                              image_intrinsics, default_config):
        result = process_frame(
            relative_ramp, metric_reference, scene_lines, image_intrinsics, (128, 96),
            default_config,
        )

        assert 2 not in [seg.source.line_id for seg in result.ranked]
        assert result.lines[2].valid

    def test_no_reference_is_not_trusted(self, relative_ramp, scene_lines, image_intrinsics,
                                         default_config):
        result = process_frame(
            relative_ramp, None, scene_lines, image_intrinsics, (128, 96), default_config,
        )

        assert result.alignment.method == AlignmentMethod.HEURISTIC
        assert not result.metric_trusted
        finite = result.depth.values[np.isfinite(result.depth.values)]
        assert finite.min() == pytest.approx(0.5, abs=1e-5)
        assert finite.max() == pytest.approx(5.0, abs=1e-5)

    def test_invalid_alignment_published_flagged(self, relative_ramp, scene_lines,
                                                 image_intrinsics, default_config):
        sparse = np.full((24, 32), np.nan)
        result = process_frame(
            relative_ramp, sparse, scene_lines, image_intrinsics, (128, 96), default_config,
        )

        assert not result.alignment.valid
        assert not result.metric_trusted
        assert not result.reused_alignment
        np.testing.assert_array_equal(result.depth.values, relative_ramp.values)

    def test_reuse_last_alignment(self, relative_ramp, metric_reference, scene_lines,
                                  image_intrinsics, default_config):
        good = process_frame(
            relative_ramp, metric_reference, scene_lines, image_intrinsics, (128, 96),
            default_config,
        )
        default_config.pipeline.on_invalid_alignment = "reuse_last"

        result = process_frame(
            relative_ramp, np.full((24, 32), np.nan), scene_lines, image_intrinsics, (128, 96),
            default_config, frame_index=2, fallback_alignment=good.alignment,
        )

        assert result.reused_alignment
        assert result.metric_trusted
        assert result.alignment == good.alignment
        assert result.lines[0].length == pytest.approx(good.lines[0].length)

    def test_reuse_last_without_history(self, relative_ramp, scene_lines, image_intrinsics,
                                        default_config):
        default_config.pipeline.on_invalid_alignment = "reuse_last"

        result = process_frame(
            relative_ramp, np.full((24, 32), np.nan), scene_lines, image_intrinsics, (128, 96),
            default_config,
        )

        assert not result.reused_alignment
        assert not result.metric_trusted

    def test_bad_image_size(self, relative_ramp, scene_lines, image_intrinsics):
        with pytest.raises(ValueError):
            process_frame(relative_ramp, None, scene_lines, image_intrinsics, (0, 96))

    def test_summary_is_json_safe(self, relative_ramp, metric_reference, scene_lines,
                                  image_intrinsics):
        import json

        result = process_frame(relative_ramp, metric_reference, scene_lines, image_intrinsics, (128, 96))
        summary = json.loads(json.dumps(result.summary()))

        assert summary["alignment"]["method"] == "least_squares"
        assert len(summary["lines"]) == 3
        assert summary["lines"][0]["status"] == "ok"


class TestDebugArtifacts:
    def test_writes_depth_and_error_views(self, temp_dir, relative_ramp, metric_reference,
                                          scene_lines, image_intrinsics, default_config):
        result = process_frame(relative_ramp, metric_reference, scene_lines, image_intrinsics, (128, 96))
        writer = DebugArtifactWriter(temp_dir, "frame_000000")

        write_debug_artifacts(result, metric_reference, writer, default_config, selected_index=0)

        depth_dir = os.path.join(temp_dir, "debug", "frame_000000", "depth")
        for name in ["depth.png", "lines.png", "error.png", "error_stats.json"]:
            assert os.path.exists(os.path.join(depth_dir, name)), f"Missing {name}"


class TestFrameProcessor:
    """Tests for decimated background processing."""

    def _packet(self, image_intrinsics, absolute=None):
        return FramePacket(
            image=np.zeros((96, 128, 3), dtype=np.uint8),
            intrinsics=image_intrinsics,
            absolute_depth=absolute,
        )

    def test_decimation(self, relative_ramp, metric_reference, scene_lines, image_intrinsics):
        config = LineMeasureConfig()
        config.pipeline.decimation = 3
        estimator = FixedDepth(relative_ramp.values)

        with FrameProcessor(estimator, FixedLines(scene_lines), config) as processor:
            futures = [
                processor.submit(self._packet(image_intrinsics, metric_reference.values))
                for _ in range(7)
            ]
            done = [f.result() for f in futures if f is not None]

        assert [f is not None for f in futures] == [False, False, True, False, False, True, False]
        assert [r.frame_index for r in done] == [3, 6]
        assert estimator.calls == 2
        assert processor.store.snapshot().result.frame_index == 6

    def test_short_detections_filtered(self, relative_ramp, scene_lines, image_intrinsics):
        config = LineMeasureConfig()
        config.pipeline.decimation = 1

        with FrameProcessor(FixedDepth(relative_ramp.values), FixedLines(scene_lines), config) as processor:
            result = processor.submit(self._packet(image_intrinsics)).result()

        assert [seg.source.line_id for seg in result.lines] == [0, 1]

    def test_collaborator_failure_keeps_published_state(self, relative_ramp, scene_lines,
                                                        image_intrinsics):
        config = LineMeasureConfig()
        config.pipeline.decimation = 1

        with FrameProcessor(FixedDepth(relative_ramp.values), FixedLines(scene_lines), config) as good:
            good.submit(self._packet(image_intrinsics)).result()
        store = good.store
        before = store.snapshot()

        with FrameProcessor(BrokenDepth(), FixedLines(scene_lines), config, store=store) as broken:
            assert broken.submit(self._packet(image_intrinsics)).result() is None

        assert store.snapshot() is before

    def test_processing_failure_is_traced(self, scene_lines, image_intrinsics, capsys):
        """A frame that fails inside the pipeline is dropped with an ERROR trace."""
        from linemeasure.tracer import configure_tracer

        config = LineMeasureConfig()
        config.pipeline.decimation = 1
        configure_tracer(enabled=True, level="ERROR")

        # a 1-D depth output cannot become a depth field
        with FrameProcessor(FixedDepth(np.ones(8)), FixedLines(scene_lines), config) as processor:
            assert processor.submit(self._packet(image_intrinsics)).result() is None

        assert processor.store.snapshot() is None
        err = capsys.readouterr().err
        assert "ERROR" in err
        assert "processing failed" in err

    def test_nan_detection_does_not_drop_frame(self, relative_ramp, scene_lines, image_intrinsics):
        config = LineMeasureConfig()
        config.pipeline.decimation = 1
        bad = LineSegment2D(line_id=9, x1=float("nan"), y1=0, x2=100, y2=0)

        with FrameProcessor(FixedDepth(relative_ramp.values), FixedLines(scene_lines + [bad]), config) as processor:
            result = processor.submit(self._packet(image_intrinsics)).result()

        assert [seg.source.line_id for seg in result.lines] == [0, 1]
        assert processor.store.snapshot().result is result

    def test_missing_depth_drops_frame(self, scene_lines, image_intrinsics):
        config = LineMeasureConfig()
        config.pipeline.decimation = 1

        with FrameProcessor(FixedDepth(None), FixedLines(scene_lines), config) as processor:
            assert processor.submit(self._packet(image_intrinsics)).result() is None

        assert processor.store.snapshot() is None

    def test_reuse_last_across_frames(self, relative_ramp, metric_reference, scene_lines,
                                      image_intrinsics):
        config = LineMeasureConfig()
        config.pipeline.decimation = 1
        config.pipeline.on_invalid_alignment = "reuse_last"

        with FrameProcessor(FixedDepth(relative_ramp.values), FixedLines(scene_lines), config) as processor:
            first = processor.submit(self._packet(image_intrinsics, metric_reference.values)).result()
            second = processor.submit(self._packet(image_intrinsics, np.full((24, 32), np.nan))).result()

        assert first.metric_trusted and not first.reused_alignment
        assert second.reused_alignment
        assert second.alignment == first.alignment
        assert processor.store.snapshot().result.frame_index == 2
