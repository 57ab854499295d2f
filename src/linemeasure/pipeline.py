"""
Frame pipeline orchestrator.

Runs calibration then measurement for one frame, and schedules that work
off the frame-delivery thread for a live stream of frames.
"""

import threading
from concurrent.futures import ThreadPoolExecutor

from linemeasure.config import LineMeasureConfig
from linemeasure.depth.align import apply_alignment, fit_alignment
from linemeasure.lines.measure import measure_lines, rank_lines
from linemeasure.models import DepthField, FrameResult
from linemeasure.sources import filter_short_lines
from linemeasure.state import ResultStore
from linemeasure.tracer import get_tracer, trace
from linemeasure.viz.depth_view import (
    colorize_depth, depth_error_map, draw_lines, get_gradient,
)


def _as_field(values):
    if values is None or isinstance(values, DepthField):
        return values
    return DepthField(values=values)


@trace(label="process_frame")
def process_frame(relative, absolute, lines, intrinsics, image_size, config=None,
                  frame_index=0, fallback_alignment=None):
    """
    Calibrate one frame's relative depth and measure its lines.

    Args:
        relative: DepthField or 2-D array from the monocular model
        absolute: DepthField or 2-D array from the range sensor, or None
        lines: list of LineSegment2D in detection image pixels
        intrinsics: CameraIntrinsics
        image_size: (width, height) of the detection image
        config: LineMeasureConfig
        frame_index: monotonically increasing frame counter
        fallback_alignment: last metric AlignmentParameters, used only with
            the "reuse_last" policy when this frame's fit is invalid

    Returns:
        FrameResult
    """
    tracer = get_tracer()
    config = config or LineMeasureConfig()

    img_w, img_h = image_size
    if img_w <= 0 or img_h <= 0:
        raise ValueError(f"image size must be positive, got {image_size}")

    relative = _as_field(relative)
    absolute = _as_field(absolute)

    with tracer.span("calibrate", module="pipeline", relative=relative, absolute=absolute):
        alignment = fit_alignment(relative, absolute, config.alignment)

        reused = False
        if (
            not alignment.valid
            and config.pipeline.on_invalid_alignment == "reuse_last"
            and fallback_alignment is not None
        ):
            tracer.event(
                f"Frame {frame_index}: alignment invalid, reusing last metric alignment",
                level="WARN",
            )
            alignment = fallback_alignment
            reused = True

        calibrated = apply_alignment(relative, alignment)

    with tracer.span("measure", module="pipeline", lines=lines):
        segments = measure_lines(lines, calibrated, intrinsics, image_size)
        ranked = rank_lines(
            segments,
            min_length=config.measure.min_length,
            top_k=config.measure.top_k,
        )

    if not alignment.metric:
        tracer.event(
            f"Frame {frame_index}: lengths are not metric (method={alignment.method.value})",
            level="WARN",
        )

    return FrameResult(
        frame_index=frame_index,
        alignment=alignment,
        depth=calibrated,
        lines=segments,
        ranked=ranked,
        image_width=int(img_w),
        image_height=int(img_h),
        metric_trusted=alignment.metric,
        reused_alignment=reused,
    )


def write_debug_artifacts(result, absolute, writer, config, selected_index=None):
    """
    Save diagnostic renderings of a frame result.

    Writes depth.png and lines.png, plus error.png and error_stats.json when
    a reference depth field is given.
    """
    stops = get_gradient(config.visualization.gradient)
    depth_img = colorize_depth(result.depth, stops)
    writer.save_image(depth_img, "depth", "depth.png")

    scale = (
        result.depth.width / result.image_width,
        result.depth.height / result.image_height,
    )
    overlay = draw_lines(
        depth_img,
        [seg.source for seg in result.lines],
        selected_index=selected_index,
        scale=scale,
    )
    writer.save_image(overlay, "depth", "lines.png")

    absolute = _as_field(absolute)
    if absolute is not None:
        error_img, stats = depth_error_map(
            result.depth,
            absolute,
            stops,
            max_error=config.visualization.max_error or None,
        )
        writer.save_image(error_img, "depth", "error.png")
        writer.save_json(stats, "depth", "error_stats.json")


class FrameProcessor:
    """
    Runs the pipeline for a live frame stream on a background worker.

    ``submit`` is cheap and safe to call from the frame-delivery thread.
    Every Nth frame is handed to a thread pool; the worker calls the depth
    model and the line detector, processes the frame and publishes it to
    the result store. Older results that finish late are discarded by the
    store.
    """

    def __init__(self, depth_estimator, line_detector, config=None, store=None):
        self.depth_estimator = depth_estimator
        self.line_detector = line_detector
        self.config = config or LineMeasureConfig()
        self.store = store or ResultStore(self.config.selection.threshold)

        self._executor = ThreadPoolExecutor(
            max_workers=self.config.pipeline.max_workers,
            thread_name_prefix="linemeasure-worker",
        )
        self._lock = threading.Lock()
        self._frame_count = 0
        self._last_metric = None  # (frame_index, AlignmentParameters)

    @property
    def frame_count(self):
        return self._frame_count

    def submit(self, packet):
        """
        Offer one delivered frame.

        Returns:
            Future resolving to the FrameResult (or None if the frame was
            dropped by a collaborator failure), or None when the frame is
            skipped by decimation
        """
        with self._lock:
            self._frame_count += 1
            frame_index = self._frame_count

        if frame_index % self.config.pipeline.decimation != 0:
            return None

        return self._executor.submit(self._run, packet, frame_index)

    def _fallback_alignment(self):
        with self._lock:
            return self._last_metric[1] if self._last_metric else None

    def _remember_alignment(self, frame_index, alignment):
        with self._lock:
            if self._last_metric is None or frame_index > self._last_metric[0]:
                self._last_metric = (frame_index, alignment)

    def _run(self, packet, frame_index):
        tracer = get_tracer()

        with tracer.span(f"frame_{frame_index}", module="pipeline"):
            try:
                relative = self.depth_estimator.estimate(packet.image)
                lines = self.line_detector.detect(packet.image)
            except Exception as e:
                tracer.event(
                    f"Frame {frame_index} dropped, collaborator failed: {type(e).__name__}: {e}",
                    level="ERROR",
                )
                return None

            if relative is None:
                tracer.event(f"Frame {frame_index} dropped, no relative depth", level="WARN")
                return None

            lines = filter_short_lines(lines, self.config.pipeline.min_line_pixels)

            try:
                result = process_frame(
                    relative,
                    packet.absolute_depth,
                    lines,
                    packet.intrinsics,
                    packet.image_size,
                    self.config,
                    frame_index=frame_index,
                    fallback_alignment=self._fallback_alignment(),
                )
            except Exception as e:
                tracer.event(
                    f"Frame {frame_index} dropped, processing failed: {type(e).__name__}: {e}",
                    level="ERROR",
                )
                return None

            if result.alignment.metric and not result.reused_alignment:
                self._remember_alignment(frame_index, result.alignment)

            self.store.publish(result)
            return result

    def shutdown(self, wait=True):
        """Stop accepting frames; optionally wait for in-flight work."""
        self._executor.shutdown(wait=wait)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.shutdown(wait=True)
        return False
