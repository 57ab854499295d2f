"""
Metric measurement of detected 2D lines.

Lifts both endpoints of each detected line into camera space using the
calibrated depth field and reports the Euclidean length between them.
"""

import math

from linemeasure.depth.sample import sample_depth
from linemeasure.geometry.unproject import InvalidIntrinsicsError, unproject
from linemeasure.models import LineSegment3D, MeasurementStatus
from linemeasure.tracer import get_tracer, trace


def _to_field(x, y, image_size, field):
    """Map an image pixel into field pixels, clamped into the field."""
    img_w, img_h = image_size
    fx = x * field.width / img_w
    fy = y * field.height / img_h
    fx = min(max(fx, 0.0), field.width - 1.0)
    fy = min(max(fy, 0.0), field.height - 1.0)
    return fx, fy


def measure_line(line, field, intrinsics, image_size):
    """
    Measure one line.

    Args:
        line: LineSegment2D in detection image pixels
        field: calibrated DepthField in meters
        intrinsics: CameraIntrinsics at their own native resolution
        image_size: (width, height) of the detection image

    Returns:
        LineSegment3D. A failed depth sample, a non-finite endpoint or
        unusable intrinsics give a zero-length segment with a non-ok status;
        no depth is ever made up.

    Raises ValueError if image_size is not positive.
    """
    img_w, img_h = image_size
    if img_w <= 0 or img_h <= 0:
        raise ValueError(f"image size must be positive, got {image_size}")

    # NaN would pass through the clamp and break the sampler
    if not all(math.isfinite(c) for c in (line.x1, line.y1, line.x2, line.y2)):
        return LineSegment3D(source=line, status=MeasurementStatus.INVALID_DEPTH)

    field_intrinsics = intrinsics.scaled_to(field.width, field.height)

    u1, v1 = _to_field(line.x1, line.y1, image_size, field)
    u2, v2 = _to_field(line.x2, line.y2, image_size, field)

    d1 = sample_depth(field, u1, v1)
    d2 = sample_depth(field, u2, v2)
    if d1 is None or d2 is None:
        return LineSegment3D(source=line, status=MeasurementStatus.INVALID_DEPTH)

    try:
        p1 = unproject(u1, v1, d1, field_intrinsics)
        p2 = unproject(u2, v2, d2, field_intrinsics)
    except InvalidIntrinsicsError:
        return LineSegment3D(source=line, status=MeasurementStatus.INVALID_INTRINSICS)

    return LineSegment3D(
        source=line,
        start=p1,
        end=p2,
        length=p1.distance_to(p2),
        status=MeasurementStatus.OK,
    )


@trace(label="measure_lines")
def measure_lines(lines, field, intrinsics, image_size):
    """
    Measure every line independently.

    One failed line never affects the others. Output order matches input.
    """
    tracer = get_tracer()

    segments = [measure_line(line, field, intrinsics, image_size) for line in lines]

    failed = [s for s in segments if not s.valid]
    if failed:
        tracer.event(
            f"{len(failed)}/{len(segments)} lines could not be measured",
            level="WARN",
            statuses=sorted({s.status.value for s in failed}),
        )
    tracer.event(f"Measured {len(segments) - len(failed)} lines")

    return segments


def rank_lines(segments, min_length=0.10, top_k=None):
    """
    Keep valid segments longer than min_length, longest first.

    Ties keep their input order. ``top_k`` of None or 0 keeps all of them.
    Returns a new list; the input is not modified.
    """
    kept = [s for s in segments if s.valid and s.length > min_length]
    kept = sorted(kept, key=lambda s: s.length, reverse=True)
    if top_k:
        kept = kept[:top_k]
    return kept
