"""
False-colour diagnostic renderings.

Calibrated depth and depth error against the range sensor are normalized
to [0, 1] over their valid pixels and mapped through a piecewise-linear
gradient. Invalid pixels render black. These images are for inspection
only; nothing in the measurement path reads them.
"""

import cv2
import numpy as np

from linemeasure.tracer import get_tracer, trace

# (position, RGB) breakpoints, positions strictly increasing from 0 to 1
GRADIENTS = {
    "default": [
        (0.00, (0, 0, 255)),      # blue, near
        (0.25, (0, 255, 255)),    # cyan
        (0.50, (0, 255, 0)),      # green
        (0.75, (255, 255, 0)),    # yellow
        (1.00, (255, 0, 0)),      # red, far
    ],
    "gray": [
        (0.00, (0, 0, 0)),
        (1.00, (255, 255, 255)),
    ],
}

INVALID_COLOR = (0, 0, 0)


def get_gradient(name):
    if name not in GRADIENTS:
        raise ValueError(f"Unknown gradient: {name}")
    return GRADIENTS[name]


def apply_gradient(normalized, valid, stops):
    """
    Map values in [0, 1] through gradient stops.

    Returns an (H, W, 3) uint8 RGB image; pixels outside ``valid`` are black.
    """
    positions = np.array([p for p, _ in stops], dtype=np.float64)
    colors = np.array([c for _, c in stops], dtype=np.float64)

    t = np.clip(np.nan_to_num(normalized, nan=0.0), 0.0, 1.0)
    rgb = np.empty(t.shape + (3,), dtype=np.float64)
    for ch in range(3):
        rgb[..., ch] = np.interp(t, positions, colors[:, ch])

    out = np.rint(rgb).astype(np.uint8)
    out[~valid] = INVALID_COLOR
    return out


def normalize(values, valid, value_range=None):
    """Scale valid values to [0, 1] using value_range or their own min/max."""
    if value_range is None:
        if not valid.any():
            return np.zeros(values.shape, dtype=np.float64)
        lo = float(values[valid].min())
        hi = float(values[valid].max())
    else:
        lo, hi = value_range

    span = hi - lo
    if span <= 0:
        return np.zeros(values.shape, dtype=np.float64)
    return (values.astype(np.float64) - lo) / span


@trace(label="colorize_depth")
def colorize_depth(field, stops=None, value_range=None):
    """Render a depth field as RGB."""
    stops = stops or GRADIENTS["default"]
    valid = field.valid_mask()
    normalized = normalize(field.values, valid, value_range)
    return apply_gradient(normalized, valid, stops)


def resample_nearest(field, width, height):
    """Nearest-pixel resample of a depth array to (width, height)."""
    if field.size == (width, height):
        return field.values
    return cv2.resize(np.array(field.values), (width, height), interpolation=cv2.INTER_NEAREST)


@trace(label="depth_error_map")
def depth_error_map(calibrated, reference, stops=None, max_error=None):
    """
    Render |calibrated - reference| over pixels valid in both.

    The reference is resampled to the calibrated resolution by nearest
    pixel. ``max_error`` fixes the top of the colour scale; None uses the
    largest observed error.

    Returns:
        (rgb_image, stats) with stats holding count, mean, median, rmse and
        max of the absolute error in meters
    """
    tracer = get_tracer()
    stops = stops or GRADIENTS["default"]

    ref = resample_nearest(reference, calibrated.width, calibrated.height)
    cal = calibrated.values

    with np.errstate(invalid="ignore"):
        valid = (
            calibrated.valid_mask()
            & np.isfinite(ref)
            & (ref > 0)
        )
    error = np.zeros(cal.shape, dtype=np.float64)
    error[valid] = np.abs(cal[valid].astype(np.float64) - ref[valid].astype(np.float64))

    count = int(valid.sum())
    if count:
        errs = error[valid]
        stats = {
            "count": count,
            "mean": float(errs.mean()),
            "median": float(np.median(errs)),
            "rmse": float(np.sqrt(np.mean(errs ** 2))),
            "max": float(errs.max()),
        }
    else:
        stats = {"count": 0, "mean": None, "median": None, "rmse": None, "max": None}

    top = max_error if max_error else stats["max"]
    value_range = (0.0, top) if top else None
    normalized = normalize(error, valid, value_range)
    image = apply_gradient(normalized, valid, stops)

    tracer.event(f"Depth error over {count} pixels", mean=stats["mean"])
    return image, stats


def draw_lines(image, lines, selected_index=None, scale=(1.0, 1.0)):
    """
    Overlay 2D lines on an RGB image.

    Unselected lines are thin blue; the selected line is thick green with
    red endpoint dots. ``scale`` maps line coordinates into image pixels.
    """
    if image.ndim == 2:
        overlay = cv2.cvtColor(image, cv2.COLOR_GRAY2RGB)
    else:
        overlay = image.copy()

    sx, sy = scale
    for i, line in enumerate(lines):
        if i == selected_index:
            continue
        pt1 = (int(round(line.x1 * sx)), int(round(line.y1 * sy)))
        pt2 = (int(round(line.x2 * sx)), int(round(line.y2 * sy)))
        cv2.line(overlay, pt1, pt2, (100, 100, 255), 2)

    # selected line last so it stays on top
    if selected_index is not None and 0 <= selected_index < len(lines):
        line = lines[selected_index]
        pt1 = (int(round(line.x1 * sx)), int(round(line.y1 * sy)))
        pt2 = (int(round(line.x2 * sx)), int(round(line.y2 * sy)))
        cv2.line(overlay, pt1, pt2, (0, 255, 0), 4)
        cv2.circle(overlay, pt1, 8, (255, 0, 0), -1)
        cv2.circle(overlay, pt2, 8, (255, 0, 0), -1)

    return overlay
