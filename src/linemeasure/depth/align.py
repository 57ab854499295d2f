"""
Scale/shift alignment of relative depth against metric references.

A monocular depth model gives depth up to an unknown affine transform. When
an active range sensor frame is available, sparse correspondences between
the two fields fix that transform with a closed-form least-squares fit.
Without a reference, the relative range is stretched over an assumed
operating range instead and the result is flagged as heuristic.
"""

import numpy as np

from linemeasure.models import AlignmentMethod, AlignmentParameters, DepthField
from linemeasure.tracer import get_tracer, trace


@trace(label="fit_alignment")
def fit_alignment(relative, absolute, config):
    """
    Fit the affine map from relative depth units to meters.

    Args:
        relative: DepthField from the monocular model
        absolute: DepthField from the range sensor, or None when the sensor
            delivered nothing for this frame
        config: AlignmentConfig

    Returns:
        AlignmentParameters
    """
    if absolute is None:
        return heuristic_alignment(relative, config)

    xs, ys = build_correspondences(relative, absolute, config)
    return solve_scale_shift(xs, ys, config)


def build_correspondences(relative, absolute, config):
    """
    Pair relative and absolute values on a decimated reference grid.

    Each sampled reference pixel maps into the relative field by
    floor(coord * target / source) on each axis, nearest pixel, no
    interpolation. Pairs with a non-finite or non-positive value, or an
    absolute value outside the plausible sensor range, are dropped.

    Returns:
        (relative_values, absolute_values) float64 arrays of equal length
    """
    stride = config.stride
    ref = absolute.values
    rel = relative.values

    ref_ys = np.arange(0, absolute.height, stride)
    ref_xs = np.arange(0, absolute.width, stride)

    rel_ys = np.minimum((ref_ys * relative.height) // absolute.height, relative.height - 1)
    rel_xs = np.minimum((ref_xs * relative.width) // absolute.width, relative.width - 1)

    abs_vals = ref[np.ix_(ref_ys, ref_xs)].astype(np.float64).ravel()
    rel_vals = rel[np.ix_(rel_ys, rel_xs)].astype(np.float64).ravel()

    with np.errstate(invalid="ignore"):
        keep = (
            np.isfinite(abs_vals)
            & np.isfinite(rel_vals)
            & (abs_vals > 0)
            & (rel_vals > 0)
            & (abs_vals >= config.min_absolute_depth)
            & (abs_vals <= config.max_absolute_depth)
        )

    get_tracer().event(
        f"Correspondences: {int(keep.sum())}/{keep.size} accepted",
        level="DEBUG",
    )
    return rel_vals[keep], abs_vals[keep]


def solve_scale_shift(xs, ys, config):
    """
    Ordinary least squares for ys ~= scale * xs + shift.

    Falls back to the identity (valid=False) when there are too few samples,
    the system is degenerate, or the solution is outside sane bounds.
    """
    tracer = get_tracer()

    xs = np.asarray(xs, dtype=np.float64)
    ys = np.asarray(ys, dtype=np.float64)
    n = int(xs.size)

    if n < config.min_samples:
        tracer.event(
            f"Too few correspondences ({n} < {config.min_samples}), using identity",
            level="WARN",
        )
        return AlignmentParameters.identity(sample_count=n)

    sum_x = float(xs.sum())
    sum_y = float(ys.sum())
    sum_xx = float(np.dot(xs, xs))
    sum_xy = float(np.dot(xs, ys))

    denom = n * sum_xx - sum_x * sum_x
    if abs(denom) < config.denom_epsilon:
        tracer.event(f"Degenerate correspondences (denom={denom:.3g}), using identity", level="WARN")
        return AlignmentParameters.identity(sample_count=n)

    scale = (n * sum_xy - sum_x * sum_y) / denom
    shift = (sum_y - scale * sum_x) / n

    if not (0.0 < scale < config.max_scale) or abs(shift) >= config.max_abs_shift:
        tracer.event(
            f"Fit out of bounds (scale={scale:.4g}, shift={shift:.4g}), using identity",
            level="WARN",
        )
        return AlignmentParameters.identity(sample_count=n)

    tracer.event(f"Fitted scale={scale:.4f} shift={shift:.4f} from {n} samples")
    return AlignmentParameters(
        scale=scale,
        shift=shift,
        sample_count=n,
        valid=True,
        method=AlignmentMethod.LEAST_SQUARES,
    )


def heuristic_alignment(relative, config):
    """
    Stretch the valid range of the relative field over the assumed range.

    The minimum maps to heuristic_near and the maximum to heuristic_far.
    A field without spread cannot be stretched and yields the identity.
    """
    tracer = get_tracer()

    valid_values = relative.values[relative.valid_mask()]
    if valid_values.size == 0:
        tracer.event("Relative field has no valid values, using identity", level="WARN")
        return AlignmentParameters.identity()

    lo = float(valid_values.min())
    hi = float(valid_values.max())
    spread = hi - lo
    if spread <= config.denom_epsilon:
        tracer.event(f"Relative field is flat (spread={spread:.3g}), using identity", level="WARN")
        return AlignmentParameters.identity()

    scale = (config.heuristic_far - config.heuristic_near) / spread
    shift = config.heuristic_near - lo * scale

    tracer.event(
        f"No reference depth, heuristic stretch [{lo:.4g}, {hi:.4g}] -> "
        f"[{config.heuristic_near}, {config.heuristic_far}] m",
        level="WARN",
    )
    return AlignmentParameters(
        scale=scale,
        shift=shift,
        sample_count=0,
        valid=True,
        method=AlignmentMethod.HEURISTIC,
    )


def apply_alignment(relative, params):
    """
    Map every valid relative value through value * scale + shift.

    Invalid entries (non-finite or <= 0) keep their original marker, so a
    masked-out pixel never turns into a plausible depth.
    """
    values = relative.values.astype(np.float64)
    valid = relative.valid_mask()
    out = values.copy()
    out[valid] = values[valid] * params.scale + params.shift
    return DepthField(values=out)
