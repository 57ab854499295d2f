"""
Sub-pixel depth lookup.
"""

import math


def _is_valid_depth(value):
    return math.isfinite(value) and value > 0.0


def sample_depth(field, x, y):
    """
    Bilinearly interpolate a depth field at (x, y).

    Neighbors are clamped into the field independently. If any of the four
    neighbors is non-finite or <= 0 the sample fails and None is returned;
    invalid depths are never blended. Non-finite coordinates also give None.
    Integer coordinates inside the field return the stored value exactly.
    """
    if not (math.isfinite(x) and math.isfinite(y)):
        return None

    w = field.width
    h = field.height
    values = field.values

    fx0 = math.floor(x)
    fy0 = math.floor(y)
    x0 = min(max(fx0, 0), w - 1)
    x1 = min(max(fx0 + 1, 0), w - 1)
    y0 = min(max(fy0, 0), h - 1)
    y1 = min(max(fy0 + 1, 0), h - 1)

    d00 = float(values[y0, x0])
    d10 = float(values[y0, x1])
    d01 = float(values[y1, x0])
    d11 = float(values[y1, x1])

    if not (_is_valid_depth(d00) and _is_valid_depth(d10)
            and _is_valid_depth(d01) and _is_valid_depth(d11)):
        return None

    # offsets of the unclamped coordinate from the clamped base
    tx = x - x0
    ty = y - y0

    top = d00 * (1.0 - tx) + d10 * tx
    bottom = d01 * (1.0 - tx) + d11 * tx
    return top * (1.0 - ty) + bottom * ty
