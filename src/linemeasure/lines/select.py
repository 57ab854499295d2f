"""
Nearest-line selection for UI interaction.

Stored line coordinates live in the detection image resolution. A point
from the UI arrives in display coordinates and is rescaled into that
resolution before any distance is measured, so the threshold is in
detection image pixels as well.
"""

import math


def rescale_point(point, from_size, to_size):
    """Rescale (x, y) from one (width, height) to another, per axis."""
    x, y = point
    from_w, from_h = from_size
    to_w, to_h = to_size
    if from_w <= 0 or from_h <= 0:
        raise ValueError(f"display size must be positive, got {from_size}")
    return x * to_w / from_w, y * to_h / from_h


def point_segment_distance(point, start, end):
    """
    Distance from a point to the closed segment start-end.

    Projects onto the infinite line with t = ((p - p1) . d) / |d|^2, clamps t
    into [0, 1] and measures to the clamped projection. A zero-length
    segment degenerates to point-to-point distance.
    """
    px, py = point
    x1, y1 = start
    x2, y2 = end
    dx = x2 - x1
    dy = y2 - y1

    len_sq = dx * dx + dy * dy
    if len_sq == 0.0:
        return math.hypot(px - x1, py - y1)

    t = ((px - x1) * dx + (py - y1) * dy) / len_sq
    t = min(max(t, 0.0), 1.0)
    return math.hypot(px - (x1 + t * dx), py - (y1 + t * dy))


def select_nearest(point, display_size, lines, working_size, threshold):
    """
    Index of the line closest to a display-space point, or None.

    Args:
        point: (x, y) in display coordinates
        display_size: (width, height) of the display surface
        lines: sequence of LineSegment2D in working coordinates
        working_size: (width, height) the line coordinates are expressed in
        threshold: maximum distance in working pixels, exclusive

    Returns:
        index into ``lines`` or None when no line is strictly closer than
        threshold
    """
    if not lines:
        return None

    p = rescale_point(point, display_size, working_size)

    best_index = None
    best_distance = math.inf
    for i, line in enumerate(lines):
        d = point_segment_distance(p, line.start, line.end)
        if d < best_distance:
            best_distance = d
            best_index = i

    if best_distance < threshold:
        return best_index
    return None
