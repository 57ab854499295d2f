"""
Input loading for offline runs of the pipeline.

Depth fields come from .npy files or raw float32 .bin dumps (row-major,
little-endian, no header), lines from JSON and intrinsics from YAML or JSON.
"""

import json
import os

import numpy as np
import yaml

from linemeasure.models import CameraIntrinsics, DepthField, LineSegment2D
from linemeasure.tracer import get_tracer, trace


@trace(label="load_depth")
def load_depth(path, width=None, height=None):
    """
    Load a depth field.

    Raw .bin files carry no shape, so width and height are required for them.

    Raises FileNotFoundError if path does not exist.
    Raises ValueError if the file cannot be interpreted as a depth field.
    """
    tracer = get_tracer()

    if not os.path.exists(path):
        raise FileNotFoundError(f"Depth file not found: {path}")

    ext = os.path.splitext(path)[1].lower()
    if ext == ".npy":
        values = np.load(path, allow_pickle=False)
        if values.ndim == 3 and values.shape[0] == 1:
            values = values[0]
    elif ext == ".bin":
        if not width or not height:
            raise ValueError(f"Raw depth file needs width and height: {path}")
        values = np.fromfile(path, dtype="<f4")
        if values.size != width * height:
            raise ValueError(
                f"Raw depth file {path} holds {values.size} values, "
                f"expected {width}x{height}={width * height}"
            )
        values = values.reshape(height, width)
    else:
        raise ValueError(f"Unsupported depth format: {path}")

    try:
        field = DepthField(values=values)
    except ValueError as e:
        raise ValueError(f"Invalid depth field in {path}: {e}") from e

    tracer.event(f"Loaded depth: {field.width}x{field.height}")
    return field


def parse_lines(data):
    """
    Build LineSegment2D objects from decoded JSON.

    Accepts a list of [x1, y1, x2, y2] rows or a list of objects with x1..y2
    and an optional line_id; a top-level {"lines": [...]} wrapper is
    unwrapped. Missing ids default to the position in the list.
    """
    if isinstance(data, dict):
        data = data.get("lines", [])

    lines = []
    for i, item in enumerate(data):
        if isinstance(item, dict):
            lines.append(LineSegment2D(
                line_id=item.get("line_id", i),
                x1=item["x1"], y1=item["y1"], x2=item["x2"], y2=item["y2"],
            ))
        else:
            if len(item) != 4:
                raise ValueError(f"Line {i} must have 4 coordinates, got {len(item)}")
            x1, y1, x2, y2 = item
            lines.append(LineSegment2D(line_id=i, x1=x1, y1=y1, x2=x2, y2=y2))
    return lines


def load_lines(path):
    """Load detected lines from a JSON file."""
    if not os.path.exists(path):
        raise FileNotFoundError(f"Lines file not found: {path}")

    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)

    return parse_lines(data)


def load_intrinsics(path):
    """Load camera intrinsics from a YAML or JSON file."""
    if not os.path.exists(path):
        raise FileNotFoundError(f"Intrinsics file not found: {path}")

    with open(path, "r", encoding="utf-8") as f:
        # JSON is a subset of YAML
        data = yaml.safe_load(f) or {}

    try:
        return CameraIntrinsics.model_validate(data)
    except ValueError as e:
        raise ValueError(f"Invalid intrinsics in {path}: {e}") from e
