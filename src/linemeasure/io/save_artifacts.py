"""
Artifact saving utilities.

Handles writing result JSON and diagnostic images.
"""

import json
import os

import cv2

from linemeasure.tracer import get_tracer


def ensure_dir(path):
    """Create directory if it does not exist."""
    if path:
        os.makedirs(path, exist_ok=True)


def save_image(img, path, max_edge=None):
    """
    Save an RGB or single-channel image to disk.

    Optionally downscales to max_edge while preserving aspect ratio.
    """
    tracer = get_tracer()

    if max_edge and max(img.shape[:2]) > max_edge:
        scale = max_edge / max(img.shape[:2])
        new_size = (int(img.shape[1] * scale), int(img.shape[0] * scale))
        img = cv2.resize(img, new_size, interpolation=cv2.INTER_AREA)

    if len(img.shape) == 3 and img.shape[2] == 3:
        img_bgr = cv2.cvtColor(img, cv2.COLOR_RGB2BGR)
    else:
        img_bgr = img

    ensure_dir(os.path.dirname(path))
    if not cv2.imwrite(path, img_bgr):
        raise ValueError(f"Failed to write image: {path}")
    tracer.event(f"Saved image: {path}")


def save_json(data, path, indent=2):
    """Save a dictionary or Pydantic model to JSON."""
    tracer = get_tracer()

    ensure_dir(os.path.dirname(path))

    if hasattr(data, "model_dump"):
        data = data.model_dump(mode="json")

    with open(path, "w", encoding="utf-8") as f:
        json.dump(data, f, indent=indent, default=str)

    tracer.event(f"Saved JSON: {path}")


def encode_png(img):
    """Encode an RGB image as PNG bytes."""
    if len(img.shape) == 3 and img.shape[2] == 3:
        img = cv2.cvtColor(img, cv2.COLOR_RGB2BGR)
    ok, buf = cv2.imencode(".png", img)
    if not ok:
        raise ValueError("Failed to encode PNG")
    return buf.tobytes()


class DebugArtifactWriter:
    """
    Writes debug artifacts for one frame under <out_dir>/debug/<frame_id>/.
    """

    def __init__(self, out_dir, frame_id, enabled=True, max_edge=1600):
        self.out_dir = out_dir
        self.frame_id = frame_id
        self.enabled = enabled
        self.max_edge = max_edge

    def get_stage_dir(self, stage_name):
        """Get the debug directory for a stage, creating it."""
        path = os.path.join(self.out_dir, "debug", self.frame_id, stage_name)
        ensure_dir(path)
        return path

    def save_image(self, img, stage_name, filename):
        if not self.enabled:
            return
        path = os.path.join(self.get_stage_dir(stage_name), filename)
        save_image(img, path, max_edge=self.max_edge)

    def save_json(self, data, stage_name, filename):
        if not self.enabled:
            return
        path = os.path.join(self.get_stage_dir(stage_name), filename)
        save_json(data, path)
