"""
Interfaces for the external collaborators feeding the pipeline.

The monocular depth model, the line detector and the camera are outside
this package. Frame sources hand packets to the pipeline; the depth model
and line detector are plugged in behind these abstract interfaces.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

import numpy as np

from linemeasure.models import CameraIntrinsics, LineSegment2D


@dataclass(frozen=True)
class FramePacket:
    """One delivered camera frame and what came with it."""
    image: np.ndarray  # colour image, (H, W, 3)
    intrinsics: CameraIntrinsics
    absolute_depth: Optional[np.ndarray] = None  # meters, own resolution

    @property
    def image_size(self):
        return (int(self.image.shape[1]), int(self.image.shape[0]))


class DepthEstimator(ABC):
    """Abstract interface for monocular relative depth models."""

    @abstractmethod
    def estimate(self, image):
        """
        Estimate relative depth for one colour image.

        Returns:
            2-D float array at the model's own resolution, or None on failure
        """
        pass


class LineDetector(ABC):
    """Abstract interface for 2D line segment detectors."""

    @abstractmethod
    def detect(self, image):
        """
        Detect line segments in one image.

        Returns:
            list of LineSegment2D in the image's pixel coordinates
        """
        pass


def lines_from_array(segments, start_id=0):
    """Build LineSegment2D objects from an (N, 4) array of x1, y1, x2, y2."""
    arr = np.asarray(segments, dtype=np.float64).reshape(-1, 4)
    return [
        LineSegment2D(line_id=start_id + i, x1=row[0], y1=row[1], x2=row[2], y2=row[3])
        for i, row in enumerate(arr)
    ]


def filter_short_lines(lines, min_pixel_length=50.0):
    """Drop detections shorter than min_pixel_length, keeping order and ids."""
    return [line for line in lines if line.pixel_length >= min_pixel_length]
