"""
Pydantic data models for the line measurement pipeline.

Every value that crosses a stage boundary or the worker/reader boundary is
one of these models. Published values are treated as immutable.
"""

import math
from enum import Enum
from typing import List, Optional, Tuple

import numpy as np
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class AlignmentMethod(str, Enum):
    """How a relative depth field was mapped to meters."""
    LEAST_SQUARES = "least_squares"
    HEURISTIC = "heuristic"
    IDENTITY = "identity"


class MeasurementStatus(str, Enum):
    """Outcome of measuring one line."""
    OK = "ok"
    INVALID_DEPTH = "invalid_depth"
    INVALID_INTRINSICS = "invalid_intrinsics"


class DepthField(BaseModel):
    """
    Dense depth map, rows indexed by y.

    Invalid pixels carry NaN. The array is copied on construction and made
    read-only, so a published field cannot change under a reader.
    """
    values: np.ndarray

    model_config = ConfigDict(arbitrary_types_allowed=True, frozen=True)

    @field_validator("values", mode="before")
    @classmethod
    def _as_readonly_float(cls, v):
        arr = np.array(v, dtype=np.float32, copy=True)
        if arr.ndim != 2:
            raise ValueError(f"depth field must be 2-D, got shape {arr.shape}")
        if arr.shape[0] == 0 or arr.shape[1] == 0:
            raise ValueError("depth field must not be empty")
        arr.setflags(write=False)
        return arr

    @property
    def width(self):
        return int(self.values.shape[1])

    @property
    def height(self):
        return int(self.values.shape[0])

    @property
    def size(self):
        """(width, height)."""
        return (self.width, self.height)

    def valid_mask(self):
        """Boolean mask of pixels holding a finite, positive depth."""
        with np.errstate(invalid="ignore"):
            return np.isfinite(self.values) & (self.values > 0)


class CameraIntrinsics(BaseModel):
    """Pinhole intrinsics together with the resolution they were measured at."""
    fx: float
    fy: float
    cx: float
    cy: float
    width: int = Field(..., gt=0)
    height: int = Field(..., gt=0)

    model_config = ConfigDict(extra="forbid", frozen=True)

    def scaled_to(self, width, height):
        """
        Intrinsics for a target resolution.

        fx and cx scale with the width ratio, fy and cy with the height ratio.
        """
        if (width, height) == (self.width, self.height):
            return self
        sx = width / self.width
        sy = height / self.height
        return CameraIntrinsics(
            fx=self.fx * sx,
            fy=self.fy * sy,
            cx=self.cx * sx,
            cy=self.cy * sy,
            width=width,
            height=height,
        )


class Point3D(BaseModel):
    """A point in camera space, meters. X right, Y down, Z forward."""
    x: float
    y: float
    z: float

    model_config = ConfigDict(extra="forbid", frozen=True)

    def distance_to(self, other):
        return math.sqrt(
            (self.x - other.x) ** 2 + (self.y - other.y) ** 2 + (self.z - other.z) ** 2
        )


class LineSegment2D(BaseModel):
    """A detected line in detection image pixel coordinates."""
    line_id: int
    x1: float
    y1: float
    x2: float
    y2: float

    model_config = ConfigDict(extra="forbid", frozen=True)

    @property
    def start(self):
        return (self.x1, self.y1)

    @property
    def end(self):
        return (self.x2, self.y2)

    @property
    def pixel_length(self):
        return math.hypot(self.x2 - self.x1, self.y2 - self.y1)


class LineSegment3D(BaseModel):
    """
    A measured line. Only built by the measurer.

    Failed measurements have no endpoints and length 0.0; a degenerate but
    valid detection also has length 0.0, told apart by ``status``.
    """
    source: LineSegment2D
    start: Optional[Point3D] = None
    end: Optional[Point3D] = None
    length: float = 0.0
    status: MeasurementStatus = MeasurementStatus.OK

    model_config = ConfigDict(extra="forbid", frozen=True)

    @property
    def valid(self):
        return self.status == MeasurementStatus.OK


class AlignmentParameters(BaseModel):
    """Affine map from relative depth units to meters."""
    scale: float = 1.0
    shift: float = 0.0
    sample_count: int = 0
    valid: bool = False
    method: AlignmentMethod = AlignmentMethod.IDENTITY

    model_config = ConfigDict(extra="forbid", frozen=True)

    @model_validator(mode="after")
    def _invalid_means_identity(self):
        if not self.valid and (
            self.scale != 1.0 or self.shift != 0.0 or self.method != AlignmentMethod.IDENTITY
        ):
            raise ValueError("invalid alignment must be the identity mapping")
        return self

    @classmethod
    def identity(cls, sample_count=0):
        return cls(scale=1.0, shift=0.0, sample_count=sample_count, valid=False)

    @property
    def metric(self):
        """True when lengths derived from this alignment are in meters."""
        return self.valid and self.method == AlignmentMethod.LEAST_SQUARES


class SelectionState(BaseModel):
    """Currently selected line, if any."""
    selected_index: Optional[int] = None
    length: Optional[float] = None
    valid: bool = False

    model_config = ConfigDict(extra="forbid", frozen=True)

    @classmethod
    def none(cls):
        return cls()

    @property
    def is_selected(self):
        return self.selected_index is not None


class FrameResult(BaseModel):
    """Everything one processed frame publishes."""
    frame_index: int
    alignment: AlignmentParameters
    depth: DepthField
    lines: List[LineSegment3D] = Field(default_factory=list)
    ranked: List[LineSegment3D] = Field(default_factory=list)
    image_width: int
    image_height: int
    metric_trusted: bool = False
    reused_alignment: bool = False

    model_config = ConfigDict(frozen=True)

    @property
    def image_size(self) -> Tuple[int, int]:
        return (self.image_width, self.image_height)

    def summary(self):
        """JSON-safe dict without the dense depth field."""
        return {
            "frame_index": self.frame_index,
            "alignment": self.alignment.model_dump(mode="json"),
            "depth_size": list(self.depth.size),
            "image_size": [self.image_width, self.image_height],
            "metric_trusted": self.metric_trusted,
            "reused_alignment": self.reused_alignment,
            "lines": [seg.model_dump(mode="json") for seg in self.lines],
            "ranked_ids": [seg.source.line_id for seg in self.ranked],
        }


class PublishedState(BaseModel):
    """The single value readers of the result store see."""
    version: int
    result: FrameResult
    selection: SelectionState = Field(default_factory=SelectionState)

    model_config = ConfigDict(frozen=True)
