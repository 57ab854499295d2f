"""Pytest fixtures for linemeasure tests."""

import tempfile

import numpy as np
import pytest


@pytest.fixture
def temp_dir():
    """Create a temporary directory for test outputs."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield tmpdir


@pytest.fixture
def default_config():
    """Create default pipeline configuration."""
    from linemeasure.config import LineMeasureConfig
    return LineMeasureConfig()


@pytest.fixture
def quadrant_field():
    """4x4 depth field with a constant depth per 2x2 quadrant."""
    from linemeasure.models import DepthField
    return DepthField(values=[
        [1, 1, 2, 2],
        [1, 1, 2, 2],
        [3, 3, 4, 4],
        [3, 3, 4, 4],
    ])


@pytest.fixture
def quadrant_intrinsics():
    """Intrinsics measured at the quadrant field's own resolution."""
    from linemeasure.models import CameraIntrinsics
    return CameraIntrinsics(fx=2.0, fy=2.0, cx=1.5, cy=1.5, width=4, height=4)


@pytest.fixture
def relative_ramp():
    """
    64x48 relative depth field rising smoothly from 0.2 to 1.0.

    Varies along both axes so decimated sampling sees a good spread.
    """
    from linemeasure.models import DepthField
    ys, xs = np.mgrid[0:48, 0:64]
    values = 0.2 + 0.8 * (xs / 63.0) * 0.5 + 0.8 * (ys / 47.0) * 0.5
    return DepthField(values=values)


@pytest.fixture
def metric_reference(relative_ramp):
    """
    Range sensor field at half the relative resolution.

    Built as 2.5 * relative + 0.3 at the pixels the floor mapping picks,
    so a least-squares fit must recover exactly that pair.
    """
    from linemeasure.models import DepthField
    rel = relative_ramp.values.astype(np.float64)
    ref = 2.5 * rel[::2, ::2] + 0.3
    return DepthField(values=ref)


@pytest.fixture(autouse=True)
def _tracer_off():
    """Keep the global tracer disabled between tests."""
    from linemeasure.tracer import configure_tracer
    configure_tracer(enabled=False)
    yield
    configure_tracer(enabled=False)
