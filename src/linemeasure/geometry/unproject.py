"""
Pinhole projection and unprojection.

Camera-space convention used everywhere in this package: X points right,
Y points down, Z points forward along the optical axis, matching image
coordinates (u right, v down). There is no implicit Y flip. A renderer that
needs a Y-up, right-handed frame converts explicitly with ``to_y_up``.
"""

from linemeasure.models import Point3D


class InvalidIntrinsicsError(ValueError):
    """Raised when focal lengths cannot be used for (un)projection."""


def _check_focal(intrinsics):
    if not (intrinsics.fx > 0 and intrinsics.fy > 0):
        raise InvalidIntrinsicsError(
            f"focal lengths must be positive, got fx={intrinsics.fx} fy={intrinsics.fy}"
        )


def scale_intrinsics(intrinsics, width, height):
    """Rescale intrinsics to a (width, height) field resolution."""
    return intrinsics.scaled_to(width, height)


def unproject(u, v, depth, intrinsics):
    """
    Turn pixel (u, v) at the given depth into a camera-space point.

    ``intrinsics`` must already be at the resolution (u, v) is expressed in.
    Raises InvalidIntrinsicsError for non-positive focal lengths.
    """
    _check_focal(intrinsics)
    return Point3D(
        x=(u - intrinsics.cx) * depth / intrinsics.fx,
        y=(v - intrinsics.cy) * depth / intrinsics.fy,
        z=depth,
    )


def project(point, intrinsics):
    """
    Forward pinhole model, the inverse of ``unproject``.

    Returns (u, v, z). Points at or behind the camera plane raise ValueError.
    """
    _check_focal(intrinsics)
    if point.z <= 0:
        raise ValueError(f"cannot project point with z={point.z}")
    u = intrinsics.fx * point.x / point.z + intrinsics.cx
    v = intrinsics.fy * point.y / point.z + intrinsics.cy
    return u, v, point.z


def to_y_up(point):
    """Convert from the Y-down camera frame to a Y-up, Z-backward frame."""
    return Point3D(x=point.x, y=-point.y, z=-point.z)
