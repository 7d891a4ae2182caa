# Copyright (c) Syntropy Systems
"""Fixed windowed-surface camera (column-major 4x4 matrices)."""
from __future__ import annotations

import math

Matrix4 = tuple[float, ...]


def perspective(fov_deg: float, aspect: float, near: float, far: float) -> Matrix4:
    f = 1.0 / math.tan(math.radians(fov_deg) / 2)
    return (
        f / aspect, 0.0, 0.0, 0.0,
        0.0, f, 0.0, 0.0,
        0.0, 0.0, (far + near) / (near - far), -1.0,
        0.0, 0.0, (2 * far * near) / (near - far), 0.0,
    )


def translation(x: float, y: float, z: float) -> Matrix4:
    return (
        1.0, 0.0, 0.0, 0.0,
        0.0, 1.0, 0.0, 0.0,
        0.0, 0.0, 1.0, 0.0,
        x, y, z, 1.0,
    )


def default_camera(width: int, height: int) -> tuple[Matrix4, Matrix4]:
    """Projection and view for the windowed surface: 60 degree fov, scene 2 units out."""
    aspect = width / height if height else 1.0
    return perspective(60.0, aspect, 0.1, 100.0), translation(0.0, 0.0, -2.0)
