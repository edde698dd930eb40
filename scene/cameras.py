from __future__ import annotations

import math
from dataclasses import dataclass, replace

import numpy as np

from utils.graphics_utils import rdf_to_gl

DEFAULT_ZNEAR = 0.1
DEFAULT_ZFAR = 100.0


@dataclass(frozen=True)
class PinholeCamera:
    """Pinhole camera in the RDF convention (x right, y down, z forward)."""

    width: int
    height: int
    fx: float
    fy: float
    cx: float
    cy: float
    znear: float
    zfar: float
    world_to_camera: np.ndarray

    def __post_init__(self) -> None:
        if self.width <= 0 or self.height <= 0:
            raise ValueError("Camera resolution must be positive.")
        if not 0.0 < self.znear < self.zfar:
            raise ValueError(f"Invalid clipping range: znear={self.znear}, zfar={self.zfar}")

    @classmethod
    def default(cls, width: int, height: int, world_to_camera: np.ndarray | None = None) -> "PinholeCamera":
        """Square-pixel camera with a 90 degree horizontal field of view."""

        return cls(
            width=width,
            height=height,
            fx=width / 2.0,
            fy=width / 2.0,
            cx=(width - 1.0) / 2.0,
            cy=(height - 1.0) / 2.0,
            znear=DEFAULT_ZNEAR,
            zfar=DEFAULT_ZFAR,
            world_to_camera=np.eye(4) if world_to_camera is None else np.asarray(world_to_camera, dtype=np.float64),
        )

    @property
    def camera_to_world(self) -> np.ndarray:
        return np.linalg.inv(self.world_to_camera)

    @property
    def eye(self) -> np.ndarray:
        return self.camera_to_world[:3, 3]

    @property
    def fov_x(self) -> float:
        return 2.0 * math.atan(self.width / (2.0 * self.fx))

    @property
    def fov_y(self) -> float:
        return 2.0 * math.atan(self.height / (2.0 * self.fy))

    def gl_pose(self) -> np.ndarray:
        """Camera-to-world pose as expected by OpenGL-style renderers."""
        return rdf_to_gl(self.camera_to_world)

    def with_pose(self, world_to_camera: np.ndarray) -> "PinholeCamera":
        return replace(self, world_to_camera=np.asarray(world_to_camera, dtype=np.float64))

    def serialize(self) -> dict:
        return {
            "type": "perspective",
            "convention": "RDF",
            "resolution": {"width": int(self.width), "height": int(self.height)},
            "fov": {
                "x_rad": self.fov_x,
                "y_rad": self.fov_y,
                "x_deg": math.degrees(self.fov_x),
                "y_deg": math.degrees(self.fov_y),
            },
            "znear": float(self.znear),
            "zfar": float(self.zfar),
            "intrinsics": {
                "fx": float(self.fx),
                "fy": float(self.fy),
                "cx": float(self.cx),
                "cy": float(self.cy),
            },
            "camera_center_world": self.eye.tolist(),
            "world_to_camera": self.world_to_camera.tolist(),
            "camera_to_world": self.camera_to_world.tolist(),
        }
