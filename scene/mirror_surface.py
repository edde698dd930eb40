"""Planar mirror descriptors loaded from a scene's ``glass.sur`` file.

Each entry of the JSON array describes one reflective polygon::

    {
        "transform": [qx, qy, qz, qw, tx, ty, tz],   # or 16 row-major values
        "points": [[x, y], ...],                      # local frame, 2D or 3D
        "normal": [a, b, c, d],                       # world plane, optional
        "reflectivity": 0.8                           # optional, default 1.0
    }
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path

import numpy as np
import trimesh

from utils.graphics_utils import plane_reflection, quat_xyzw_to_matrix, transform_points

EPS = 1e-6


def _parse_transform(raw) -> np.ndarray:
    values = np.asarray(raw, dtype=np.float64).reshape(-1)
    if values.size == 7:
        matrix = np.eye(4, dtype=np.float64)
        matrix[:3, :3] = quat_xyzw_to_matrix(values[:4])
        matrix[:3, 3] = values[4:]
        return matrix
    if values.size == 16:
        return values.reshape(4, 4)
    raise ValueError(f"Mirror transform must have 7 or 16 values, got {values.size}")


def _polygon_plane(points: np.ndarray) -> np.ndarray:
    # Newell's method; robust for slightly non-planar polygons.
    normal = np.zeros(3, dtype=np.float64)
    for current, following in zip(points, np.roll(points, -1, axis=0)):
        normal[0] += (current[1] - following[1]) * (current[2] + following[2])
        normal[1] += (current[2] - following[2]) * (current[0] + following[0])
        normal[2] += (current[0] - following[0]) * (current[1] + following[1])
    norm = np.linalg.norm(normal)
    if norm < EPS:
        raise ValueError("Mirror polygon is degenerate; cannot derive a plane.")
    normal /= norm
    d = -float(np.dot(normal, points.mean(axis=0)))
    return np.array([normal[0], normal[1], normal[2], d], dtype=np.float64)


@dataclass(frozen=True)
class MirrorSurface:
    points: np.ndarray
    plane: np.ndarray
    reflectivity: float
    transform: np.ndarray

    @classmethod
    def from_json(cls, entry: dict) -> "MirrorSurface":
        if not isinstance(entry, dict):
            raise ValueError(f"Mirror entry must be an object, got {type(entry).__name__}")

        transform = _parse_transform(entry["transform"]) if "transform" in entry else np.eye(4)

        local = np.asarray(entry.get("points", []), dtype=np.float64)
        if local.ndim != 2 or local.shape[0] < 3 or local.shape[1] not in (2, 3):
            raise ValueError("Mirror needs at least three 2D or 3D boundary points.")
        if local.shape[1] == 2:
            local = np.hstack([local, np.zeros((local.shape[0], 1))])
        points = transform_points(transform, local)

        if "normal" in entry:
            plane = np.asarray(entry["normal"], dtype=np.float64).reshape(-1)
            if plane.size != 4:
                raise ValueError(f"Mirror normal must be a plane [a, b, c, d], got {plane.size} values")
            norm = np.linalg.norm(plane[:3])
            if norm < EPS:
                raise ValueError("Mirror normal has zero length.")
            plane = plane / norm
        else:
            plane = _polygon_plane(points)

        reflectivity = float(entry.get("reflectivity", 1.0))
        if not 0.0 <= reflectivity <= 1.0:
            raise ValueError(f"Mirror reflectivity must be in [0, 1], got {reflectivity}")

        return cls(points=points, plane=plane, reflectivity=reflectivity, transform=transform)

    @property
    def normal(self) -> np.ndarray:
        return self.plane[:3]

    def signed_distance(self, points: np.ndarray) -> np.ndarray:
        points = np.asarray(points, dtype=np.float64)
        return points @ self.plane[:3] + self.plane[3]

    def faces_camera(self, eye: np.ndarray) -> bool:
        return float(self.signed_distance(eye)) > 0.0

    def reflection_matrix(self) -> np.ndarray:
        return plane_reflection(self.plane)

    def triangulate(self) -> trimesh.Trimesh:
        """Fan-triangulate the boundary, wound so the front faces along the normal."""

        count = self.points.shape[0]
        faces = np.array([[0, idx, idx + 1] for idx in range(1, count - 1)], dtype=np.int64)
        polygon_normal = _polygon_plane(self.points)[:3]
        if np.dot(polygon_normal, self.normal) < 0.0:
            faces = faces[:, ::-1]
        return trimesh.Trimesh(vertices=self.points.copy(), faces=faces, process=False)


def load_mirrors(surface_file: Path) -> list[MirrorSurface]:
    """Parse every mirror in a ``glass.sur`` JSON array."""

    with Path(surface_file).open("r", encoding="utf-8") as fh:
        payload = json.load(fh)
    if not isinstance(payload, list):
        raise ValueError(f"Expected a JSON array of mirrors in {surface_file}")

    mirrors: list[MirrorSurface] = []
    for idx, entry in enumerate(payload):
        try:
            mirrors.append(MirrorSurface.from_json(entry))
        except (KeyError, TypeError, ValueError) as exc:
            raise ValueError(f"Invalid mirror #{idx} in {surface_file}: {exc}") from exc
    print(f"Loaded {len(mirrors)} mirrors", flush=True)
    return mirrors
