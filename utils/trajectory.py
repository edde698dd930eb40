# Camera motion policies: a fixed per-frame translation, or i.i.d. random
# poses inside room bounding boxes.

from __future__ import annotations

import json
import math
from dataclasses import dataclass
from pathlib import Path
from typing import Sequence

import numpy as np

from utils.graphics_utils import look_at_rdf, translation_matrix

DEFAULT_START_EYE = (0.0, 0.0, 4.0)
DEFAULT_START_TARGET = (0.0, 0.0, 0.0)
DEFAULT_START_UP = (0.0, 1.0, 0.0)
DEFAULT_STEP = (0.025, 0.0, 0.0)
DEFAULT_MAX_PITCH_DEG = 15.0
UP_AXES = {
    "y": np.array([0.0, 1.0, 0.0]),
    "z": np.array([0.0, 0.0, 1.0]),
}


def default_start_pose() -> np.ndarray:
    return look_at_rdf(DEFAULT_START_EYE, DEFAULT_START_TARGET, DEFAULT_START_UP)


def fixed_trajectory(
    start_world_to_camera: np.ndarray,
    step: Sequence[float],
    num_frames: int,
) -> list[np.ndarray]:
    """Move the camera by ``step`` (world frame) after every frame."""

    if num_frames < 0:
        raise ValueError(f"Frame count must be non-negative, got {num_frames}")
    step_inv = np.linalg.inv(translation_matrix(step))
    poses: list[np.ndarray] = []
    current = np.asarray(start_world_to_camera, dtype=np.float64)
    for _ in range(num_frames):
        poses.append(current.copy())
        current = current @ step_inv
    return poses


@dataclass(frozen=True)
class RoomBox:
    lower: np.ndarray
    upper: np.ndarray

    def __post_init__(self) -> None:
        if self.lower.shape != (3,) or self.upper.shape != (3,):
            raise ValueError("Room bounds must be 3D points.")
        if np.any(self.upper <= self.lower):
            raise ValueError(f"Room max {self.upper.tolist()} must exceed min {self.lower.tolist()} on every axis")

    @classmethod
    def from_json(cls, entry: dict) -> "RoomBox":
        return cls(
            lower=np.asarray(entry["min"], dtype=np.float64),
            upper=np.asarray(entry["max"], dtype=np.float64),
        )

    @property
    def volume(self) -> float:
        return float(np.prod(self.upper - self.lower))

    def contains(self, point: np.ndarray) -> bool:
        return bool(np.all(point >= self.lower) and np.all(point <= self.upper))

    def sample(self, rng: np.random.Generator) -> np.ndarray:
        return rng.uniform(self.lower, self.upper)


def load_room_table(path: Path) -> dict[str, list[RoomBox]]:
    """Read ``{scene: [{"min": [x, y, z], "max": [x, y, z]}, ...]}``."""

    with Path(path).open("r", encoding="utf-8") as fh:
        payload = json.load(fh)
    if not isinstance(payload, dict):
        raise ValueError(f"Room table {path} must map scene names to room lists")

    table: dict[str, list[RoomBox]] = {}
    for scene_id, rooms in payload.items():
        try:
            table[scene_id] = [RoomBox.from_json(room) for room in rooms]
        except (KeyError, TypeError, ValueError) as exc:
            raise ValueError(f"Invalid room entry for {scene_id} in {path}: {exc}") from exc
        if not table[scene_id]:
            raise ValueError(f"Scene {scene_id} in {path} lists no rooms")
    return table


def default_room(bounds: np.ndarray, margin: float) -> RoomBox:
    """Mesh bounds shrunk by ``margin``; axes thinner than 2*margin keep a sliver at the centre."""

    lower = np.asarray(bounds[0], dtype=np.float64) + margin
    upper = np.asarray(bounds[1], dtype=np.float64) - margin
    collapsed = upper - lower <= 0.0
    if np.any(collapsed):
        centre = 0.5 * (np.asarray(bounds[0]) + np.asarray(bounds[1]))
        lower = np.where(collapsed, centre - 1e-3, lower)
        upper = np.where(collapsed, centre + 1e-3, upper)
    return RoomBox(lower=lower, upper=upper)


def random_trajectory(
    rooms: Sequence[RoomBox],
    num_frames: int,
    rng: np.random.Generator,
    up_axis: str = "z",
    max_pitch_deg: float = DEFAULT_MAX_PITCH_DEG,
) -> list[np.ndarray]:
    """Independent uniformly random camera poses inside ``rooms``."""

    if not rooms:
        raise ValueError("Random trajectories need at least one room.")
    if up_axis not in UP_AXES:
        raise ValueError(f"Unknown up axis {up_axis!r}; expected one of {sorted(UP_AXES)}")
    if not 0.0 <= max_pitch_deg < 90.0:
        raise ValueError(f"Max pitch must be in [0, 90) degrees, got {max_pitch_deg}")

    up = UP_AXES[up_axis]
    # Horizontal basis spanning the plane orthogonal to ``up``.
    side_a = np.array([1.0, 0.0, 0.0])
    side_b = np.cross(up, side_a)

    weights = np.array([room.volume for room in rooms], dtype=np.float64)
    weights /= weights.sum()
    max_pitch = math.radians(max_pitch_deg)

    poses: list[np.ndarray] = []
    for _ in range(num_frames):
        room = rooms[int(rng.choice(len(rooms), p=weights))]
        eye = room.sample(rng)
        yaw = rng.uniform(0.0, 2.0 * math.pi)
        pitch = rng.uniform(-max_pitch, max_pitch)
        direction = (
            math.cos(pitch) * (math.cos(yaw) * side_a + math.sin(yaw) * side_b)
            + math.sin(pitch) * up
        )
        poses.append(look_at_rdf(eye, eye + direction, up))
    return poses
