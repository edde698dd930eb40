from __future__ import annotations

import json
from pathlib import Path

import imageio.v2 as imageio
import numpy as np

# 16-bit depth PNGs store 1/6553.5 m per unit, i.e. 10 m at full scale.
DEFAULT_DEPTH_SCALE = 65535.0 * 0.1


def frame_path(out_dir: Path, frame_idx: int) -> Path:
    return out_dir / f"frame{frame_idx:06d}.jpg"


def depth_path(out_dir: Path, frame_idx: int) -> Path:
    return out_dir / f"depth{frame_idx:06d}.png"


def camera_path(out_dir: Path, frame_idx: int) -> Path:
    return out_dir / f"camera{frame_idx:06d}.json"


def depth_to_uint16(depth: np.ndarray, scale: float = DEFAULT_DEPTH_SCALE) -> np.ndarray:
    """Quantize metric depth to 16-bit, rounding to nearest and saturating."""

    scaled = np.asarray(depth, dtype=np.float32) * scale + 0.5
    return np.clip(scaled, 0.0, 65535.0).astype(np.uint16)


def save_rgb(path: Path, rgb: np.ndarray) -> None:
    if rgb.dtype != np.uint8 or rgb.ndim != 3 or rgb.shape[2] != 3:
        raise ValueError(f"Expected an H x W x 3 uint8 image, got {rgb.dtype} {rgb.shape}")
    imageio.imwrite(path, rgb)


def save_depth(path: Path, depth: np.ndarray, scale: float = DEFAULT_DEPTH_SCALE) -> None:
    imageio.imwrite(path, depth_to_uint16(depth, scale))


def save_camera(path: Path, camera_json: dict) -> None:
    path.write_text(json.dumps(camera_json, indent=2))
