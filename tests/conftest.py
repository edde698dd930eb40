from __future__ import annotations

import json
from pathlib import Path

import cv2
import numpy as np
import pytest
from plyfile import PlyData, PlyElement

# Two unit quads facing +z, one at z=0 and one at z=2.
QUAD_VERTICES = np.array(
    [
        [0.0, 0.0, 0.0], [1.0, 0.0, 0.0], [1.0, 1.0, 0.0], [0.0, 1.0, 0.0],
        [0.0, 0.0, 2.0], [1.0, 0.0, 2.0], [1.0, 1.0, 2.0], [0.0, 1.0, 2.0],
    ],
    dtype=np.float32,
)
QUAD_FACES = np.array([[0, 1, 2, 3], [4, 5, 6, 7]], dtype=np.int32)

# Mirror at z=1 facing +z, between the two quads.
MIRROR_ENTRY = {
    "transform": [0.0, 0.0, 0.0, 1.0, 0.0, 0.0, 1.0],
    "points": [[0.0, 0.0], [1.0, 0.0], [1.0, 1.0], [0.0, 1.0]],
    "normal": [0.0, 0.0, 1.0, -1.0],
    "reflectivity": 0.5,
}


def write_quad_ply(path: Path, vertices: np.ndarray, faces: np.ndarray) -> None:
    vertex = np.empty(vertices.shape[0], dtype=[("x", "f4"), ("y", "f4"), ("z", "f4")])
    vertex["x"], vertex["y"], vertex["z"] = vertices[:, 0], vertices[:, 1], vertices[:, 2]
    face = np.empty(faces.shape[0], dtype=[("vertex_indices", "i4", (faces.shape[1],))])
    face["vertex_indices"] = faces
    PlyData([PlyElement.describe(vertex, "vertex"), PlyElement.describe(face, "face")]).write(str(path))


def write_atlas(path: Path, value: float = 100.0, size: int = 8) -> None:
    atlas = np.full((size, size, 3), value, dtype=np.float32)
    assert cv2.imwrite(str(path), atlas)


@pytest.fixture
def replica_root(tmp_path: Path) -> Path:
    """A dataset root holding one tiny ``apartment_1`` scene."""

    root = tmp_path / "replica"
    scene_dir = root / "apartment_1"
    (scene_dir / "textures").mkdir(parents=True)
    write_quad_ply(scene_dir / "mesh.ply", QUAD_VERTICES, QUAD_FACES)
    write_atlas(scene_dir / "textures" / "0-color-ptex.hdr")
    (scene_dir / "glass.sur").write_text(json.dumps([MIRROR_ENTRY]))
    return root


class FakeRenderer:
    """Stands in for MeshRenderer without a GL context."""

    def __init__(self, width: int = 8, height: int = 6, color: int = 10, depth: float = 2.0):
        self.width = width
        self.height = height
        self.color = color
        self.depth = depth
        # Depth reported for mirror polygons; defaults to the scene depth.
        self.polygon_depth: float | None = None
        self.render_calls = 0
        self.depth_calls = 0
        self.drawn_layers: list = []
        self.deleted = False

    @staticmethod
    def build_scene(meshes):
        return list(meshes)

    @staticmethod
    def add_layer(scene, meshes):
        layer = list(meshes)
        scene.extend(layer)
        return layer

    def print_information(self) -> None:
        print("GL Vendor: fake", flush=True)

    def render(self, scene, camera, layer=None):
        self.render_calls += 1
        self.drawn_layers.append(layer)
        rgb = np.full((camera.height, camera.width, 3), self.color, dtype=np.uint8)
        depth = np.full((camera.height, camera.width), self.depth, dtype=np.float32)
        return rgb, depth

    def render_depth(self, scene, camera, layer=None):
        self.depth_calls += 1
        self.drawn_layers.append(layer)
        value = self.depth if self.polygon_depth is None else self.polygon_depth
        return np.full((camera.height, camera.width), value, dtype=np.float32)

    def delete(self) -> None:
        self.deleted = True


@pytest.fixture
def fake_renderer() -> FakeRenderer:
    return FakeRenderer()
