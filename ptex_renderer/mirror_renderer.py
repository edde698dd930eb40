"""Planar reflections composited over an already rendered frame.

For every mirror the scene geometry in front of the mirror plane is reflected
through the plane once at load time. Rendering that reflected copy from the
real camera yields the same image as rendering the scene from the mirrored
camera with the plane as a clip plane, already aligned to screen space.

Reflected copies and mirror polygons are added as hidden layers of the main
scene, so the GL context keeps one upload of everything across frames.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Sequence

import numpy as np

from scene.cameras import PinholeCamera
from scene.mirror_surface import MirrorSurface
from scene.ptex_mesh import PTexMesh

if TYPE_CHECKING:
    import pyrender

    from ptex_renderer.mesh_renderer import MeshRenderer

DEFAULT_DEPTH_TOLERANCE = 0.02


class MirrorRenderer:
    def __init__(
        self,
        mirrors: Sequence[MirrorSurface],
        mesh: PTexMesh,
        renderer: MeshRenderer,
        scene: pyrender.Scene,
        depth_tolerance: float = DEFAULT_DEPTH_TOLERANCE,
    ) -> None:
        self.mirrors = list(mirrors)
        self.renderer = renderer
        self.scene = scene
        self.depth_tolerance = depth_tolerance
        self.reflection_layers = [renderer.add_layer(scene, mesh.reflected_chunks(mirror)) for mirror in self.mirrors]
        self.polygon_layers = [renderer.add_layer(scene, [mirror.triangulate()]) for mirror in self.mirrors]

    def __len__(self) -> int:
        return len(self.mirrors)

    def capture_reflection(self, index: int, camera: PinholeCamera) -> tuple[np.ndarray, np.ndarray]:
        return self.renderer.render(self.scene, camera, layer=self.reflection_layers[index])

    def mask(self, index: int, camera: PinholeCamera, scene_depth: np.ndarray) -> np.ndarray:
        """Pixels where the mirror polygon is the closest visible surface."""

        polygon_depth = self.renderer.render_depth(self.scene, camera, layer=self.polygon_layers[index])
        covered = polygon_depth > 0.0
        unoccluded = (scene_depth <= 0.0) | (polygon_depth <= scene_depth + self.depth_tolerance)
        return covered & unoccluded

    def render(
        self,
        index: int,
        frame: np.ndarray,
        camera: PinholeCamera,
        scene_depth: np.ndarray,
    ) -> np.ndarray:
        mirror = self.mirrors[index]
        if not mirror.faces_camera(camera.eye):
            return frame

        mask = self.mask(index, camera, scene_depth)
        if not np.any(mask):
            return frame

        reflection, reflection_depth = self.capture_reflection(index, camera)
        mask &= reflection_depth > 0.0
        return composite(frame, reflection, mask, mirror.reflectivity)


def composite(frame: np.ndarray, reflection: np.ndarray, mask: np.ndarray, reflectivity: float) -> np.ndarray:
    """Blend ``reflection`` over ``frame`` inside ``mask``."""

    out = frame.copy()
    blended = (1.0 - reflectivity) * frame[mask].astype(np.float32) + reflectivity * reflection[mask].astype(np.float32)
    out[mask] = np.clip(blended + 0.5, 0.0, 255.0).astype(np.uint8)
    return out
