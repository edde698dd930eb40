"""Offscreen rasterization of textured scene chunks through pyrender.

Everything a frame needs (scene chunks, reflected chunks, mirror polygons) is
added to one ``pyrender.Scene`` so it is uploaded to the GL context once.
Extra passes draw a *layer*, a list of meshes added with ``add_layer``, by
toggling ``is_visible`` around the draw call.
"""

from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator, Sequence

import numpy as np
import pyrender
import trimesh
from OpenGL.GL import GL_RENDERER, GL_VENDOR, GL_VERSION, glGetString

from scene.cameras import PinholeCamera

BACKGROUND = [0.0, 0.0, 0.0, 1.0]


def _to_pyrender(mesh: trimesh.Trimesh) -> pyrender.Mesh:
    material = None
    if mesh.visual.kind == "texture":
        # Opaque white base so the tone-mapped atlas is drawn as is.
        material = pyrender.MetallicRoughnessMaterial(
            baseColorFactor=[1.0, 1.0, 1.0, 1.0],
            baseColorTexture=np.asarray(mesh.visual.material.image),
            metallicFactor=0.0,
            roughnessFactor=1.0,
            alphaMode="OPAQUE",
        )
    return pyrender.Mesh.from_trimesh(mesh, material=material, smooth=False)


@contextmanager
def _showing(scene: pyrender.Scene, layer: Sequence[pyrender.Mesh] | None) -> Iterator[None]:
    """Draw only ``layer`` inside the block; ``None`` leaves visibility alone."""

    if layer is None:
        yield
        return
    shown = {id(mesh) for mesh in layer}
    previous = [(mesh, mesh.is_visible) for mesh in scene.meshes]
    for mesh, _ in previous:
        mesh.is_visible = id(mesh) in shown
    try:
        yield
    finally:
        for mesh, visible in previous:
            mesh.is_visible = visible


class MeshRenderer:
    """Own one offscreen EGL context and draw scenes into it."""

    def __init__(self, width: int, height: int) -> None:
        self.width = width
        self.height = height
        try:
            self._renderer = pyrender.OffscreenRenderer(viewport_width=width, viewport_height=height)
        except Exception as exc:  # pylint: disable=broad-except
            raise RuntimeError(f"Could not create a {width}x{height} offscreen GL context: {exc}") from exc

    def print_information(self) -> None:
        for label, key in (("Vendor", GL_VENDOR), ("Renderer", GL_RENDERER), ("Version", GL_VERSION)):
            value = glGetString(key)
            if isinstance(value, bytes):
                value = value.decode("utf-8", errors="replace")
            print(f"GL {label}: {value}", flush=True)

    @staticmethod
    def build_scene(meshes: Sequence[trimesh.Trimesh]) -> pyrender.Scene:
        """Scene whose visible meshes are drawn by default."""

        scene = pyrender.Scene(bg_color=BACKGROUND, ambient_light=[1.0, 1.0, 1.0])
        for mesh in meshes:
            scene.add(_to_pyrender(mesh))
        return scene

    @staticmethod
    def add_layer(scene: pyrender.Scene, meshes: Sequence[trimesh.Trimesh]) -> list[pyrender.Mesh]:
        """Add hidden meshes that are only drawn when passed as a layer."""

        layer = []
        for mesh in meshes:
            render_mesh = _to_pyrender(mesh)
            render_mesh.is_visible = False
            scene.add(render_mesh)
            layer.append(render_mesh)
        return layer

    def _place_camera(self, scene: pyrender.Scene, camera: PinholeCamera) -> None:
        if (camera.width, camera.height) != (self.width, self.height):
            raise ValueError(
                f"Camera resolution {camera.width}x{camera.height} does not match "
                f"renderer viewport {self.width}x{self.height}"
            )
        pose = camera.gl_pose()
        node = scene.main_camera_node
        if node is None:
            intrinsics = pyrender.IntrinsicsCamera(
                fx=camera.fx,
                fy=camera.fy,
                cx=camera.cx,
                cy=camera.cy,
                znear=camera.znear,
                zfar=camera.zfar,
            )
            scene.add(intrinsics, pose=pose)
            return
        node.camera.fx, node.camera.fy = camera.fx, camera.fy
        node.camera.cx, node.camera.cy = camera.cx, camera.cy
        scene.set_pose(node, pose)

    def render(
        self,
        scene: pyrender.Scene,
        camera: PinholeCamera,
        layer: Sequence[pyrender.Mesh] | None = None,
    ) -> tuple[np.ndarray, np.ndarray]:
        """Unlit colour (H x W x 3 uint8) and metric z-depth (H x W float32, 0 = empty)."""

        self._place_camera(scene, camera)
        with _showing(scene, layer):
            color, depth = self._renderer.render(scene, flags=pyrender.RenderFlags.FLAT)
        return np.ascontiguousarray(color[..., :3]), depth.astype(np.float32, copy=False)

    def render_depth(
        self,
        scene: pyrender.Scene,
        camera: PinholeCamera,
        layer: Sequence[pyrender.Mesh] | None = None,
    ) -> np.ndarray:
        self._place_camera(scene, camera)
        with _showing(scene, layer):
            depth = self._renderer.render(scene, flags=pyrender.RenderFlags.DEPTH_ONLY)
        return depth.astype(np.float32, copy=False)

    def delete(self) -> None:
        self._renderer.delete()
