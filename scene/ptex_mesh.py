"""Replica mesh loading with per-face (Ptex) texture atlases.

A Replica scene stores a quad mesh in ``mesh.ply`` and one HDR atlas per mesh
chunk in ``textures/<chunk>-color-ptex.hdr``. Every quad owns a square tile of
its chunk's atlas, laid out row by row in face order. The atlases hold linear
radiance, so they are tone mapped once at load time and the mesh is drawn
unlit.
"""

from __future__ import annotations

import json
import math
from dataclasses import dataclass
from pathlib import Path

import cv2
import numpy as np
import trimesh
from PIL import Image
from plyfile import PlyData

from scene.mirror_surface import MirrorSurface
from utils.graphics_utils import transform_points

DEFAULT_EXPOSURE = 0.0055
DEFAULT_GAMMA = 2.4
DEFAULT_SATURATION = 1.5
CLIP_EPS = 1e-4
LUMA_WEIGHTS = np.array([0.299, 0.587, 0.114], dtype=np.float32)

# Corner order of a quad inside its tile.
QUAD_CORNERS = np.array([[0.0, 0.0], [1.0, 0.0], [1.0, 1.0], [0.0, 1.0]], dtype=np.float64)


@dataclass(frozen=True)
class PtexParameters:
    split_size: float
    tile_size: int | None


def load_ptex_parameters(atlas_folder: Path) -> PtexParameters:
    params_path = Path(atlas_folder) / "parameters.json"
    if not params_path.is_file():
        return PtexParameters(split_size=0.0, tile_size=None)
    with params_path.open("r", encoding="utf-8") as fh:
        payload = json.load(fh)
    tile_size = payload.get("tileSize")
    return PtexParameters(
        split_size=float(payload.get("splitSize", 0.0)),
        tile_size=int(tile_size) if tile_size else None,
    )


def load_quad_mesh(mesh_file: Path) -> tuple[np.ndarray, np.ndarray]:
    """Return (vertices N x 3 float64, faces M x 4 int64) from a PLY file."""

    ply = PlyData.read(str(mesh_file))
    vertex = ply["vertex"].data
    vertices = np.stack(
        [
            np.asarray(vertex["x"], dtype=np.float64),
            np.asarray(vertex["y"], dtype=np.float64),
            np.asarray(vertex["z"], dtype=np.float64),
        ],
        axis=1,
    )

    face_data = ply["face"].data
    names = face_data.dtype.names or ()
    key = "vertex_indices" if "vertex_indices" in names else "vertex_index"
    raw_faces = face_data[key]
    if len(raw_faces) == 0:
        raise ValueError(f"{mesh_file} contains no faces")
    sizes = {len(face) for face in raw_faces}
    if sizes != {4}:
        raise ValueError(f"{mesh_file} must be a pure quad mesh (found face sizes {sorted(sizes)})")
    faces = np.vstack(raw_faces).astype(np.int64)
    if faces.max() >= vertices.shape[0] or faces.min() < 0:
        raise ValueError(f"{mesh_file} has face indices outside the vertex range")
    return vertices, faces


def split_faces(vertices: np.ndarray, faces: np.ndarray, split_size: float) -> list[np.ndarray]:
    """Group face indices into spatial chunks of ``split_size`` metres."""

    if split_size <= 0.0:
        return [np.arange(faces.shape[0], dtype=np.int64)]

    centroids = vertices[faces].mean(axis=1)
    origin = vertices.min(axis=0)
    cells = np.floor((centroids - origin) / split_size).astype(np.int64)
    dims = cells.max(axis=0) + 1
    linear = cells[:, 0] + cells[:, 1] * dims[0] + cells[:, 2] * dims[0] * dims[1]

    chunks: list[np.ndarray] = []
    for cell in np.unique(linear):
        chunks.append(np.flatnonzero(linear == cell))
    return chunks


def ptex_tile_uvs(
    num_faces: int,
    atlas_width: int,
    atlas_height: int,
    tile_size: int | None = None,
) -> np.ndarray:
    """UVs (num_faces x 4 x 2) of every quad corner inside its atlas tile."""

    if num_faces <= 0:
        return np.zeros((0, 4, 2), dtype=np.float32)
    if tile_size is None:
        tiles_per_row = int(math.ceil(math.sqrt(num_faces)))
        tile_size = atlas_width // tiles_per_row
    else:
        tiles_per_row = atlas_width // tile_size
    if tile_size <= 0 or tiles_per_row <= 0:
        raise ValueError(f"Atlas of width {atlas_width} is too small for {num_faces} faces")
    rows_needed = int(math.ceil(num_faces / tiles_per_row))
    if rows_needed * tile_size > atlas_height:
        raise ValueError(
            f"Atlas {atlas_width}x{atlas_height} cannot hold {num_faces} tiles of {tile_size}px"
        )

    face_ids = np.arange(num_faces)
    tile_x = (face_ids % tiles_per_row).astype(np.float64)
    tile_y = (face_ids // tiles_per_row).astype(np.float64)

    # Half-texel inset keeps bilinear lookups inside the tile.
    span = tile_size - 1.0
    px = tile_x[:, None] * tile_size + 0.5 + QUAD_CORNERS[None, :, 0] * span
    py = tile_y[:, None] * tile_size + 0.5 + QUAD_CORNERS[None, :, 1] * span

    uvs = np.empty((num_faces, 4, 2), dtype=np.float32)
    uvs[..., 0] = px / atlas_width
    uvs[..., 1] = 1.0 - py / atlas_height
    return uvs


def tone_map(
    hdr: np.ndarray,
    exposure: float = DEFAULT_EXPOSURE,
    gamma: float = DEFAULT_GAMMA,
    saturation: float = DEFAULT_SATURATION,
) -> np.ndarray:
    """Map linear HDR radiance to 8-bit display RGB."""

    if gamma <= 0.0:
        raise ValueError(f"Gamma must be positive, got {gamma}")
    color = np.clip(hdr.astype(np.float32) * exposure, 0.0, None)
    color = np.power(color, 1.0 / gamma)
    luma = color @ LUMA_WEIGHTS
    color = luma[..., None] + saturation * (color - luma[..., None])
    return (np.clip(color, 0.0, 1.0) * 255.0 + 0.5).astype(np.uint8)


def read_hdr_atlas(path: Path) -> np.ndarray:
    image = cv2.imread(str(path), cv2.IMREAD_ANYDEPTH | cv2.IMREAD_COLOR)
    if image is None:
        raise ValueError(f"Could not decode texture atlas {path}")
    return cv2.cvtColor(image, cv2.COLOR_BGR2RGB)


def build_textured_chunk(
    vertices: np.ndarray,
    quads: np.ndarray,
    atlas_rgb: np.ndarray,
    tile_size: int | None,
) -> trimesh.Trimesh:
    """Triangulate quads with unshared vertices so each face keeps its tile."""

    height, width = atlas_rgb.shape[:2]
    uvs = ptex_tile_uvs(quads.shape[0], width, height, tile_size)

    corner_positions = vertices[quads].reshape(-1, 3)
    corner_uvs = uvs.reshape(-1, 2)
    base = np.arange(quads.shape[0], dtype=np.int64)[:, None] * 4
    triangles = np.concatenate(
        [base + np.array([0, 1, 2]), base + np.array([0, 2, 3])],
        axis=1,
    ).reshape(-1, 3)

    visual = trimesh.visual.TextureVisuals(uv=corner_uvs, image=Image.fromarray(atlas_rgb))
    return trimesh.Trimesh(vertices=corner_positions, faces=triangles, visual=visual, process=False)


class PTexMesh:
    """Replica scene mesh split into textured chunks ready for rendering."""

    def __init__(
        self,
        mesh_file: Path,
        atlas_folder: Path,
        exposure: float = DEFAULT_EXPOSURE,
        gamma: float = DEFAULT_GAMMA,
        saturation: float = DEFAULT_SATURATION,
        verbose: bool = False,
    ) -> None:
        self.mesh_file = Path(mesh_file)
        self.atlas_folder = Path(atlas_folder)
        self.exposure = exposure
        self.gamma = gamma
        self.saturation = saturation

        self.params = load_ptex_parameters(self.atlas_folder)
        self.vertices, self.faces = load_quad_mesh(self.mesh_file)
        self.chunk_faces = split_faces(self.vertices, self.faces, self.params.split_size)

        if verbose:
            print(
                f"[VERBOSE] {self.mesh_file.name}: {self.vertices.shape[0]} vertices, "
                f"{self.faces.shape[0]} quads in {len(self.chunk_faces)} chunk(s)",
                flush=True,
            )

        self.chunks: list[trimesh.Trimesh] = []
        for chunk_idx, face_ids in enumerate(self.chunk_faces):
            atlas_path = self.atlas_folder / f"{chunk_idx}-color-ptex.hdr"
            if not atlas_path.is_file():
                raise FileNotFoundError(f"Missing texture atlas {atlas_path}")
            atlas = tone_map(read_hdr_atlas(atlas_path), exposure, gamma, saturation)
            self.chunks.append(
                build_textured_chunk(self.vertices, self.faces[face_ids], atlas, self.params.tile_size)
            )

    @property
    def bounds(self) -> np.ndarray:
        return np.stack([self.vertices.min(axis=0), self.vertices.max(axis=0)])

    def reflected_chunks(self, mirror: MirrorSurface) -> list[trimesh.Trimesh]:
        """Chunks in front of the mirror, reflected through its plane."""

        reflection = mirror.reflection_matrix()
        reflected: list[trimesh.Trimesh] = []
        for chunk in self.chunks:
            distances = mirror.signed_distance(chunk.vertices)
            keep = np.all(distances[chunk.faces] >= -CLIP_EPS, axis=1)
            if not np.any(keep):
                continue
            # A reflection flips handedness; reverse winding to keep front faces.
            visual = trimesh.visual.TextureVisuals(uv=chunk.visual.uv, image=chunk.visual.material.image)
            reflected.append(
                trimesh.Trimesh(
                    vertices=transform_points(reflection, chunk.vertices),
                    faces=chunk.faces[keep][:, ::-1],
                    visual=visual,
                    process=False,
                )
            )
        return reflected
