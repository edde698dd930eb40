#!/usr/bin/env python3

"""Render RGB (and optionally depth) sequences through Replica scenes.

For each selected scene the Ptex-textured mesh is loaded from
``<replica_folder>/<scene>/mesh.ply`` and ``textures/``, mirrors are read from
``glass.sur``, and a camera is moved along either a fixed linear path
(``--mode fixed``) or through i.i.d. random poses inside room bounding boxes
(``--mode random``). Every frame is written as ``frameNNNNNN.jpg``; depth
(``depthNNNNNN.png``, 16-bit) and per-frame camera JSON are optional.
"""

from __future__ import annotations

import traceback
from argparse import ArgumentParser
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Sequence, TextIO

import numpy as np

from ptex_renderer.mirror_renderer import MirrorRenderer
from scene import PinholeCamera, PTexMesh, load_mirrors
from scene.ptex_mesh import DEFAULT_EXPOSURE, DEFAULT_GAMMA, DEFAULT_SATURATION
from utils import image_io
from utils.trajectory import (
    DEFAULT_MAX_PITCH_DEG,
    DEFAULT_STEP,
    RoomBox,
    UP_AXES,
    default_room,
    default_start_pose,
    fixed_trajectory,
    load_room_table,
    random_trajectory,
)

SCENES = (
    "apartment_0",
    "apartment_1",
    "apartment_2",
    "frl_apartment_0",
    "frl_apartment_1",
    "frl_apartment_2",
    "frl_apartment_3",
    "frl_apartment_5",
    "hotel_0",
    "office_0",
    "office_1",
    "office_2",
    "office_3",
    "office_4",
    "room_0",
    "room_1",
    "room_2",
)
DEFAULT_SCENE = SCENES[1]
DEFAULT_RESOLUTION = (640, 480)
DEFAULT_NUM_FRAMES = 100
DEFAULT_ROOM_MARGIN = 0.5
DEFAULT_ERROR_LOG_NAME = "generator_errors.log"
MODES = ("fixed", "random")


@dataclass(frozen=True)
class SceneInputs:
    scene_id: str
    mesh_file: Path
    atlas_folder: Path
    surface_file: Path | None


def resolve_scene_inputs(replica_folder: Path, scene_id: str, require_mirrors: bool = True) -> SceneInputs:
    """Locate a scene's mesh, atlas folder and mirror file; all must exist."""

    scene_dir = Path(replica_folder) / scene_id
    mesh_file = scene_dir / "mesh.ply"
    atlas_folder = scene_dir / "textures"
    surface_file = scene_dir / "glass.sur"

    missing = []
    if not mesh_file.is_file():
        missing.append(mesh_file)
    if not atlas_folder.is_dir():
        missing.append(atlas_folder)
    if require_mirrors and not surface_file.is_file():
        missing.append(surface_file)
    if missing:
        listed = ", ".join(str(path) for path in missing)
        raise FileNotFoundError(f"Scene {scene_id} is missing required input(s): {listed}")

    return SceneInputs(
        scene_id=scene_id,
        mesh_file=mesh_file,
        atlas_folder=atlas_folder,
        surface_file=surface_file if require_mirrors else None,
    )


def build_trajectory(
    mode: str,
    num_frames: int,
    *,
    step: Sequence[float] = DEFAULT_STEP,
    rooms: Sequence[RoomBox] | None = None,
    rng: np.random.Generator | None = None,
    up_axis: str = "z",
    max_pitch_deg: float = DEFAULT_MAX_PITCH_DEG,
) -> list[np.ndarray]:
    """World-to-camera poses for every frame."""

    if mode == "fixed":
        return fixed_trajectory(default_start_pose(), step, num_frames)
    if mode == "random":
        if not rooms:
            raise ValueError("Random camera mode needs at least one room.")
        return random_trajectory(
            rooms,
            num_frames,
            rng if rng is not None else np.random.default_rng(),
            up_axis=up_axis,
            max_pitch_deg=max_pitch_deg,
        )
    raise ValueError(f"Unknown camera mode {mode!r}; expected one of {MODES}")


def render_scene_frames(
    *,
    renderer,
    scene,
    mirror_renderer: MirrorRenderer | None,
    camera: PinholeCamera,
    poses: Sequence[np.ndarray],
    output_dir: Path,
    render_depth: bool = False,
    save_cameras: bool = False,
    depth_scale: float = image_io.DEFAULT_DEPTH_SCALE,
) -> int:
    """Render, composite mirrors and write every pose. Returns frames written."""

    output_dir.mkdir(parents=True, exist_ok=True)
    num_frames = len(poses)
    mirror_count = len(mirror_renderer) if mirror_renderer is not None else 0

    for frame_idx, pose in enumerate(poses):
        print(f"\rRendering frame {frame_idx + 1}/{num_frames}... ", end="", flush=True)
        frame_camera = camera.with_pose(pose)

        rgb, depth = renderer.render(scene, frame_camera)
        for mirror_idx in range(mirror_count):
            rgb = mirror_renderer.render(mirror_idx, rgb, frame_camera, depth)

        image_io.save_rgb(image_io.frame_path(output_dir, frame_idx), rgb)
        if render_depth:
            image_io.save_depth(image_io.depth_path(output_dir, frame_idx), depth, depth_scale)
        if save_cameras:
            image_io.save_camera(image_io.camera_path(output_dir, frame_idx), frame_camera.serialize())

    print(f"\rRendering frame {num_frames}/{num_frames}... done", flush=True)
    return num_frames


def scene_output_dir(output_root: Path, scene_id: str, multiple_scenes: bool) -> Path:
    return output_root / scene_id if multiple_scenes else output_root


def render_scene(
    inputs: SceneInputs,
    *,
    renderer,
    output_dir: Path,
    mode: str,
    num_frames: int,
    step: Sequence[float],
    room_table: dict[str, list[RoomBox]] | None,
    room_margin: float,
    up_axis: str,
    max_pitch_deg: float,
    seed: int | None,
    exposure: float,
    gamma: float,
    saturation: float,
    render_depth: bool,
    save_cameras: bool,
    overwrite: bool,
    verbose: bool,
    debug: bool,
) -> int:
    """Load one scene and render its whole trajectory."""

    if not overwrite and output_dir.is_dir():
        existing = list(output_dir.glob("frame*.jpg"))
        if existing:
            print(f"  Skipping {inputs.scene_id}: frames already exist ({len(existing)} files).", flush=True)
            return 0

    mirrors = load_mirrors(inputs.surface_file) if inputs.surface_file is not None else []

    print(f"  Loading mesh: {inputs.mesh_file}", flush=True)
    mesh = PTexMesh(
        inputs.mesh_file,
        inputs.atlas_folder,
        exposure=exposure,
        gamma=gamma,
        saturation=saturation,
        verbose=verbose,
    )
    if debug:
        print(f"[DEBUG] Mesh bounds: min={mesh.bounds[0].tolist()} max={mesh.bounds[1].tolist()}", flush=True)

    rooms: list[RoomBox] | None = None
    if mode == "random":
        if room_table is not None and inputs.scene_id in room_table:
            rooms = room_table[inputs.scene_id]
        else:
            if room_table is not None:
                print(
                    f"WARNING: No rooms listed for {inputs.scene_id}; sampling inside the mesh bounds.",
                    flush=True,
                )
            rooms = [default_room(mesh.bounds, room_margin)]
        if verbose:
            print(f"[VERBOSE] Sampling poses in {len(rooms)} room(s).", flush=True)

    poses = build_trajectory(
        mode,
        num_frames,
        step=step,
        rooms=rooms,
        rng=np.random.default_rng(seed),
        up_axis=up_axis,
        max_pitch_deg=max_pitch_deg,
    )

    scene = renderer.build_scene(mesh.chunks)
    mirror_renderer = MirrorRenderer(mirrors, mesh, renderer, scene) if mirrors else None
    camera = PinholeCamera.default(renderer.width, renderer.height)

    return render_scene_frames(
        renderer=renderer,
        scene=scene,
        mirror_renderer=mirror_renderer,
        camera=camera,
        poses=poses,
        output_dir=output_dir,
        render_depth=render_depth,
        save_cameras=save_cameras,
    )


def parse_args() -> ArgumentParser:
    parser = ArgumentParser(description="Render camera trajectories through Replica scenes.")
    parser.add_argument(
        "replica_folder",
        type=Path,
        help="Root of the Replica dataset (contains one directory per scene).",
    )
    parser.add_argument(
        "output_folder",
        type=Path,
        nargs="?",
        default=Path("."),
        help="Directory receiving the rendered frames (default: working directory).",
    )
    parser.add_argument(
        "--scene",
        nargs="+",
        choices=SCENES,
        default=None,
        help=f"Scene(s) to render (default: {DEFAULT_SCENE}).",
    )
    parser.add_argument(
        "--all-scenes",
        action="store_true",
        help="Render every scene of the corpus.",
    )
    parser.add_argument(
        "--mode",
        choices=MODES,
        default="fixed",
        help="Camera motion: 'fixed' translates by --step each frame, 'random' samples poses in rooms (default: fixed).",
    )
    parser.add_argument(
        "--num-frames",
        type=int,
        default=DEFAULT_NUM_FRAMES,
        help=f"Frames to render per scene (default: {DEFAULT_NUM_FRAMES}).",
    )
    parser.add_argument(
        "--resolution",
        type=int,
        nargs=2,
        metavar=("WIDTH", "HEIGHT"),
        default=DEFAULT_RESOLUTION,
        help=f"Output image resolution (default: {DEFAULT_RESOLUTION[0]} {DEFAULT_RESOLUTION[1]}).",
    )
    parser.add_argument(
        "--step",
        type=float,
        nargs=3,
        metavar=("X", "Y", "Z"),
        default=DEFAULT_STEP,
        help="World-space camera translation per frame in fixed mode (default: 0.025 0 0).",
    )
    parser.add_argument(
        "--rooms",
        type=Path,
        default=None,
        help="JSON room table {scene: [{min: [x,y,z], max: [x,y,z]}]} for random mode.",
    )
    parser.add_argument(
        "--room-margin",
        type=float,
        default=DEFAULT_ROOM_MARGIN,
        help=f"Inset in metres applied to mesh bounds when a scene has no rooms (default: {DEFAULT_ROOM_MARGIN}).",
    )
    parser.add_argument(
        "--up-axis",
        choices=sorted(UP_AXES),
        default="z",
        help="World up axis used to orient random cameras (default: z).",
    )
    parser.add_argument(
        "--max-pitch",
        type=float,
        default=DEFAULT_MAX_PITCH_DEG,
        help=f"Maximum absolute camera pitch in degrees for random mode (default: {DEFAULT_MAX_PITCH_DEG}).",
    )
    parser.add_argument(
        "--seed",
        type=int,
        default=None,
        help="Random seed for reproducible random trajectories.",
    )
    parser.add_argument(
        "--depth",
        action="store_true",
        help="Also write 16-bit depth PNGs (depthNNNNNN.png).",
    )
    parser.add_argument(
        "--camera-json",
        action="store_true",
        help="Also write per-frame camera intrinsics/extrinsics (cameraNNNNNN.json).",
    )
    parser.add_argument(
        "--no-mirrors",
        action="store_true",
        help="Ignore glass.sur and render without reflections.",
    )
    parser.add_argument(
        "--exposure",
        type=float,
        default=DEFAULT_EXPOSURE,
        help=f"Exposure applied to the HDR atlases (default: {DEFAULT_EXPOSURE}).",
    )
    parser.add_argument(
        "--gamma",
        type=float,
        default=DEFAULT_GAMMA,
        help=f"Display gamma (default: {DEFAULT_GAMMA}).",
    )
    parser.add_argument(
        "--saturation",
        type=float,
        default=DEFAULT_SATURATION,
        help=f"Colour saturation multiplier (default: {DEFAULT_SATURATION}).",
    )
    parser.add_argument(
        "--overwrite",
        action="store_true",
        help="Re-render scenes whose output folder already holds frames.",
    )
    parser.add_argument(
        "--error-log",
        type=Path,
        default=None,
        help=f"Append render failures to this file (default: <output_folder>/{DEFAULT_ERROR_LOG_NAME}).",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        default=False,
        help="Output detailed rendering progress.",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        default=False,
        help="Print debugging information about meshes and cameras.",
    )
    return parser


def select_scenes(scene_args: list[str] | None, all_scenes: bool) -> list[str]:
    if all_scenes:
        return list(SCENES)
    if scene_args:
        return list(dict.fromkeys(scene_args))
    return [DEFAULT_SCENE]


def main(argv: Sequence[str] | None = None) -> None:
    parser = parse_args()
    args = parser.parse_args(argv)

    width, height = args.resolution
    if width <= 0 or height <= 0:
        parser.error("--resolution must be positive")
    if args.num_frames < 0:
        parser.error("--num-frames must be non-negative")

    scene_ids = select_scenes(args.scene, args.all_scenes)
    multiple_scenes = len(scene_ids) > 1
    output_root: Path = args.output_folder
    error_log_path: Path = args.error_log or output_root / DEFAULT_ERROR_LOG_NAME
    room_table = load_room_table(args.rooms) if args.rooms is not None else None

    from ptex_renderer.mesh_renderer import MeshRenderer

    renderer = MeshRenderer(width, height)
    renderer.print_information()

    error_log_file: TextIO | None = None
    error_count = 0
    frames_total = 0

    def ensure_log_file() -> TextIO:
        nonlocal error_log_file
        if error_log_file is None:
            error_log_path.parent.mkdir(parents=True, exist_ok=True)
            error_log_file = error_log_path.open("a", encoding="utf-8")
            header = datetime.now().isoformat(timespec="seconds")
            error_log_file.write(f"\n==== {header} ====\n")
            error_log_file.flush()
        return error_log_file

    try:
        for scene_idx, scene_id in enumerate(scene_ids, start=1):
            print(f"[{scene_idx}/{len(scene_ids)}] Processing scene {scene_id}", flush=True)
            try:
                inputs = resolve_scene_inputs(args.replica_folder, scene_id, require_mirrors=not args.no_mirrors)
                frames_total += render_scene(
                    inputs,
                    renderer=renderer,
                    output_dir=scene_output_dir(output_root, scene_id, multiple_scenes),
                    mode=args.mode,
                    num_frames=args.num_frames,
                    step=args.step,
                    room_table=room_table,
                    room_margin=args.room_margin,
                    up_axis=args.up_axis,
                    max_pitch_deg=args.max_pitch,
                    seed=args.seed,
                    exposure=args.exposure,
                    gamma=args.gamma,
                    saturation=args.saturation,
                    render_depth=args.depth,
                    save_cameras=args.camera_json,
                    overwrite=args.overwrite,
                    verbose=args.verbose,
                    debug=args.debug,
                )
            except Exception as exc:  # pylint: disable=broad-except
                print(f"\n  WARNING: Rendering {scene_id} failed: {exc}", flush=True)
                log_file = ensure_log_file()
                error_count += 1
                timestamp = datetime.now().isoformat(timespec="seconds")
                log_file.write(f"[{timestamp}] Scene={scene_id} Error={exc}\n")
                log_file.write(traceback.format_exc())
                log_file.write("\n")
                log_file.flush()
    finally:
        renderer.delete()
        if error_log_file is not None:
            error_log_file.close()

    print(f"Wrote {frames_total} frame(s) for {len(scene_ids)} scene(s).", flush=True)
    if error_count > 0:
        print(f"{error_count} scene(s) failed; see {error_log_path} for details.", flush=True)
        raise SystemExit(1)
    print("All scenes completed without logged errors.", flush=True)


if __name__ == "__main__":
    main()
