import json
import sys
import types

import numpy as np
import pytest

import replica_generator
from conftest import FakeRenderer
from replica_generator import (
    DEFAULT_SCENE,
    SCENES,
    build_trajectory,
    render_scene,
    render_scene_frames,
    resolve_scene_inputs,
    scene_output_dir,
    select_scenes,
)
from scene.cameras import PinholeCamera
from utils.trajectory import RoomBox, default_start_pose


def _render_kwargs(**overrides):
    kwargs = dict(
        mode="fixed",
        num_frames=3,
        step=(0.025, 0.0, 0.0),
        room_table=None,
        room_margin=0.1,
        up_axis="z",
        max_pitch_deg=15.0,
        seed=0,
        exposure=0.0055,
        gamma=2.4,
        saturation=1.5,
        render_depth=False,
        save_cameras=False,
        overwrite=False,
        verbose=True,
        debug=True,
    )
    kwargs.update(overrides)
    return kwargs


class TestResolveSceneInputs:
    def test_existing_scene(self, replica_root):
        inputs = resolve_scene_inputs(replica_root, "apartment_1")

        assert inputs.mesh_file.name == "mesh.ply"
        assert inputs.atlas_folder.name == "textures"
        assert inputs.surface_file.name == "glass.sur"

    def test_missing_scene_names_every_input(self, tmp_path):
        with pytest.raises(FileNotFoundError) as excinfo:
            resolve_scene_inputs(tmp_path, "room_0")

        message = str(excinfo.value)
        assert "mesh.ply" in message
        assert "textures" in message
        assert "glass.sur" in message

    def test_mirrors_optional_when_disabled(self, replica_root):
        (replica_root / "apartment_1" / "glass.sur").unlink()

        with pytest.raises(FileNotFoundError):
            resolve_scene_inputs(replica_root, "apartment_1")
        inputs = resolve_scene_inputs(replica_root, "apartment_1", require_mirrors=False)
        assert inputs.surface_file is None


class TestBuildTrajectory:
    def test_fixed_mode_starts_at_default_pose(self):
        poses = build_trajectory("fixed", 4)

        assert len(poses) == 4
        np.testing.assert_allclose(poses[0], default_start_pose())

    def test_random_mode_needs_rooms(self):
        with pytest.raises(ValueError):
            build_trajectory("random", 4)

    def test_random_mode_samples_rooms(self):
        room = RoomBox(lower=np.array([0.0, 0.0, 0.0]), upper=np.array([1.0, 1.0, 1.0]))

        poses = build_trajectory("random", 5, rooms=[room], rng=np.random.default_rng(2))

        assert len(poses) == 5
        for pose in poses:
            assert room.contains(np.linalg.inv(pose)[:3, 3])

    def test_unknown_mode(self):
        with pytest.raises(ValueError):
            build_trajectory("orbit", 4)


def test_render_scene_frames_writes_every_frame(tmp_path, fake_renderer, capsys):
    camera = PinholeCamera.default(fake_renderer.width, fake_renderer.height)
    poses = build_trajectory("fixed", 5)

    written = render_scene_frames(
        renderer=fake_renderer,
        scene=[],
        mirror_renderer=None,
        camera=camera,
        poses=poses,
        output_dir=tmp_path / "out",
        render_depth=True,
        save_cameras=True,
    )

    assert written == 5
    names = sorted(path.name for path in (tmp_path / "out").iterdir())
    assert [name for name in names if name.startswith("frame")] == [f"frame{i:06d}.jpg" for i in range(5)]
    assert [name for name in names if name.startswith("depth")] == [f"depth{i:06d}.png" for i in range(5)]
    assert len([name for name in names if name.startswith("camera")]) == 5
    camera_json = json.loads((tmp_path / "out" / "camera000001.json").read_text())
    np.testing.assert_allclose(camera_json["camera_center_world"], [0.025, 0.0, 4.0], atol=1e-12)
    assert "Rendering frame 5/5... done" in capsys.readouterr().out


def test_render_scene_frames_without_depth(tmp_path, fake_renderer):
    camera = PinholeCamera.default(fake_renderer.width, fake_renderer.height)

    render_scene_frames(
        renderer=fake_renderer,
        scene=[],
        mirror_renderer=None,
        camera=camera,
        poses=build_trajectory("fixed", 2),
        output_dir=tmp_path,
    )

    assert sorted(path.name for path in tmp_path.iterdir()) == ["frame000000.jpg", "frame000001.jpg"]


class TestRenderScene:
    def test_renders_scene_with_mirrors(self, replica_root, tmp_path, fake_renderer, capsys):
        inputs = resolve_scene_inputs(replica_root, "apartment_1")

        written = render_scene(inputs, renderer=fake_renderer, output_dir=tmp_path / "out", **_render_kwargs())

        assert written == 3
        assert len(list((tmp_path / "out").glob("frame*.jpg"))) == 3
        out = capsys.readouterr().out
        assert "Loaded 1 mirrors" in out
        assert "[DEBUG] Mesh bounds" in out

    def test_skips_existing_frames_unless_overwrite(self, replica_root, tmp_path, fake_renderer, capsys):
        inputs = resolve_scene_inputs(replica_root, "apartment_1")
        out_dir = tmp_path / "out"
        out_dir.mkdir()
        (out_dir / "frame000000.jpg").write_bytes(b"")

        assert render_scene(inputs, renderer=fake_renderer, output_dir=out_dir, **_render_kwargs()) == 0
        assert "Skipping apartment_1" in capsys.readouterr().out
        assert render_scene(inputs, renderer=fake_renderer, output_dir=out_dir, **_render_kwargs(overwrite=True)) == 3

    def test_random_mode_falls_back_to_mesh_bounds(self, replica_root, tmp_path, fake_renderer, capsys):
        inputs = resolve_scene_inputs(replica_root, "apartment_1")
        table = {"room_0": [RoomBox(lower=np.zeros(3), upper=np.ones(3))]}

        written = render_scene(
            inputs,
            renderer=fake_renderer,
            output_dir=tmp_path / "out",
            **_render_kwargs(mode="random", room_table=table, save_cameras=True),
        )

        assert written == 3
        assert "WARNING: No rooms listed for apartment_1" in capsys.readouterr().out
        for idx in range(3):
            payload = json.loads((tmp_path / "out" / f"camera{idx:06d}.json").read_text())
            eye = np.array(payload["camera_center_world"])
            assert np.all(eye >= np.array([0.1, 0.1, 0.1]) - 1e-9)
            assert np.all(eye <= np.array([0.9, 0.9, 1.9]) + 1e-9)


def test_scene_selection_and_output_layout(tmp_path):
    assert select_scenes(None, False) == [DEFAULT_SCENE] == ["apartment_1"]
    assert select_scenes(["room_0", "room_0", "office_1"], False) == ["room_0", "office_1"]
    assert select_scenes(["room_0"], True) == list(SCENES)
    assert len(SCENES) == 17

    assert scene_output_dir(tmp_path, "room_0", False) == tmp_path
    assert scene_output_dir(tmp_path, "room_0", True) == tmp_path / "room_0"


@pytest.fixture
def fake_mesh_renderer_module(monkeypatch):
    created = []

    class _MeshRenderer(FakeRenderer):
        def __init__(self, width, height):
            super().__init__(width=width, height=height)
            created.append(self)

    module = types.ModuleType("ptex_renderer.mesh_renderer")
    module.MeshRenderer = _MeshRenderer
    monkeypatch.setitem(sys.modules, "ptex_renderer.mesh_renderer", module)
    return created


class TestMain:
    def test_renders_default_scene(self, replica_root, tmp_path, fake_mesh_renderer_module, capsys):
        out_dir = tmp_path / "frames"

        replica_generator.main([str(replica_root), str(out_dir), "--num-frames", "4", "--resolution", "8", "6", "--depth"])

        assert len(list(out_dir.glob("frame*.jpg"))) == 4
        assert len(list(out_dir.glob("depth*.png"))) == 4
        renderer = fake_mesh_renderer_module[0]
        assert (renderer.width, renderer.height) == (8, 6)
        assert renderer.deleted
        out = capsys.readouterr().out
        assert "GL Vendor: fake" in out
        assert "All scenes completed without logged errors." in out

    def test_failed_scene_is_logged_and_exits_nonzero(self, replica_root, tmp_path, fake_mesh_renderer_module):
        out_dir = tmp_path / "frames"

        with pytest.raises(SystemExit) as excinfo:
            replica_generator.main(
                [str(replica_root), str(out_dir), "--scene", "apartment_1", "room_0", "--num-frames", "2",
                 "--resolution", "8", "6"]
            )

        assert excinfo.value.code == 1
        assert len(list((out_dir / "apartment_1").glob("frame*.jpg"))) == 2
        log_text = (out_dir / "generator_errors.log").read_text()
        assert "Scene=room_0" in log_text
        assert "FileNotFoundError" in log_text

    def test_rejects_unknown_scene(self, replica_root, fake_mesh_renderer_module):
        with pytest.raises(SystemExit) as excinfo:
            replica_generator.main([str(replica_root), "--scene", "castle_9"])

        assert excinfo.value.code == 2
