from scene.cameras import PinholeCamera
from scene.mirror_surface import MirrorSurface, load_mirrors
from scene.ptex_mesh import PTexMesh

__all__ = ["PinholeCamera", "MirrorSurface", "PTexMesh", "load_mirrors"]
