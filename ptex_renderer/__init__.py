import os

# Headless EGL context unless the caller already picked a platform. Must be set
# before pyrender (and with it PyOpenGL) is first imported.
os.environ.setdefault("PYOPENGL_PLATFORM", "egl")
