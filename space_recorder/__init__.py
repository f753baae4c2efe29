"""space-recorder: live screen compositing with ghost webcam and AI overlays.

Plans an ffmpeg filter graph from the enabled layers, runs it with a
preview window and/or recording, and restarts it when live parameters
change.
"""

__version__ = "0.1.0"
