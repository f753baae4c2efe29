"""Pytest configuration for space-recorder tests.

Sets up sys.path so `space_recorder` is importable when running pytest
from the project root without installing the package.
"""

import os
import sys

project_root = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if project_root not in sys.path:
    sys.path.insert(0, project_root)
