"""Allow ``python -m space_recorder``."""

import sys

from .cli import main

sys.exit(main())
