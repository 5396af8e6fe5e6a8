"""Allow ``python -m acmednschallenge``."""

import sys

from acmednschallenge.cli import main

sys.exit(main())
