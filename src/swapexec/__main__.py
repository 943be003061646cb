"""Allow running with python -m swapexec."""

import sys

from swapexec.cli import main

sys.exit(main())
