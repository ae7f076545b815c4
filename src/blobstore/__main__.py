"""Allow running the CLI with ``python -m blobstore``."""

import sys

from blobstore.cli import main

sys.exit(main())
