"""Entry point for ``python -m jsonapi_graph``."""

import sys

from jsonapi_graph.cli import main

sys.exit(main())
