"""
Entry point for running the development server via `python -m devsupervisor`.
"""

import sys

from .cli import main

if __name__ == "__main__":
    sys.exit(main())
