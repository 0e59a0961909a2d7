"""Run the development server supervisor."""

import sys

from devsupervisor.cli import main

if __name__ == "__main__":
    sys.exit(main())
