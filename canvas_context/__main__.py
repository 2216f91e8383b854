"""
Entry point for running canvas_context as a module.

This allows running: python -m canvas_context
"""

import sys

from .cli import main

if __name__ == "__main__":
    sys.exit(main())
