"""
Entry point for running genbridge as a module.

Usage:
    python -m genbridge
"""

import sys

from genbridge.main import main

if __name__ == "__main__":
    sys.exit(main())
