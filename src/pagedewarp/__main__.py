#!/usr/bin/env python3
"""
PageDewarp - Entry point for python -m pagedewarp

This module allows the package to be run as a module:
    python -m pagedewarp image.jpg
"""

import sys

from pagedewarp.cli import main

if __name__ == "__main__":
    sys.exit(main())
