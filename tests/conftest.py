"""Pytest bootstrap for local source imports.

The ``pytest`` console script can run with a sys.path that excludes the
``src`` directory. Ensure ``import sftpbridge`` resolves to the local package.
"""

from __future__ import annotations

import sys
from pathlib import Path


PROJECT_ROOT = Path(__file__).resolve().parent.parent
SRC_DIR = str(PROJECT_ROOT / "src")
TESTS_DIR = str(PROJECT_ROOT / "tests")

for entry in (SRC_DIR, TESTS_DIR):
    if entry not in sys.path:
        sys.path.insert(0, entry)
