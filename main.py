#!/usr/bin/env python3
"""
Runs the multiping check from a source checkout without installing it.
"""
from __future__ import annotations

import sys
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parent
SRC_ROOT = PROJECT_ROOT / "src"
if str(SRC_ROOT) not in sys.path:
    sys.path.insert(0, str(SRC_ROOT))

from multiping.cli import main


if __name__ == "__main__":
    sys.exit(main())
