#!/usr/bin/env python3
# scripts/count_districts.py
# Run the district counter from a source checkout without installing it

from __future__ import annotations
import sys
from pathlib import Path

# Add project root to path
repo_root = Path(__file__).parent.parent
sys.path.insert(0, str(repo_root))

from districts.cli import main

if __name__ == "__main__":
    sys.exit(main())
