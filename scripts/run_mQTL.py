#!/usr/bin/env python3
"""
Metabolite QTL Analysis Script (pipeline version)
"""
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from mqtl.cli.utils import main

if __name__ == "__main__":
    sys.exit(main())
