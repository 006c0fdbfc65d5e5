"""Pytest configuration and fixtures for offline tile cache tests."""

import sys
from pathlib import Path

# Add src directory to path for imports
src_path = Path(__file__).parent.parent / 'src'
sys.path.insert(0, str(src_path))

# Test helpers (fakes) live next to this file
sys.path.insert(0, str(Path(__file__).parent))
