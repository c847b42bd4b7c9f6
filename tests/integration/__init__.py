"""
Integration Tests Package for the Parking Facility

These tests drive the ParkingService end to end: configuration, facility,
fee calculation, ticket archive and event bus working together.
"""

import sys
from pathlib import Path

# Make the src layout importable without installing the package
src_root = Path(__file__).parent.parent.parent / "src"
if str(src_root) not in sys.path:
    sys.path.insert(0, str(src_root))
