"""
Unit Tests Package for the Parking Facility

Covers the domain layer (value objects, spots, floors, facility, pricing),
the DTOs and the infrastructure adapters in isolation.
"""

import sys
from pathlib import Path

# Make the src layout importable without installing the package
src_root = Path(__file__).parent.parent.parent / "src"
if str(src_root) not in sys.path:
    sys.path.insert(0, str(src_root))
