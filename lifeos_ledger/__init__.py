"""
LifeOS Ledger - Source Package

Balance reconciliation for a personal finance ledger that was imported
from a spreadsheet into a hosted database.

DESIGN PRINCIPLES:
1. Balances are derived, never stored
2. Normalize once, upstream of everything else
3. Duplicates are reported, never deleted behind the user's back
4. Every run is auditable
5. Storage layer is swappable
"""

__version__ = "1.0.0"
__author__ = "LifeOS Team"
