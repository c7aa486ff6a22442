"""
Finora - Source Package

A personal finance backend: accounts, transactions, budgets,
receipt scanning, spreadsheet import and scheduled email reports.

DESIGN PRINCIPLES:
1. An account balance changes only through one atomic increment
2. Fail early, fail visibly
3. AI output is a suggestion, never trusted as-is
4. Every mutation is auditable
5. Storage layer is swappable
"""

__version__ = "1.0.0"
__author__ = "Finora Team"
