"""
Station Ledger - invoice payment & settlement ledger for a fuel station.

Tracks money owed to fuel suppliers and vendors with:
- Atomic settlement of invoice batches (EFT and check)
- A single running cash balance with derived planned / after fields
- Non-committing payment simulations
- Revert of settled batches with exact balance reversal
- Append-only correction log for retroactive edits
"""

__version__ = "0.1.0"
