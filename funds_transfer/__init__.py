"""
Funds Transfer Service

Moves money between bank accounts under pessimistic row locks, records
each transfer as an immutable transaction and lets operators search the
transaction history. All monetary values use Decimal precision.
"""

__version__ = "1.0.0"
