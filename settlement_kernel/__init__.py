"""
Settlement Kernel

Payment reconciliation and invoice settlement for a property-management
back office:
- Atomic multi-invoice settlement
- At-most-once invoice payment under concurrent or replayed submissions
- Per-company receipt numbering from locked counters
- Role and company scoped access to payment records
"""

__version__ = "0.1.0"
