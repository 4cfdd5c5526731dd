"""
MoneyFlow - Ledger Source Package

Personal money tracking across multiple wallets: balances, transfers,
recurring transactions, budgets, goals and a daily spending allowance,
all derived from one transaction log.

DESIGN PRINCIPLES:
1. The transaction log is the source of truth
2. Cached balances are an invariant, not a convenience
3. Every multi-row write is one atomic unit
4. Every mutation is auditable
5. Storage layer is swappable
"""

__version__ = "1.0.0"
__author__ = "MoneyFlow Team"
