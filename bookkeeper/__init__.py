"""
Bookkeeper - Source Package

A small-business ledger that keeps a running cash balance, reconciles
credit and advance obligations as they are paid, and reports accrual
profit.

DESIGN PRINCIPLES:
1. The running balance always equals a full recomputation
2. Fail early, fail visibly
3. No silent corrections
4. Every mutation is logged
5. Storage layer is swappable
"""

__version__ = "1.0.0"
__author__ = "Bookkeeper Team"
