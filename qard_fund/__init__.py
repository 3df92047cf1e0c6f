"""
Qard Fund Core

Bookkeeping core for a small mutual lending fund: member deposits, interest-free
loans, installment tracking and the rules that split an incoming payment between
loan repayment and deposit.
"""

__version__ = "1.0.0"
