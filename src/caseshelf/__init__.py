"""
caseshelf - offline document cache and credit ledger for case-file clients.
"""

__version__ = "0.1.0"
