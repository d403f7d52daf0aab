"""
SFT Ledger CLI

Command line interface for the SFT ledger.
"""

__version__ = "0.1.0"
