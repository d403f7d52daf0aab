"""
SFT Ledger CLI Commands Package

Command modules for the SFT ledger CLI.
"""

__all__ = ['blocks', 'classes', 'collection', 'tokens']
