"""
SFT Ledger Module

This module provides the hash-chained block log, the archive hand-off, the
ledger state bundle and the Ledger service that exposes every boundary
operation.
"""
