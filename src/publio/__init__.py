"""
Publio - Procurement marketplace core.

Tender lifecycle, offer handling, equity audit trail and saved-search
alerts over a relational store, with a terminal-first admin CLI.
"""

__version__ = "0.1.0"
__app_name__ = "publio"
