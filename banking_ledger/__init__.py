"""
Banking Ledger

Money-movement core of a banking back office: accounts, an immutable
double-entry transaction ledger, atomic idempotent transfers, activity
summaries and period statements, exposed through a FastAPI application.
"""

__version__ = "1.0.0"
