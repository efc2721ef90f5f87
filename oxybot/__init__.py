"""
Oxybot - a minimal Matrix chat bot.

This package provides:
- Session bootstrap (fresh login or restore from a persisted session file)
- A catch-up sync that skips the backlog, followed by a steady-state sync loop
- A small message handler that answers a command prefix
"""

__version__ = "0.1.0"
__author__ = "Oxybot Team"
