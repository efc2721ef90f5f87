"""
Allow the oxybot package to be executed as a module.

This enables running the bot with:
    python -m oxybot
    python -m oxybot --log-level DEBUG
"""

from oxybot.main import run

if __name__ == "__main__":
    run()
