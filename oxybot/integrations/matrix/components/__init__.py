"""
Matrix integration components package.

This package contains the components of the bot's Matrix integration:
- auth: Login, session restore and sync token persistence
- verification: Auto-accepting device verification from our own devices
- sync: Catch-up and steady-state sync loop
- events: Room message handling and replies
"""
