"""
Scrims — Position & Permission Engine for a Discord Scrims Community
=====================================================================
Tracks who holds which position (rank) across a host guild and a database
ledger, decides permissions from that state, and keeps the host guild's
roles in step with it.
"""

__version__ = "0.1.0"
