"""
scrims.constants — Shared Constants
====================================

Single source of truth for values shared by the engine, the database layer
and the bot.  Import from here instead of duplicating literals.
"""

from __future__ import annotations

# ---------------------------------------------------------------------------
# Row cache
# ---------------------------------------------------------------------------
# Joins the unique-key values of a row into its cache id
ID_SEPARATOR = "#"

# Seconds between expiry sweeps of every row cache
SWEEP_INTERVAL = 2 * 60

# Default time-to-live of a cached row (seconds).  0 disables timer expiry.
DEFAULT_CACHE_LIFETIME = 60 * 60

# ---------------------------------------------------------------------------
# Permissions
# ---------------------------------------------------------------------------
# Holding this position denies every other position
BANNED_POSITION = "banned"

# Identity that passes every permission check
DEFAULT_OWNER_ID = 568427070020124672

# Below this many cached guild members the member cache is treated as not
# loaded and role lookups are indeterminate
DEFAULT_MEMBER_CACHE_THRESHOLD = 3

# ---------------------------------------------------------------------------
# Database change channel (PG LISTEN/NOTIFY)
# ---------------------------------------------------------------------------
CHANGE_CHANNEL = "scrims_changes"
