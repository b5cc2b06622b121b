"""
Ascend — Discord Leveling & Role Reward Engine
===============================================

Awards experience for messages and voice presence, derives levels from a
fixed quadratic curve, and hands out level-gated roles.

Package layout::

    ascend/
    ├── config.py          YAML loader (infrastructure + guild defaults)
    ├── constants.py       Level formula + presentation constants
    ├── database/          SQLAlchemy models, engine, async bridge
    ├── engine/            Pure logic: cache, event bus, gatekeeper, roles
    ├── services/          Ledger, config store, voice accumulator, subscribers
    ├── bot/               discord.py bot + cogs
    └── api/               FastAPI read/admin API
"""

__version__ = "0.1.0"
