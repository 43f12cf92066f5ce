"""
Pulse — Real-Time Ephemeral State for a Social Food App
========================================================
Tracks the small, fast-moving, short-lived facts that make the app feel
live: who is online, who is typing, which notifications are unread, who
has seen a message, and where the group wants to eat tonight.  Every fact
is written through a reactive store that pushes fresh results to
subscribers whenever the data they watch changes.

Package layout::

    pulse/
    ├── config.py          # YAML → typed Python config
    ├── constants.py       # TTLs, thresholds, time helpers
    ├── database/
    │   ├── engine.py      # SQLAlchemy engine + async helper
    │   └── models.py      # All ORM models (8 tables)
    ├── engine/
    │   ├── store.py       # ReactiveStore: upserts, subscriptions, PG NOTIFY
    │   ├── tally.py       # Vote tallies + leader selection
    │   └── windows.py     # Weekly / monthly window identifiers
    ├── services/
    │   ├── presence_service.py      # Heartbeats + staleness
    │   ├── typing_service.py        # Typing indicators (5 s TTL)
    │   ├── notification_service.py  # Live notification feed
    │   ├── receipt_service.py       # Message read receipts
    │   ├── gathering_service.py     # Group decision voting
    │   ├── activity_service.py      # Friend activity feed (24 h TTL)
    │   ├── leaderboard_service.py   # Referral leaderboard windows
    │   ├── shared_post_service.py   # Post shares between friends
    │   └── sweep_service.py         # Scheduled cleanup entry points
    └── api/
        ├── main.py        # FastAPI app
        ├── deps.py        # JWT identity + engine/store wiring
        ├── streaming.py   # Subscription → Server-Sent Events bridge
        └── routes/        # One router per component
"""

__version__ = "0.1.0"
