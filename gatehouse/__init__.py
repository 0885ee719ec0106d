"""
Gatehouse — Estate Visitor Access Control
==========================================
Pre-registers visitors, issues QR-coded gate passes with access-code
fallback, drives them through check-in and check-out at the gate, and
raises security alerts when something looks wrong.

Package layout::

    gatehouse/
    ├── config.py          # YAML → typed Python config
    ├── constants.py       # Shared constants, alert mapping, UTC helpers
    ├── exceptions.py      # Domain error hierarchy (mapped to HTTP codes)
    ├── database/
    │   ├── engine.py      # SQLAlchemy engine + async helper
    │   └── models.py      # All ORM models
    ├── engine/
    │   ├── lifecycle.py   # Pass state machine
    │   ├── tokens.py      # Signed QR tokens + access codes
    │   ├── validation.py  # Gate verdicts
    │   └── anomaly.py     # Failed-attempt tracker, overstay check
    ├── services/
    │   ├── estates.py     # Estates, members, authorization
    │   ├── visitors.py    # Visitor registry + blacklist
    │   ├── passes.py      # Issue, check-in/out, revoke, sweep
    │   ├── gate.py        # Public QR / access-code validation
    │   ├── alerts.py      # Security alerts
    │   ├── analytics.py   # Visitor statistics
    │   ├── logs.py        # Visitor logs + gate journal
    │   ├── audit.py       # Append-only admin_log helpers
    │   ├── notifications.py # SMS / email delivery, QR rendering
    │   └── sweeper.py     # Background expiry sweep
    └── api/
        ├── main.py        # FastAPI app
        ├── deps.py        # JWT, engine, config dependencies
        ├── auth.py        # /auth/me
        ├── rate_limit.py  # Gate validation throttle
        └── routes/        # Estate, visitor, pass, gate, alert, report endpoints
"""

__version__ = "0.1.0"
