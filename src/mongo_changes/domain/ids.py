"""Change identifiers."""

from __future__ import annotations

import secrets

from mongo_changes.utils.time import utc_now


def new_change_id() -> str:
    """Return an id like ``chg-20260117-9f2c41ab`` (UTC date plus 8 random hex chars)."""
    return f"chg-{utc_now():%Y%m%d}-{secrets.token_hex(4)}"
