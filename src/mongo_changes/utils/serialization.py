"""JSON serialization utilities."""

from __future__ import annotations

import datetime
import decimal
import json

from bson import ObjectId


def json_default(obj: object) -> object:
    """JSON serializer for objects not serializable by default json code."""
    if isinstance(obj, (datetime.date, datetime.datetime)):
        return obj.isoformat()
    if isinstance(obj, decimal.Decimal):
        if obj == obj.to_integral_value():
            return int(obj)
        return float(obj)
    if isinstance(obj, ObjectId):
        return str(obj)
    if isinstance(obj, (set, frozenset, tuple)):
        return list(obj)
    return str(obj)


def dumps(payload: object) -> str:
    return json.dumps(payload, ensure_ascii=True, sort_keys=False, default=json_default)


def loads(text: str | None) -> object:
    if text is None:
        return None
    return json.loads(text)
