"""JSON serialization utilities."""

from __future__ import annotations

import base64
import datetime
import decimal
import enum
import json
from typing import Any


def json_default(obj: object) -> object:
    """JSON serializer for objects not serializable by default json code."""
    if isinstance(obj, (datetime.date, datetime.datetime)):
        return obj.isoformat()
    if isinstance(obj, enum.Enum):
        return obj.value
    if isinstance(obj, decimal.Decimal):
        # Preserve numeric type: convert to int if no decimal part, else float.
        if obj == obj.to_integral_value():
            return int(obj)
        return float(obj)
    if isinstance(obj, bytes):
        return base64.b64encode(obj).decode("ascii")
    if hasattr(obj, "to_dict") and callable(obj.to_dict):
        return obj.to_dict()
    return str(obj)


def dumps_canonical(payload: Any) -> str:
    """Stable JSON text used for change detection between cache and remote."""
    return json.dumps(payload, sort_keys=True, separators=(",", ":"), default=json_default)
