import json
import uuid
from datetime import datetime, timezone


def new_packet_id() -> str:
    return str(uuid.uuid4())


def format_timestamp(dt: datetime = None) -> str:
    """Render an instant as UTC `YYYY-MM-DDTHH:MM:SS.mmmZ`."""
    dt = dt or datetime.now(timezone.utc)
    dt = dt.astimezone(timezone.utc)
    return dt.strftime("%Y-%m-%dT%H:%M:%S.") + f"{dt.microsecond // 1000:03d}Z"


def safe_json(obj):
    """Recursively convert non-JSON-safe types (bytes, sets, tuples, enums)."""
    if isinstance(obj, (bytes, bytearray)):
        return obj.decode("utf-8", errors="ignore")
    if isinstance(obj, dict):
        return {str(k): safe_json(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple, set)):
        return [safe_json(v) for v in obj]
    # str-valued enums serialize as their value
    value = getattr(obj, "value", None)
    if isinstance(value, (str, int)):
        return value
    return obj


def dumps_compact(payload) -> str:
    return json.dumps(safe_json(payload), separators=(",", ":"), ensure_ascii=False)
