"""Date and audit-context helpers for scheduled tier changes."""
import json
from datetime import date, datetime, timezone
from typing import Any, Optional

import structlog

logger = structlog.get_logger(__name__)


def normalize_date_input(value: Any) -> Optional[datetime]:
    """
    Coerce a datetime, ISO-8601 string or epoch milliseconds to naive UTC.

    Returns:
        Naive UTC datetime, or None when the value is empty or unparseable
    """
    if value is None or value == "":
        return None

    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, bool):
        return None
    elif isinstance(value, (int, float)):
        try:
            parsed = datetime.fromtimestamp(value / 1000, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    elif isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
        except ValueError:
            return None
    else:
        return None

    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def _json_default(value: Any) -> Any:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def sanitize_context(context: Any) -> Optional[Any]:
    """
    Return a JSON-safe deep copy of a plan change audit payload.

    Datetimes become ISO strings. Payloads that cannot be serialised are
    dropped with a warning.
    """
    if context is None:
        return None
    try:
        return json.loads(json.dumps(context, default=_json_default))
    except (TypeError, ValueError) as e:
        logger.warning("plan_change_context_sanitize_failed", error=str(e))
        return None


def parse_context(raw: Any) -> Optional[dict]:
    """Read a stored context that may be a dict or a JSON string."""
    if raw is None:
        return None
    if isinstance(raw, dict):
        return raw
    if not isinstance(raw, str):
        return None
    try:
        parsed = json.loads(raw)
    except ValueError:
        return None
    return parsed if isinstance(parsed, dict) else None
