"""Action-agnostic normalization of free-form event payloads.

Every recognized key is coerced independently; absent or blank values are dropped
from the result instead of being stored as empty strings. Keys that are not
recognized pass through untouched.
"""

from __future__ import annotations

import math
import re
from typing import Any

from opsdesk.events.errors import ValidationError

MAX_NOTE_CHARS = 2000
MAX_REASON_CHARS = 500
MAX_TAG_CHARS = 50
MAX_TAGS = 20

PAYLOAD_ALIASES = {
    "parts_value": "partsValue",
    "labor_value": "laborValue",
    "changed_fields": "changedFields",
    "service_order_id": "serviceOrderId",
}

_TEXT_CAPS = {"note": MAX_NOTE_CHARS, "reason": MAX_REASON_CHARS}
_PLAIN_TEXT_FIELDS = ("assignee", "os", "method")
MONEY_FIELDS = ("partsValue", "laborValue")

_MONEY_NOISE_RE = re.compile(r"[^\d,.\-]")


def normalize_text(value: Any) -> str | None:
    if not isinstance(value, str):
        return None
    trimmed = value.strip()
    return trimmed or None


def normalize_tags(value: Any) -> list[str] | None:
    if not isinstance(value, list):
        return None
    tags: list[str] = []
    seen: set[str] = set()
    for item in value:
        if not isinstance(item, str):
            continue
        tag = item.strip()[:MAX_TAG_CHARS].strip()
        if not tag or tag in seen:
            continue
        seen.add(tag)
        tags.append(tag)
        if len(tags) == MAX_TAGS:
            break
    return tags or None


def parse_money(value: Any) -> float | None:
    """Parse a monetary amount, accepting pt-BR notation (``"1.200,50"``).

    Returns ``None`` when the value is missing or blank and raises ``ValueError``
    when a value is present but is not a finite, non-negative number.
    """
    if value is None:
        return None
    if isinstance(value, bool):
        raise ValueError("not a number")
    if isinstance(value, (int, float)):
        try:
            parsed = float(value)
        except OverflowError:
            raise ValueError("not finite") from None
    elif isinstance(value, str):
        trimmed = value.strip()
        if not trimmed:
            return None
        numeric = _MONEY_NOISE_RE.sub("", trimmed)
        if "," in numeric and "." in numeric:
            numeric = numeric.replace(".", "").replace(",", ".", 1)
        elif "," in numeric:
            numeric = numeric.replace(",", ".", 1)
        parsed = float(numeric)
    else:
        raise ValueError("not a number")

    if not math.isfinite(parsed):
        raise ValueError("not finite")
    if parsed < 0:
        raise ValueError("negative")
    return parsed


def normalize_changed_fields(value: Any) -> dict[str, str] | None:
    if not isinstance(value, dict):
        return None
    entries: dict[str, str] = {}
    for raw_key, raw_value in value.items():
        if raw_value is None:
            continue
        key = str(raw_key).strip()
        text = raw_value.strip() if isinstance(raw_value, str) else str(raw_value).strip()
        if key and text:
            entries[key] = text
    return entries or None


def normalize_positive_int(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value if value > 0 else None
    if isinstance(value, float):
        return int(value) if value.is_integer() and value > 0 else None
    if isinstance(value, str):
        try:
            parsed = int(value.strip())
        except ValueError:
            return None
        return parsed if parsed > 0 else None
    return None


def _apply_aliases(payload: dict[str, Any]) -> dict[str, Any]:
    result = dict(payload)
    for alias, canonical in PAYLOAD_ALIASES.items():
        if alias in result:
            aliased = result.pop(alias)
            result.setdefault(canonical, aliased)
    return result


def normalize_payload(raw: Any) -> dict[str, Any]:
    payload = _apply_aliases(raw) if isinstance(raw, dict) else {}

    for key, cap in _TEXT_CAPS.items():
        text = normalize_text(payload.get(key))
        if text is None:
            payload.pop(key, None)
            continue
        if len(text) > cap:
            raise ValidationError(f"{key} must be at most {cap} characters", field=key, details={"max": cap})
        payload[key] = text

    for key in _PLAIN_TEXT_FIELDS:
        text = normalize_text(payload.get(key))
        if text is None:
            payload.pop(key, None)
        else:
            payload[key] = text

    tags = normalize_tags(payload.get("tags"))
    if tags is None:
        payload.pop("tags", None)
    else:
        payload["tags"] = tags

    for key in MONEY_FIELDS:
        try:
            amount = parse_money(payload.get(key))
        except ValueError:
            raise ValidationError(f"{key} must be a finite number >= 0", field=key) from None
        if amount is None:
            payload.pop(key, None)
        else:
            payload[key] = amount

    changed = normalize_changed_fields(payload.get("changedFields"))
    if changed is None:
        payload.pop("changedFields", None)
    else:
        payload["changedFields"] = changed

    service_order_id = normalize_positive_int(payload.get("serviceOrderId"))
    if service_order_id is None:
        payload.pop("serviceOrderId", None)
    else:
        payload["serviceOrderId"] = service_order_id

    return payload
