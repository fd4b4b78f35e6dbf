from datetime import date, datetime
from typing import Dict, Optional

MAX_FAMILY_SLOTS = 5


def slots_used(members) -> int:
    return len(members or [])


def slots_available(members) -> int:
    return max(0, MAX_FAMILY_SLOTS - slots_used(members))


def is_family_full(members) -> bool:
    return slots_used(members) >= MAX_FAMILY_SLOTS


def _parse_date(value: str) -> Optional[date]:
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00")).date()
    except ValueError:
        return None


def days_remaining(expiry_date: Optional[str], today: Optional[date] = None) -> Optional[int]:
    if not expiry_date:
        return None
    expiry = _parse_date(expiry_date)
    if expiry is None:
        return None
    today = today or date.today()
    return (expiry - today).days


def expiry_status(days: Optional[int]) -> Dict[str, str]:
    if days is None:
        return {"text": "No expiry set", "color": "gray"}
    if days < 0:
        return {"text": "EXPIRED", "color": "gray"}
    if days <= 3:
        return {"text": f"{days} DAYS LEFT", "color": "red"}
    if days <= 7:
        return {"text": f"{days} DAYS LEFT", "color": "yellow"}
    return {"text": f"{days} DAYS LEFT", "color": "green"}
