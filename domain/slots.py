"""Slot validation and conflict detection"""
from datetime import datetime, timezone
from typing import Any, Iterable, List, Optional, Sequence

from domain.exceptions import InvalidSlot, SlotConflict
from domain.value_objects import TimeSlot


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse an ISO-8601 string or datetime into an aware UTC datetime"""
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str) and value.strip():
        text = value.strip()
        if text.endswith(("Z", "z")):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
    else:
        return None

    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def _slot_bounds(raw: Any):
    if isinstance(raw, TimeSlot):
        return raw.start_time, raw.end_time
    if isinstance(raw, dict):
        return raw.get("start_time"), raw.get("end_time")
    if hasattr(raw, "start_time") and hasattr(raw, "end_time"):
        return raw.start_time, raw.end_time
    try:
        start, end = raw
    except (TypeError, ValueError):
        raise InvalidSlot("Invalid slot date")
    return start, end


def validate_slots(raw_slots: Sequence[Any]) -> List[TimeSlot]:
    """Validate requested slots.

    Accepts dicts with ``start_time``/``end_time``, objects exposing those
    attributes, or ``(start, end)`` pairs. Order is preserved.
    """
    if not raw_slots:
        raise InvalidSlot("At least one slot is required")

    validated: List[TimeSlot] = []
    for raw in raw_slots:
        raw_start, raw_end = _slot_bounds(raw)
        start = parse_timestamp(raw_start)
        end = parse_timestamp(raw_end)
        if start is None or end is None:
            raise InvalidSlot("Invalid slot date")
        if end <= start:
            raise InvalidSlot("Slot end must be after start")
        validated.append(TimeSlot(start_time=start, end_time=end))
    return validated


def find_conflict(slot: TimeSlot, others: Iterable[TimeSlot]) -> Optional[TimeSlot]:
    """Return the first interval in ``others`` overlapping ``slot``"""
    for other in others:
        if slot.overlaps(other):
            return other
    return None


def ensure_no_conflicts(proposed: Sequence[TimeSlot], existing: Iterable[TimeSlot]) -> None:
    """Check proposed slots against persisted ones and against each other.

    Raises SlotConflict carrying the interval that was hit first.
    """
    existing = list(existing)
    accepted: List[TimeSlot] = []
    for slot in proposed:
        hit = find_conflict(slot, existing) or find_conflict(slot, accepted)
        if hit is not None:
            raise SlotConflict(hit.start_time, hit.end_time)
        accepted.append(slot)
