"""Replay an appointment's event log into the current value of its event-sourced fields.

Fields such as the linked package, the plan mode and the free-text treatment item are never
stored as columns; every writer appends an ``appointment_events`` row instead. Writers come
in two generations: older ones put fields at the top level of ``meta``, newer ones nest them
under ``meta["after"]`` next to a ``before`` copy. Both layouts are folded into one
:class:`EventMeta` before any resolution logic runs.

Resolution is per field, newest event first: the first non-empty value wins, so an edit that
only touched the scheduled time does not erase a package linked by an older event. The only
way to clear the package is an explicit ``unlink_package`` / ``package_unlinked`` marker.

Nothing here raises on bad input; malformed rows degrade to empty values.
"""
from __future__ import annotations

import json
from collections.abc import Iterable, Mapping
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any

__all__ = [
    "PLAN_MODE_ONE_OFF",
    "PLAN_MODE_PACKAGE",
    "EventMeta",
    "EventRecord",
    "ResolvedFields",
    "normalize_event_meta",
    "normalize_plan_mode",
    "normalize_text",
    "resolve_appointment_fields",
    "resolve_fields_by_appointment",
    "resolve_latest_text",
    "sort_events_newest_first",
]

PLAN_MODE_ONE_OFF = "one_off"
PLAN_MODE_PACKAGE = "package"
PLAN_MODES = frozenset({PLAN_MODE_ONE_OFF, PLAN_MODE_PACKAGE})
_PLAN_MODE_ALIASES = {"oneoff": PLAN_MODE_ONE_OFF}

UNLINK_KEYS = ("unlink_package", "package_unlinked")


def normalize_text(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def normalize_plan_mode(value: Any) -> str:
    raw = normalize_text(value).lower()
    if not raw:
        return ""
    raw = _PLAN_MODE_ALIASES.get(raw, raw)
    return raw if raw in PLAN_MODES else ""


@dataclass(frozen=True)
class EventMeta:
    flat: Mapping[str, Any] = field(default_factory=dict)
    after: Mapping[str, Any] = field(default_factory=dict)
    before: Mapping[str, Any] = field(default_factory=dict)

    def has(self, key: str) -> bool:
        return key in self.after or key in self.flat

    def read(self, key: str, default: Any = None) -> Any:
        # A key present under ``after`` shadows the flat value even when it is empty.
        if key in self.after:
            return self.after[key]
        if key in self.flat:
            return self.flat[key]
        return default

    def text(self, key: str) -> str:
        return normalize_text(self.read(key))

    def flat_text(self, key: str) -> str:
        return normalize_text(self.flat.get(key))

    def after_text(self, key: str) -> str:
        return normalize_text(self.after.get(key))

    @property
    def unlinks_package(self) -> bool:
        return any(
            layer.get(key) is True for layer in (self.flat, self.after) for key in UNLINK_KEYS
        )


def _as_object(value: Any) -> dict[str, Any]:
    if isinstance(value, Mapping):
        return dict(value)
    return {}


def normalize_event_meta(raw: Any) -> EventMeta:
    if isinstance(raw, EventMeta):
        return raw
    if isinstance(raw, (bytes, bytearray)):
        try:
            raw = raw.decode("utf-8")
        except UnicodeDecodeError:
            return EventMeta()
    if isinstance(raw, str):
        if not raw.strip():
            return EventMeta()
        try:
            raw = json.loads(raw)
        except ValueError:
            return EventMeta()
    if not isinstance(raw, Mapping):
        return EventMeta()

    flat = {key: value for key, value in raw.items() if key not in ("after", "before")}
    return EventMeta(flat=flat, after=_as_object(raw.get("after")), before=_as_object(raw.get("before")))


def _parse_timestamp(value: Any) -> float | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        moment = value
    else:
        text = normalize_text(value)
        if not text:
            return None
        if text.endswith(("Z", "z")):
            text = text[:-1] + "+00:00"
        try:
            moment = datetime.fromisoformat(text)
        except ValueError:
            return None
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.timestamp()


def _row_value(row: Any, *names: str) -> Any:
    for name in names:
        if isinstance(row, Mapping):
            if name in row:
                return row[name]
        elif hasattr(row, name):
            return getattr(row, name)
    return None


@dataclass(frozen=True)
class EventRecord:
    id: str
    event_type: str
    timestamp: float | None
    meta: EventMeta
    appointment_id: str = ""

    @classmethod
    def from_row(cls, row: Any) -> "EventRecord":
        if isinstance(row, EventRecord):
            return row
        return cls(
            id=normalize_text(_row_value(row, "id")),
            event_type=normalize_text(_row_value(row, "event_type", "eventType")),
            timestamp=_parse_timestamp(
                _row_value(row, "event_at", "eventAt", "created_at", "createdAt")
            ),
            meta=normalize_event_meta(_row_value(row, "meta")),
            appointment_id=normalize_text(_row_value(row, "appointment_id", "appointmentId")),
        )


def _id_sort_key(event_id: str) -> tuple[int, int, str]:
    # Integral ids compare numerically so 10 sorts after 9.
    if event_id.isdigit():
        return (1, int(event_id), "")
    return (0, 0, event_id)


def sort_events_newest_first(events: Iterable[Any]) -> list[EventRecord]:
    records = [EventRecord.from_row(row) for row in events or []]
    # Two stable passes: id descending breaks ties, then timestamp descending with nulls last.
    records.sort(key=lambda record: _id_sort_key(record.id), reverse=True)
    records.sort(
        key=lambda record: (record.timestamp is None, -(record.timestamp or 0.0))
    )
    return records


@dataclass(frozen=True)
class ResolvedFields:
    package_id: str = ""
    treatment_plan_mode: str = ""
    treatment_item_text: str = ""

    def as_dict(self) -> dict[str, str]:
        return asdict(self)


def resolve_appointment_fields(events: Iterable[Any] | None) -> ResolvedFields:
    package_id: str | None = None
    plan_mode: str | None = None
    item_text: str | None = None

    for event in sort_events_newest_first(events or []):
        meta = event.meta

        if package_id is None:
            if meta.unlinks_package:
                package_id = ""
            else:
                value = meta.text("package_id")
                if value:
                    package_id = value

        if plan_mode is None:
            value = normalize_plan_mode(meta.read("treatment_plan_mode"))
            if value:
                plan_mode = value

        if item_text is None:
            value = meta.text("treatment_item_text")
            if value:
                item_text = value

        if package_id is not None and plan_mode is not None and item_text is not None:
            break

    package_id = package_id or ""
    plan_mode = plan_mode or ""
    if not plan_mode and package_id:
        plan_mode = PLAN_MODE_PACKAGE

    return ResolvedFields(
        package_id=package_id,
        treatment_plan_mode=plan_mode,
        treatment_item_text=item_text or "",
    )


def resolve_fields_by_appointment(rows: Iterable[Any] | None) -> dict[str, ResolvedFields]:
    grouped: dict[str, list[EventRecord]] = {}
    for row in rows or []:
        record = EventRecord.from_row(row)
        if not record.appointment_id:
            continue
        grouped.setdefault(record.appointment_id, []).append(record)
    return {
        appointment_id: resolve_appointment_fields(records)
        for appointment_id, records in grouped.items()
    }


def resolve_latest_text(events: Iterable[Any] | None, *keys: str) -> str:
    """Newest non-empty value of the first key that has one, e.g. staff name then display name."""
    ordered = sort_events_newest_first(events or [])
    for key in keys:
        for event in ordered:
            value = event.meta.text(key)
            if value:
                return value
    return ""
