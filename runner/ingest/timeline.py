import re
import sys
from dataclasses import dataclass
from datetime import date
from typing import Optional

from backend.db import get_entity_by_slug
from .entities import slug_for_name
from .vocab import normalize_event_type

EXTRACTED_EVENT_CONFIDENCE = 0.85

_PARTIAL_DATE_RE = re.compile(r"^(\d{4})(?:-(\d{1,2}))?(?:-(\d{1,2}))?")


@dataclass
class TimelineOutcome:
    status: str
    entity_id: object = None
    event_type: Optional[str] = None
    event_date: Optional[str] = None


def parse_event_date(raw) -> Optional[str]:
    """ISO date string, with YYYY-MM and YYYY padded to the first day."""
    if not isinstance(raw, str):
        return None
    m = _PARTIAL_DATE_RE.match(raw.strip())
    if not m:
        return None
    year, month, day = m.group(1), m.group(2) or "1", m.group(3) or "1"
    try:
        return date(int(year), int(month), int(day)).isoformat()
    except ValueError:
        return None


def _timeline_exists(sb, entity_id, event_type: str, event_date: str, title: str) -> bool:
    res = (
        sb.table("timelines")
        .select("id")
        .eq("entity", entity_id)
        .eq("event_type", event_type)
        .eq("event_date", event_date)
        .eq("title", title)
        .limit(1)
        .execute()
    )
    return bool(res.data)


def record_timeline_event(
    sb,
    title: str,
    event_date,
    event_type,
    source_url: str,
    description: str = "",
    confidence: float = EXTRACTED_EVENT_CONFIDENCE,
    entity_id=None,
    entity_name: str | None = None,
) -> TimelineOutcome:
    if entity_id is None:
        row = get_entity_by_slug(sb, slug_for_name(entity_name or ""), "id")
        if not row:
            print(f"INGEST_TIMELINE_ENTITY_NOT_FOUND entity={entity_name!r}")
            return TimelineOutcome(status="unresolved")
        entity_id = row["id"]

    title = (title or "").strip()
    iso_date = parse_event_date(event_date)
    kind = normalize_event_type(event_type)
    if not title or not iso_date:
        print(f"INGEST_TIMELINE_INVALID title={title!r} date={event_date!r}")
        return TimelineOutcome(status="invalid", entity_id=entity_id, event_type=kind)

    outcome = TimelineOutcome(status="inserted", entity_id=entity_id, event_type=kind, event_date=iso_date)
    if _timeline_exists(sb, entity_id, kind, iso_date, title):
        print(f"INGEST_TIMELINE_DUPLICATE title={title!r}")
        outcome.status = "duplicate"
        return outcome

    try:
        sb.table("timelines").insert(
            {
                "entity": entity_id,
                "title": title,
                "description": description or "",
                "event_date": iso_date,
                "event_type": kind,
                "source_url": source_url,
                "confidence": confidence,
            }
        ).execute()
    except Exception as e:
        print(f"INGEST_TIMELINE_INSERT_FAILED title={title!r} err={str(e)[:200]}", file=sys.stderr)
        outcome.status = "failed"
        return outcome

    try:
        sb.table("claims").insert(
            {
                "claim_type": "timeline",
                "subject_id": entity_id,
                "object_id": None,
                "predicate": None,
                "structured_payload": {
                    "event_type": kind,
                    "event_date": iso_date,
                    "title": title,
                    "description": description or "",
                },
                "source_url": source_url,
                "confidence": confidence,
                "revision": 1,
                "is_current": True,
                "verification_status": "auto_extracted",
            }
        ).execute()
    except Exception as e:
        print(f"INGEST_TIMELINE_CLAIM_FAILED title={title!r} err={str(e)[:200]}", file=sys.stderr)
        outcome.status = "claim_failed"
        return outcome

    print(f"INGEST_TIMELINE title={title!r} event_type={kind} date={iso_date}")
    return outcome


def record_extracted_event(sb, event: dict | None, source_url: str) -> Optional[TimelineOutcome]:
    if not event or not isinstance(event.get("entity"), str) or not event["entity"].strip():
        return None
    if event.get("event_type") not in (None, normalize_event_type(event.get("event_type"))):
        print(f"INGEST_EVENT_TYPE_COERCED raw={event.get('event_type')!r}")
    description = event.get("description")
    return record_timeline_event(
        sb,
        title=event.get("title") if isinstance(event.get("title"), str) else "",
        event_date=event.get("date"),
        event_type=event.get("event_type"),
        source_url=source_url,
        description=description if isinstance(description, str) else "",
        entity_name=event["entity"],
    )
