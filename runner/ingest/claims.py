"""
Single-valued temporal versioning of relationship facts.

A subject holds at most one active value per predicate. Asserting a new
object for (subject, predicate) retires every active row for that pair
(is_active=false, valid_to=today) and its current claim (is_current=false),
then inserts the new row with a claim whose revision continues the chain.
"""

import sys
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from backend.db import get_entity_by_slug, utc_now
from .entities import slug_for_name
from .extraction import RelationshipTriple


@dataclass
class VersionOutcome:
    subject: str
    predicate: str
    object: str
    status: str
    revision: Optional[int] = None
    relationship_id: object = None
    superseded_ids: list = field(default_factory=list)


def resolve_pair(sb, subject_name: str, object_name: str) -> tuple[Optional[dict], Optional[dict]]:
    subject_slug = slug_for_name(subject_name)
    object_slug = slug_for_name(object_name)
    with ThreadPoolExecutor(max_workers=2) as executor:
        subject_f = executor.submit(get_entity_by_slug, sb, subject_slug, "id,name,slug,type")
        object_f = executor.submit(get_entity_by_slug, sb, object_slug, "id,name,slug,type")
        return subject_f.result(), object_f.result()


def _active_exact(sb, subject_id, object_id, predicate: str) -> bool:
    res = (
        sb.table("entity_relationships")
        .select("id")
        .eq("subject_id", subject_id)
        .eq("object_id", object_id)
        .eq("predicate", predicate)
        .eq("is_active", True)
        .limit(1)
        .execute()
    )
    return bool(res.data)


def supersede(sb, subject_id, predicate: str, now: datetime) -> tuple[list, int]:
    """
    Retires the active relationships and current claims for (subject, predicate).
    Returns the retired relationship ids and the highest retired claim revision.
    """
    now_iso = now.isoformat()
    today = now.date().isoformat()

    active = (
        sb.table("entity_relationships")
        .select("id")
        .eq("subject_id", subject_id)
        .eq("predicate", predicate)
        .eq("is_active", True)
        .execute()
    )
    retired_ids = [row["id"] for row in (active.data or [])]
    if retired_ids:
        # the is_active filter keeps a concurrent run from retiring the same row twice
        sb.table("entity_relationships").update(
            {"is_active": False, "valid_to": today, "updated_at": now_iso}
        ).in_("id", retired_ids).eq("is_active", True).execute()

    current = (
        sb.table("claims")
        .select("id,revision")
        .eq("claim_type", "relationship")
        .eq("subject_id", subject_id)
        .eq("predicate", predicate)
        .eq("is_current", True)
        .execute()
    )
    claims = current.data or []
    max_revision = max((int(c.get("revision") or 0) for c in claims), default=0)
    if claims:
        sb.table("claims").update({"is_current": False, "updated_at": now_iso}).in_(
            "id", [c["id"] for c in claims]
        ).eq("is_current", True).execute()

    if retired_ids or claims:
        print(
            f"INGEST_SUPERSEDED subject={subject_id} predicate={predicate} "
            f"relationships={len(retired_ids)} claims={len(claims)} max_revision={max_revision}"
        )
    return retired_ids, max_revision


def version_relationship(
    sb,
    subject_id,
    object_id,
    predicate: str,
    confidence: float,
    source_url: str,
    now: datetime | None = None,
) -> VersionOutcome:
    now = now or utc_now()
    outcome = VersionOutcome(subject=str(subject_id), predicate=predicate, object=str(object_id), status="inserted")

    if _active_exact(sb, subject_id, object_id, predicate):
        outcome.status = "duplicate"
        return outcome

    retired_ids, max_revision = supersede(sb, subject_id, predicate, now)
    outcome.superseded_ids = retired_ids
    revision = max_revision + 1
    now_iso = now.isoformat()

    try:
        res = sb.table("entity_relationships").insert(
            {
                "subject_id": subject_id,
                "object_id": object_id,
                "predicate": predicate,
                "source_url": source_url,
                "confidence": confidence,
                "is_active": True,
                "valid_from": now.date().isoformat(),
                "valid_to": None,
                "updated_at": now_iso,
            }
        ).execute()
    except Exception as e:
        print(f"INGEST_RELATIONSHIP_INSERT_FAILED predicate={predicate} err={str(e)[:200]}", file=sys.stderr)
        if retired_ids or max_revision:
            # the pair now has no active row and no current claim
            print(
                f"INGEST_SUPERSEDE_ORPHANED subject={subject_id} predicate={predicate} "
                f"retired_ids={retired_ids} max_revision={max_revision}",
                file=sys.stderr,
            )
        outcome.status = "failed"
        return outcome

    if res.data:
        outcome.relationship_id = res.data[0].get("id")

    try:
        sb.table("claims").insert(
            {
                "claim_type": "relationship",
                "subject_id": subject_id,
                "object_id": object_id,
                "predicate": predicate,
                "structured_payload": None,
                "source_url": source_url,
                "confidence": confidence,
                "revision": revision,
                "is_current": True,
                "verification_status": "auto_extracted",
                "updated_at": now_iso,
            }
        ).execute()
    except Exception as e:
        print(f"INGEST_CLAIM_INSERT_FAILED predicate={predicate} err={str(e)[:200]}", file=sys.stderr)
        outcome.status = "claim_failed"
        return outcome

    outcome.revision = revision
    return outcome


def version_relationships(
    sb,
    triples: list[RelationshipTriple],
    source_url: str,
    now: datetime | None = None,
) -> list[VersionOutcome]:
    now = now or utc_now()
    outcomes = []
    for triple in triples:
        try:
            subject, obj = resolve_pair(sb, triple.subject, triple.object)
            if not subject or not obj:
                print(f"INGEST_RELATIONSHIP_UNRESOLVED subject={triple.subject!r} object={triple.object!r}")
                outcomes.append(VersionOutcome(triple.subject, triple.predicate, triple.object, "unresolved"))
                continue
            if subject["id"] == obj["id"]:
                outcomes.append(VersionOutcome(triple.subject, triple.predicate, triple.object, "self"))
                continue

            outcome = version_relationship(
                sb, subject["id"], obj["id"], triple.predicate, triple.confidence, source_url, now
            )
            outcome.subject, outcome.object = subject.get("name") or triple.subject, obj.get("name") or triple.object
            print(
                f"INGEST_RELATIONSHIP status={outcome.status} subject={outcome.subject!r} "
                f"predicate={triple.predicate} object={outcome.object!r} revision={outcome.revision}"
            )
            outcomes.append(outcome)
        except Exception as e:
            print(
                f"INGEST_RELATIONSHIP_FAILED subject={triple.subject!r} predicate={triple.predicate} "
                f"err={str(e)[:200]}",
                file=sys.stderr,
            )
            outcomes.append(VersionOutcome(triple.subject, triple.predicate, triple.object, "failed"))
    return outcomes
