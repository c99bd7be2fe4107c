import re
import sys
from dataclasses import dataclass, field
from functools import reduce
from typing import Optional

from backend.db import get_entity_by_slug, link_entity_to_article
from .extraction import EntityCandidate
from .vocab import AI_CATEGORIES, normalize_entity_type

GENERIC_ENTITY_BLOCKLIST = {
    "ai",
    "artificial intelligence",
    "technology",
    "tech",
    "industry",
    "government",
    "company",
    "corporation",
    "startup",
    "platform",
    "system",
    "model",
    "research",
    "institute",
}

AI_KEYWORDS_RE = re.compile(r"\b(ai|artificial intelligence|model|research|regulation)\b", re.I)
EVENT_KEYWORDS_RE = re.compile(r"\b(ai|summit|expo|conference)\b", re.I)
INSTITUTION_KEYWORDS_RE = re.compile(r"\b(university|institute|lab|research)\b", re.I)
REJECTED_NAME_RE = re.compile(r"\b(party|parties|wing|wings)\b", re.I)
VENUE_NAME_RE = re.compile(r"\b(arena|stadium|hall|center|centre|convention center)\b", re.I)
CORPORATE_SUFFIX_RE = re.compile(r"\s+(Inc\.?|Corporation|Corp\.?|Ltd\.?|LLC|Plc|PLC)$", re.I)


@dataclass
class ResolvedEntity:
    id: object
    name: str
    slug: str
    type: str
    created: bool = False
    summary: Optional[str] = None
    parent_id: object = None


def normalize_entity_name(raw: str) -> str:
    name = (raw or "").strip()
    name = re.sub(r"\b\w", lambda m: m.group(0).upper(), name.lower())
    name = CORPORATE_SUFFIX_RE.sub("", name)
    name = re.sub(r"[,.\s]+$", "", name)
    return re.sub(r"\s+", " ", name).strip()


def entity_slug(name: str) -> str:
    slug = (name or "").lower().strip()
    slug = re.sub(r"\s+", "-", slug)
    slug = re.sub(r"[^a-z0-9-]", "", slug)
    slug = re.sub(r"-+", "-", slug)
    return slug.strip("-")


def slug_for_name(raw: str) -> str:
    return entity_slug(normalize_entity_name(raw))


def passes_contextual_filter(name: str, entity_type: str, category: str, content: str) -> bool:
    name_lower = name.strip().lower()

    if REJECTED_NAME_RE.search(name_lower):
        return False
    if entity_type != "venue" and VENUE_NAME_RE.search(name_lower):
        return False
    if entity_type == "person":
        if category not in AI_CATEGORIES:
            return False
        if not AI_KEYWORDS_RE.search(content or ""):
            return False
    if entity_type == "event" and not EVENT_KEYWORDS_RE.search(name_lower):
        return False
    if entity_type == "institution" and not INSTITUTION_KEYWORDS_RE.search(name_lower):
        return False
    return True


def rejection_reason(candidate: EntityCandidate, category: str, content: str) -> Optional[str]:
    name = (candidate.name or "").strip()
    if not name:
        return "empty"
    if len(name) < 2:
        return "too_short"
    if name.isdigit():
        return "numeric"
    if name.lower() in GENERIC_ENTITY_BLOCKLIST:
        return "blocklist"
    entity_type = normalize_entity_type(candidate.type)
    if entity_type is None:
        return "type"
    if not passes_contextual_filter(name, entity_type, category, content):
        return "context"
    return None


def lookup_or_create_entity(sb, name: str, entity_type: str) -> ResolvedEntity:
    slug = entity_slug(name)
    if not slug:
        raise ValueError(f"empty slug for {name!r}")

    row = get_entity_by_slug(sb, slug)
    if row:
        return _to_resolved(row, created=False)

    try:
        res = sb.table("entities").insert({"name": name, "slug": slug, "type": entity_type}).execute()
    except Exception:
        # lost a race on the unique slug: the row exists now
        row = get_entity_by_slug(sb, slug)
        if row:
            return _to_resolved(row, created=False)
        raise

    created = res.data or []
    if not created or not created[0].get("id"):
        raise RuntimeError(f"entities insert returned no row for {slug}")
    return _to_resolved(created[0], created=True)


def _to_resolved(row: dict, created: bool) -> ResolvedEntity:
    return ResolvedEntity(
        id=row.get("id"),
        name=row.get("name") or "",
        slug=row.get("slug") or "",
        type=row.get("type") or "",
        created=created,
        summary=row.get("summary"),
        parent_id=row.get("parent_id"),
    )


@dataclass(frozen=True)
class ParentLinks:
    first_company_id: object = None
    model_ids: tuple = field(default_factory=tuple)


def _fold_parent(acc: ParentLinks, entity: ResolvedEntity) -> ParentLinks:
    if entity.type == "company" and acc.first_company_id is None:
        return ParentLinks(entity.id, acc.model_ids)
    if entity.type == "model" and entity.id not in acc.model_ids:
        return ParentLinks(acc.first_company_id, acc.model_ids + (entity.id,))
    return acc


def plan_parent_links(entities: list[ResolvedEntity]) -> ParentLinks:
    """First company in extractor order becomes the parent of every model in the batch."""
    return reduce(_fold_parent, entities, ParentLinks())


def apply_parent_links(sb, plan: ParentLinks) -> list:
    if plan.first_company_id is None or not plan.model_ids:
        return []
    res = (
        sb.table("entities")
        .update({"parent_id": plan.first_company_id})
        .in_("id", list(plan.model_ids))
        .is_("parent_id", "null")
        .execute()
    )
    linked = [row.get("id") for row in (res.data or [])]
    print(
        f"INGEST_PARENT_LINKED company={plan.first_company_id} "
        f"models={len(plan.model_ids)} linked={len(linked)}"
    )
    return linked


def resolve_entities(
    sb,
    candidates: list[EntityCandidate],
    article_id,
    category: str,
    content: str,
) -> list[ResolvedEntity]:
    resolved: list[ResolvedEntity] = []
    seen: set[str] = set()

    for candidate in candidates:
        reason = rejection_reason(candidate, category, content)
        if reason:
            print(f"INGEST_ENTITY_REJECTED name={candidate.name!r} reason={reason}")
            continue

        name = normalize_entity_name(candidate.name)
        if not name or not entity_slug(name):
            print(f"INGEST_ENTITY_REJECTED name={candidate.name!r} reason=normalized_empty")
            continue

        try:
            entity = lookup_or_create_entity(sb, name, normalize_entity_type(candidate.type))
        except Exception as e:
            print(f"INGEST_ENTITY_FAILED name={name!r} err={str(e)[:200]}", file=sys.stderr)
            continue

        try:
            link_entity_to_article(sb, article_id, entity.id)
        except Exception as e:
            print(f"INGEST_ENTITY_LINK_FAILED name={name!r} err={str(e)[:200]}", file=sys.stderr)

        if entity.slug in seen:
            continue
        seen.add(entity.slug)
        resolved.append(entity)
        print(f"INGEST_ENTITY name={entity.name!r} slug={entity.slug} created={int(entity.created)}")

    plan = plan_parent_links(resolved)
    try:
        linked = set(apply_parent_links(sb, plan))
        for entity in resolved:
            if entity.id in linked:
                entity.parent_id = plan.first_company_id
    except Exception as e:
        print(f"INGEST_PARENT_LINK_FAILED err={str(e)[:200]}", file=sys.stderr)

    return resolved


def store_entity_summary(sb, entity: ResolvedEntity, summary: str | None) -> bool:
    """Writes the summary only while the column is still empty."""
    if not summary:
        print(f"ENTITY_SUMMARY_SKIP slug={entity.slug} reason=too_short")
        return False
    res = (
        sb.table("entities")
        .update({"summary": summary})
        .eq("id", entity.id)
        .is_("summary", "null")
        .execute()
    )
    if not res.data:
        return False
    entity.summary = summary
    print(f"ENTITY_SUMMARY_DONE slug={entity.slug} chars={len(summary)}")
    return True


def backfill_entity_summaries(sb, client, entities: list[ResolvedEntity]) -> int:
    done = 0
    for entity in entities:
        if entity.summary:
            continue
        try:
            if store_entity_summary(sb, entity, client.summarize_entity(entity.name, entity.type)):
                done += 1
        except Exception as e:
            print(f"ENTITY_SUMMARY_FAILED slug={entity.slug} err={str(e)[:200]}", file=sys.stderr)
    return done
