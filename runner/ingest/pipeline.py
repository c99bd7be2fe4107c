import hmac
import sys
import time
import traceback
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Optional

from backend.config import admin_secret, get_bool
from backend.db import (
    create_article,
    get_article_by_source_url,
    get_client,
    log_ingestion,
    table_has_column,
    utc_now,
)
from .claims import VersionOutcome, version_relationships
from .entities import ResolvedEntity, backfill_entity_summaries, resolve_entities
from .errors import DuplicateSource, IngestError, InternalError, PersistenceError, Unauthorized
from .extract import FetchedPage, fetch_html, sanitize_html, validate_url
from .extraction import ExtractionClient, ExtractionResult
from .timeline import TimelineOutcome, record_extracted_event

STAGES = (
    "received",
    "duplicate-check",
    "fetching",
    "sanitizing",
    "extracting",
    "persisting-article",
    "resolving-entities",
    "versioning-relationships",
    "recording-timeline",
)

# article columns written only when the table has them
OPTIONAL_ARTICLE_COLUMNS = ("category", "summary")


@dataclass
class IngestResult:
    source_url: str
    article_id: object
    slug: str
    title: str
    category: str
    entities: list[ResolvedEntity] = field(default_factory=list)
    relationships: list[VersionOutcome] = field(default_factory=list)
    timeline: Optional[TimelineOutcome] = None
    truncated: bool = False
    elapsed_ms: int = 0

    def payload(self) -> dict:
        return {
            "success": True,
            "slug": self.slug,
            "article_id": self.article_id,
            "entities": [
                {"id": e.id, "name": e.name, "slug": e.slug, "type": e.type}
                for e in self.entities
            ],
        }


def check_admin(credential: str | None) -> None:
    secret = admin_secret()
    if not secret or not credential:
        raise Unauthorized("Unauthorized.")
    if not hmac.compare_digest(credential.encode("utf-8"), secret.encode("utf-8")):
        raise Unauthorized("Unauthorized.")


def _stage(name: str, url: str) -> None:
    print(f"INGEST_STAGE stage={name} url={url}")


def _persist_article(sb, parsed: ExtractionResult, url: str, now: datetime) -> dict:
    extra = {}
    for column in OPTIONAL_ARTICLE_COLUMNS:
        value = getattr(parsed, column)
        if table_has_column(sb, "articles", column):
            extra[column] = value
        elif value:
            print(f"INGEST_{column.upper()}_DROPPED value={value[:80]!r} reason=no_articles_{column}_column")

    try:
        return create_article(
            sb,
            title=parsed.title,
            content=parsed.content,
            status="published",
            publish_at=now.isoformat(),
            source_url=url,
            extra=extra,
        )
    except Exception as e:
        existing = get_article_by_source_url(sb, url)
        if existing:
            raise DuplicateSource(existing.get("id"), existing.get("title"))
        raise PersistenceError(f"Article insert failed: {e}")


def run_pipeline(
    sb,
    url: str,
    client: ExtractionClient | None,
    fetch: Callable[[str], FetchedPage],
    now: datetime,
    summarize_entities: bool = False,
) -> IngestResult:
    _stage("duplicate-check", url)
    existing = get_article_by_source_url(sb, url)
    if existing:
        raise DuplicateSource(existing.get("id"), existing.get("title"))

    # a missing service key fails here, after duplicates and before any fetch
    client = client or ExtractionClient()

    _stage("fetching", url)
    page = fetch(url)

    _stage("sanitizing", url)
    sanitized = sanitize_html(page.html)

    _stage("extracting", url)
    parsed = client.extract_article(sanitized.text, sanitized.title)

    _stage("persisting-article", url)
    article = _persist_article(sb, parsed, url, now)
    print(f"INGEST_ARTICLE id={article.get('id')} slug={article.get('slug')}")

    result = IngestResult(
        source_url=url,
        article_id=article.get("id"),
        slug=article.get("slug"),
        title=parsed.title,
        category=parsed.category,
        truncated=sanitized.truncated,
    )

    _stage("resolving-entities", url)
    try:
        result.entities = resolve_entities(
            sb, parsed.entities, result.article_id, parsed.category, parsed.content
        )
    except Exception as e:
        print(f"INGEST_ENTITIES_FAILED err={str(e)[:200]}", file=sys.stderr)

    if summarize_entities and result.entities:
        backfill_entity_summaries(sb, client, result.entities)

    _stage("versioning-relationships", url)
    try:
        triples = client.extract_relationships([e.name for e in result.entities], parsed.content)
        result.relationships = version_relationships(sb, triples, url, now)
    except Exception as e:
        print(f"INGEST_RELATIONSHIPS_FAILED err={str(e)[:200]}", file=sys.stderr)

    _stage("recording-timeline", url)
    try:
        result.timeline = record_extracted_event(sb, parsed.timeline_event, url)
    except Exception as e:
        print(f"INGEST_TIMELINE_FAILED err={str(e)[:200]}", file=sys.stderr)

    return result


def ingest_url(
    url,
    credential: str | None,
    sb=None,
    client: ExtractionClient | None = None,
    fetch: Callable[[str], FetchedPage] | None = None,
    now: datetime | None = None,
    summarize_entities: bool | None = None,
) -> IngestResult:
    """
    Runs one ingestion to a terminal state. Returns the result on success and
    raises an IngestError otherwise; every attempt that got past the entry
    guard and URL validation leaves exactly one ingestion_logs row.
    """
    started_ts = time.monotonic()
    check_admin(credential)
    url = validate_url(url)
    _stage("received", url)

    sb = sb or get_client()
    fetch = fetch or fetch_html
    now = now or utc_now()
    if summarize_entities is None:
        summarize_entities = get_bool("ENTITY_SUMMARY_ON_INGEST", False)

    try:
        result = run_pipeline(sb, url, client, fetch, now, summarize_entities)
    except DuplicateSource as e:
        log_ingestion(sb, url, e.log_status, started_ts)
        raise
    except IngestError as e:
        print(f"INGEST_FAILED url={url} status={e.log_status} err={e}", file=sys.stderr)
        log_ingestion(sb, url, e.log_status or "internal_error", started_ts, str(e))
        raise
    except Exception as e:
        traceback.print_exc()
        log_ingestion(sb, url, "internal_error", started_ts, str(e) or type(e).__name__)
        raise InternalError(str(e) or type(e).__name__) from e

    log_ingestion(sb, url, "success", started_ts)
    result.elapsed_ms = int((time.monotonic() - started_ts) * 1000)
    print(
        f"INGEST_OK url={url} article_id={result.article_id} entities={len(result.entities)} "
        f"relationships={len(result.relationships)} "
        f"timeline={result.timeline.status if result.timeline else 'none'} ms={result.elapsed_ms}"
    )
    return result
