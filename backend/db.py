import os
import random
import re
import sys
import time
from datetime import datetime, timezone

import httpx
from dotenv import load_dotenv
from supabase import create_client as _create_client

_ENV_PATH = os.path.join(os.path.dirname(__file__), ".env")
load_dotenv(_ENV_PATH)

ARTICLE_STATUSES = ("draft", "published", "scheduled")
INGESTION_STATUSES = (
    "success",
    "duplicate",
    "fetch_error",
    "ai_validation_error",
    "insert_error",
    "internal_error",
)
MAX_SLUG_CHARS = 80

_column_cache: dict[tuple[str, str], bool] = {}
_sb = None


def create_client(url: str | None = None, key: str | None = None):
    url = url or os.getenv("SUPABASE_URL")
    key = key or os.getenv("SUPABASE_SERVICE_ROLE_KEY") or os.getenv("SUPABASE_KEY")
    if not url or not key:
        missing = []
        if not url:
            missing.append("SUPABASE_URL")
        if not (os.getenv("SUPABASE_SERVICE_ROLE_KEY") or os.getenv("SUPABASE_KEY")):
            missing.append("SUPABASE_SERVICE_ROLE_KEY or SUPABASE_KEY")
        raise RuntimeError(f"Missing {', '.join(missing)}")
    return _create_client(url, key)


def get_client():
    global _sb
    if _sb:
        return _sb

    _sb = create_client()
    return _sb


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def table_has_column(sb, table: str, column: str) -> bool:
    key = (table, column)
    if key in _column_cache:
        return _column_cache[key]
    try:
        sb.table(table).select(column).limit(1).execute()
        _column_cache[key] = True
    except Exception as e:
        msg = str(e)
        if "column" not in msg:
            print(f"COLUMN_PROBE_FAILED table={table} column={column} err={msg[:200]}")
        _column_cache[key] = False
    return _column_cache[key]


def reset_column_cache() -> None:
    _column_cache.clear()


def _is_transient_error(err: Exception) -> bool:
    if isinstance(err, (httpx.ConnectError, httpx.ReadError, httpx.RemoteProtocolError)):
        return True
    msg = str(err)
    transient_markers = [
        "UNEXPECTED_EOF_WHILE_READING",
        "SSL",
        "Connection reset",
        "Broken pipe",
        "timeout",
    ]
    return any(m in msg for m in transient_markers)


def _with_retry(fn, *args, **kwargs):
    delays = [0.5, 1, 2]
    for i, delay in enumerate(delays, start=1):
        try:
            return fn(*args, **kwargs)
        except Exception as e:
            if not _is_transient_error(e) or i == len(delays):
                raise
            jitter = random.uniform(0, 0.2)
            print(f"DB_WRITE_RETRY attempt={i} error={str(e)[:200]}")
            time.sleep(delay + jitter)


def log_ingestion(
    sb,
    source_url: str,
    status: str,
    started_ts: float,
    error_message: str | None = None,
) -> None:
    """
    Appends one row to ingestion_logs. Never raises: the audit write must not
    change the outcome reported to the caller.
    """
    row = {
        "source_url": source_url,
        "status": status,
        "processing_time_ms": int((time.monotonic() - started_ts) * 1000),
    }
    if error_message:
        row["error_message"] = error_message[:2000]
    try:
        _with_retry(lambda: sb.table("ingestion_logs").insert(row).execute())
        print(f"INGEST_LOGGED status={status} ms={row['processing_time_ms']}")
    except Exception as e:
        print(
            f"INGEST_LOG_WRITE_FAILED status={status} url={source_url} err={str(e)[:200]}",
            file=sys.stderr,
        )


def get_article_by_source_url(sb, url: str | None) -> dict | None:
    if not url:
        return None
    res = (
        sb.table("articles")
        .select("id,title,slug")
        .eq("source_url", url)
        .limit(1)
        .execute()
    )
    if res.data:
        return res.data[0]
    return None


def generate_slug(title: str) -> str:
    slug = (title or "").lower().strip()
    slug = re.sub(r"[^a-z0-9\s-]", "", slug)
    slug = re.sub(r"\s+", "-", slug)
    slug = re.sub(r"-+", "-", slug)
    slug = slug.strip("-")
    return slug[:MAX_SLUG_CHARS]


def get_unique_slug(sb, base_slug: str) -> str:
    res = sb.table("articles").select("slug").like("slug", f"{base_slug}%").execute()
    existing = {row.get("slug") for row in (res.data or [])}
    if base_slug not in existing:
        return base_slug

    counter = 2
    while f"{base_slug}-{counter}" in existing:
        counter += 1
    return f"{base_slug}-{counter}"


def insert_article(sb, row: dict) -> dict:
    res = sb.table("articles").insert(row).execute()
    created = res.data or []
    if not created or not created[0].get("id"):
        raise RuntimeError("articles insert returned no row")
    return created[0]


def create_article(
    sb,
    title: str,
    content: str,
    status: str = "draft",
    publish_at: str | None = None,
    source_url: str | None = None,
    extra: dict | None = None,
) -> dict:
    title = (title or "").strip()
    if not title or not (content or "").strip():
        raise ValueError("title and content are required")
    if status not in ARTICLE_STATUSES:
        raise ValueError(f"invalid status: {status}")
    if status == "scheduled" and not publish_at:
        raise ValueError("scheduled articles need publish_at")

    base_slug = generate_slug(title) or "article"
    row = {
        "title": title,
        "content": content,
        "slug": get_unique_slug(sb, base_slug),
        "status": status,
        "publish_at": publish_at,
        "source_url": source_url,
    }
    if extra:
        row.update(extra)
    return insert_article(sb, row)


def promote_scheduled_articles(sb, now: datetime | None = None) -> int:
    now = now or utc_now()
    res = (
        sb.table("articles")
        .update({"status": "published"})
        .eq("status", "scheduled")
        .lte("publish_at", now.isoformat())
        .execute()
    )
    promoted = len(res.data or [])
    if promoted:
        print(f"ARTICLES_PROMOTED count={promoted}")
    return promoted


def list_published_articles(sb, now: datetime | None = None, limit: int = 100) -> list[dict]:
    promote_scheduled_articles(sb, now)
    res = (
        sb.table("articles")
        .select("*")
        .eq("status", "published")
        .order("created_at", desc=True)
        .limit(limit)
        .execute()
    )
    return res.data or []


def get_entity_by_slug(sb, slug: str, columns: str = "id,name,slug,type,parent_id,summary") -> dict | None:
    if not slug:
        return None
    res = sb.table("entities").select(columns).eq("slug", slug).limit(1).execute()
    if res.data:
        return res.data[0]
    return None


def link_entity_to_article(sb, article_id, entity_id) -> None:
    sb.table("article_entities").upsert(
        {"article_id": article_id, "entity_id": entity_id},
        on_conflict="article_id,entity_id",
    ).execute()
