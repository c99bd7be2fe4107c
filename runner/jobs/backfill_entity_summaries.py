import argparse
import fcntl
import sys
import time
from datetime import datetime, timezone

from backend.config import get_int
from backend.db import get_client
from runner.ingest.entities import ResolvedEntity, store_entity_summary
from runner.ingest.errors import ExtractionServiceError
from runner.ingest.extraction import ExtractionClient

DEFAULT_BATCH = 10
MAX_CONSECUTIVE_ERRORS = 3


def _get_pending(sb, limit: int, entity_type: str | None) -> list[ResolvedEntity]:
    q = (
        sb.table("entities")
        .select("id,name,slug,type,summary")
        .is_("summary", "null")
        .order("created_at", desc=True)
        .limit(limit)
    )
    if entity_type:
        q = q.eq("type", entity_type)
    rows = q.execute().data or []
    return [
        ResolvedEntity(
            id=row["id"],
            name=row.get("name") or "",
            slug=row.get("slug") or "",
            type=row.get("type") or "",
        )
        for row in rows
    ]


def run(sb, client: ExtractionClient, limit: int, entity_type: str | None = None) -> dict:
    items = _get_pending(sb, limit, entity_type)
    stats = {"selected": len(items), "done": 0, "skipped": 0, "failed": 0}
    consecutive_errors = 0

    for entity in items:
        try:
            summary = client.summarize_entity(entity.name, entity.type)
        except ExtractionServiceError as e:
            stats["failed"] += 1
            consecutive_errors += 1
            print(f"ENTITY_SUMMARY_FAILED slug={entity.slug} err={str(e)[:200]}", file=sys.stderr)
            if consecutive_errors >= MAX_CONSECUTIVE_ERRORS:
                print(f"ENTITY_SUMMARY_BREAKER consecutive_errors={consecutive_errors}")
                break
            continue
        consecutive_errors = 0
        try:
            stored = store_entity_summary(sb, entity, summary)
        except Exception as e:
            stats["failed"] += 1
            print(f"ENTITY_SUMMARY_STORE_FAILED slug={entity.slug} err={str(e)[:200]}", file=sys.stderr)
            continue
        if stored:
            stats["done"] += 1
        else:
            stats["skipped"] += 1
    return stats


def main(argv: list[str] | None = None) -> int:
    lock_path = "/tmp/phenomeny_entity_summaries.lock"
    try:
        lock_fd = open(lock_path, "w")
        fcntl.flock(lock_fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
    except OSError:
        print("JOB_LOCKED exit=1")
        return 1

    parser = argparse.ArgumentParser()
    parser.add_argument("--limit", type=int, default=None)
    parser.add_argument("--type", dest="entity_type", default=None)
    args = parser.parse_args(argv)
    if args.limit is None:
        args.limit = get_int("SUMMARY_BATCH", DEFAULT_BATCH)

    started_ts = time.monotonic()
    print(
        "ENTITY_SUMMARY_RUN "
        f"start={datetime.now(timezone.utc).isoformat()} limit={args.limit} "
        f"type={args.entity_type or 'any'}"
    )
    try:
        client = ExtractionClient()
    except ExtractionServiceError as e:
        print(f"ENTITY_SUMMARY_ABORT err={e}", file=sys.stderr)
        return 1
    stats = run(get_client(), client, args.limit, args.entity_type)
    print(
        f"ENTITY_SUMMARY_DONE selected={stats['selected']} done={stats['done']} "
        f"skipped={stats['skipped']} failed={stats['failed']} "
        f"elapsed={int(time.monotonic() - started_ts)}s"
    )
    return 1 if stats["failed"] and not stats["done"] else 0


if __name__ == "__main__":
    raise SystemExit(main())
