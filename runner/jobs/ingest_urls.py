import argparse
import sys
import time
from pathlib import Path

from backend.config import admin_secret
from backend.db import get_client
from runner.ingest.errors import DuplicateSource, IngestError
from runner.ingest.pipeline import ingest_url


def load_urls(args: argparse.Namespace) -> list[str]:
    urls = list(args.urls or [])
    if args.file:
        with Path(args.file).open("r", encoding="utf-8") as f:
            for line in f:
                line = line.strip()
                if line and not line.startswith("#"):
                    urls.append(line)
    seen = set()
    out = []
    for u in urls:
        if u in seen:
            continue
        seen.add(u)
        out.append(u)
    return out


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Ingest article URLs into the knowledge graph.")
    parser.add_argument("urls", nargs="*")
    parser.add_argument("--file", help="text file with one URL per line")
    parser.add_argument("--summaries", action="store_true", help="backfill entity summaries inline")
    args = parser.parse_args(argv)

    urls = load_urls(args)
    if not urls:
        print("INGEST_JOB_EMPTY no urls given")
        return 0

    credential = admin_secret()
    if not credential:
        print("INGEST_JOB_ABORT missing ADMIN_SECRET", file=sys.stderr)
        return 1

    sb = get_client()
    stats = {"total": 0, "saved": 0, "duplicate": 0, "failed": 0, "by_status": {}}
    started_ts = time.monotonic()

    for url in urls:
        stats["total"] += 1
        try:
            result = ingest_url(url, credential, sb=sb, summarize_entities=args.summaries or None)
        except DuplicateSource as e:
            stats["duplicate"] += 1
            print(f"INGEST_JOB_DUPLICATE url={url} existing_id={e.existing_id}")
            continue
        except IngestError as e:
            stats["failed"] += 1
            key = e.log_status or type(e).__name__
            stats["by_status"][key] = stats["by_status"].get(key, 0) + 1
            print(f"INGEST_JOB_FAILED url={url} status={e.status_code} err={e}", file=sys.stderr)
            continue
        stats["saved"] += 1
        print(f"INGEST_JOB_SAVED url={url} slug={result.slug} entities={len(result.entities)}")

    elapsed = int(time.monotonic() - started_ts)
    by_status = ", ".join(f"{k}={v}" for k, v in sorted(stats["by_status"].items()))
    print(
        f"INGEST_JOB_DONE total={stats['total']} saved={stats['saved']} "
        f"duplicate={stats['duplicate']} failed={stats['failed']} "
        f"by_status=({by_status}) elapsed={elapsed}s"
    )
    return 1 if stats["failed"] else 0


if __name__ == "__main__":
    raise SystemExit(main())
