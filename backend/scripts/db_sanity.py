from backend.db import get_client

TABLES = {
    "articles": "id,slug,status,source_url",
    "entities": "id,slug,type,parent_id",
    "article_entities": "article_id,entity_id",
    "entity_relationships": "id,subject_id,predicate,is_active",
    "claims": "id,claim_type,revision,is_current",
    "timelines": "id,entity,event_type,event_date",
    "ingestion_logs": "id,source_url,status,processing_time_ms",
}


def main() -> int:
    sb = get_client()
    failed = 0
    for table, columns in TABLES.items():
        try:
            r = sb.table(table).select(columns).limit(1).execute()
            print(f"{table} ok: rows_sampled={len(r.data or [])}")
        except Exception as e:
            failed += 1
            print(f"{table} FAILED: {str(e)[:200]}")
    if failed:
        return 1

    r = (
        sb.table("ingestion_logs")
        .select("source_url,status,processing_time_ms,created_at")
        .order("created_at", desc=True)
        .limit(3)
        .execute()
    )
    print("ingestion_logs latest:", r.data)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
