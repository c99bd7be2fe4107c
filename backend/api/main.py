import sys

from fastapi import Body, Depends, FastAPI, Header, HTTPException, Query, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from backend.config import admin_secret
from backend.db import create_article, get_client, list_published_articles, utc_now
from runner.ingest.errors import IngestError, InvalidInput, Unauthorized
from runner.ingest.pipeline import check_admin, ingest_url
from runner.ingest.vocab import VERIFICATION_STATUSES

app = FastAPI(title="Phenomeny Intel API")

ALLOWED_ORIGINS = ["http://localhost:3000"]
ADMIN_COOKIE = "admin-auth"
ADMIN_COOKIE_MAX_AGE = 60 * 60 * 24

app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PATCH"],
    allow_headers=["*"],
)

CLAIM_COLUMNS = (
    "id,claim_type,subject_id,object_id,predicate,structured_payload,source_url,"
    "confidence,revision,is_current,verification_status,created_by,updated_by,"
    "created_at,updated_at"
)
RELATIONSHIP_COLUMNS = (
    "id,subject_id,object_id,predicate,source_url,confidence,is_active,"
    "valid_from,valid_to,created_at,updated_at"
)


def _admin_credential(request: Request, x_admin_key: str | None = None) -> str | None:
    return request.cookies.get(ADMIN_COOKIE) or x_admin_key or request.headers.get("x-admin-key")


def require_admin(request: Request, x_admin_key: str | None = Header(default=None)):
    try:
        check_admin(_admin_credential(request, x_admin_key))
    except Unauthorized:
        raise HTTPException(status_code=401, detail="Unauthorized")


@app.get("/health")
def health():
    return {"ok": True}


@app.post("/api/ingest")
async def ingest(request: Request):
    credential = _admin_credential(request)
    try:
        body = await request.json()
    except ValueError:
        body = None

    try:
        check_admin(credential)
        if not isinstance(body, dict):
            raise InvalidInput("Invalid JSON body.")
        result = await run_in_threadpool(ingest_url, body.get("url"), credential)
    except IngestError as e:
        return JSONResponse(status_code=e.status_code, content=e.payload())
    except Exception as e:
        print(f"INGEST_ENDPOINT_ERROR err={type(e).__name__}: {str(e)[:200]}", file=sys.stderr)
        return JSONResponse(
            status_code=500, content={"success": False, "error": "Internal server error."}
        )
    return JSONResponse(status_code=201, content=result.payload())


class LoginIn(BaseModel):
    password: str


@app.post("/api/admin/login")
def admin_login(payload: LoginIn):
    secret = admin_secret()
    if not secret:
        return JSONResponse(
            status_code=500, content={"success": False, "error": "Admin secret is not configured."}
        )
    try:
        check_admin(payload.password)
    except Unauthorized:
        return JSONResponse(status_code=401, content={"success": False, "error": "Invalid password."})

    response = JSONResponse(content={"success": True})
    response.set_cookie(
        ADMIN_COOKIE,
        secret,
        max_age=ADMIN_COOKIE_MAX_AGE,
        httponly=True,
        samesite="lax",
        path="/",
    )
    return response


@app.get("/api/articles")
def articles_published(limit: int = Query(100, ge=1, le=500)):
    sb = get_client()
    return {"success": True, "data": list_published_articles(sb, limit=limit)}


class ArticleIn(BaseModel):
    title: str
    content: str
    status: str = "draft"
    publish_at: str | None = None


@app.post("/api/admin/articles", dependencies=[Depends(require_admin)])
def admin_create_article(payload: ArticleIn):
    sb = get_client()
    try:
        row = create_article(
            sb,
            title=payload.title,
            content=payload.content,
            status=payload.status,
            publish_at=payload.publish_at,
        )
    except ValueError as e:
        return JSONResponse(status_code=400, content={"success": False, "error": str(e)})
    return JSONResponse(status_code=201, content={"success": True, "data": row})


def _entity_map(sb, ids: set) -> dict:
    if not ids:
        return {}
    res = sb.table("entities").select("id,name,slug,type").in_("id", list(ids)).execute()
    return {row["id"]: row for row in (res.data or [])}


@app.get("/api/admin/claims", dependencies=[Depends(require_admin)])
def admin_list_claims(limit: int = Query(100, ge=1, le=500)):
    sb = get_client()
    res = (
        sb.table("claims")
        .select(CLAIM_COLUMNS)
        .order("created_at", desc=True)
        .limit(limit)
        .execute()
    )
    claims = res.data or []

    ids = set()
    for c in claims:
        if c.get("subject_id"):
            ids.add(c["subject_id"])
        if c.get("object_id"):
            ids.add(c["object_id"])
    entities = _entity_map(sb, ids)

    data = []
    for c in claims:
        data.append(
            {
                **c,
                "subject": entities.get(c.get("subject_id")),
                "object": entities.get(c.get("object_id")),
            }
        )
    return {"success": True, "data": data}


class ClaimUpdateIn(BaseModel):
    id: str | int
    verification_status: str


@app.patch("/api/admin/claims", dependencies=[Depends(require_admin)])
def admin_update_claim(payload: ClaimUpdateIn = Body(...)):
    if payload.verification_status not in VERIFICATION_STATUSES:
        return JSONResponse(status_code=400, content={"success": False, "error": "Invalid parameters"})

    sb = get_client()
    res = (
        sb.table("claims")
        .update(
            {
                "verification_status": payload.verification_status,
                "updated_by": "admin",
                "updated_at": utc_now().isoformat(),
            }
        )
        .eq("id", payload.id)
        .execute()
    )
    if not res.data:
        raise HTTPException(status_code=404, detail="Not found")
    return {"success": True}


@app.get("/api/admin/ingestion-logs", dependencies=[Depends(require_admin)])
def admin_ingestion_logs(
    status: str | None = Query(default=None),
    limit: int = Query(100, ge=1, le=500),
):
    sb = get_client()
    q = sb.table("ingestion_logs").select("*").order("created_at", desc=True).limit(limit)
    if status:
        q = q.eq("status", status)
    res = q.execute()
    return {"success": True, "data": res.data or []}


def _claim_view(claim: dict | None) -> dict | None:
    if not claim:
        return None
    return {
        "revision": claim.get("revision"),
        "verification_status": claim.get("verification_status"),
        "confidence": claim.get("confidence"),
        "created_at": claim.get("created_at"),
    }


@app.get("/api/graph/{slug}")
def entity_graph(slug: str, include_history: bool = Query(False)):
    sb = get_client()
    res = (
        sb.table("entities")
        .select("id,name,slug,type,parent_id,summary,created_at")
        .eq("slug", slug)
        .limit(1)
        .execute()
    )
    if not res.data:
        raise HTTPException(status_code=404, detail="Entity not found")
    entity = res.data[0]

    out_q = sb.table("entity_relationships").select(RELATIONSHIP_COLUMNS).eq("subject_id", entity["id"])
    in_q = sb.table("entity_relationships").select(RELATIONSHIP_COLUMNS).eq("object_id", entity["id"])
    if not include_history:
        out_q = out_q.eq("is_active", True)
        in_q = in_q.eq("is_active", True)
    rels_out = out_q.execute().data or []
    rels_in = in_q.execute().data or []

    events = (
        sb.table("timelines")
        .select("id,title,description,event_date,event_type,source_url,confidence,created_at")
        .eq("entity", entity["id"])
        .order("event_date")
        .execute()
        .data
        or []
    )

    rel_claims: dict[tuple, dict] = {}
    if rels_out or rels_in:
        for c in (
            sb.table("claims")
            .select("subject_id,object_id,predicate,revision,verification_status,confidence,created_at")
            .eq("claim_type", "relationship")
            .eq("is_current", True)
            .in_("subject_id", list({r["subject_id"] for r in rels_out + rels_in}))
            .execute()
            .data
            or []
        ):
            rel_claims[(c["subject_id"], c["object_id"], c["predicate"])] = c

    event_claims: dict[tuple, dict] = {}
    if events:
        for c in (
            sb.table("claims")
            .select("subject_id,structured_payload,revision,verification_status,confidence,created_at")
            .eq("claim_type", "timeline")
            .eq("is_current", True)
            .eq("subject_id", entity["id"])
            .execute()
            .data
            or []
        ):
            p = c.get("structured_payload") or {}
            event_claims[(p.get("event_type"), p.get("event_date"), p.get("title"))] = c

    related = _entity_map(
        sb, {r["object_id"] for r in rels_out} | {r["subject_id"] for r in rels_in}
    )

    def with_claim(r: dict) -> dict:
        return {**r, "claim": _claim_view(rel_claims.get((r["subject_id"], r["object_id"], r["predicate"])))}

    return {
        "entity": entity,
        "relationships_out": [
            {**with_claim(r), "object": related.get(r["object_id"])} for r in rels_out
        ],
        "relationships_in": [
            {**with_claim(r), "subject": related.get(r["subject_id"])} for r in rels_in
        ],
        "timeline": [
            {**t, "claim": _claim_view(event_claims.get((t["event_type"], t["event_date"], t["title"])))}
            for t in events
        ],
    }
