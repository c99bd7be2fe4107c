import json
from dataclasses import dataclass, field
from typing import Callable, Optional

from backend.config import get_str
from backend.llm.anthropic import LLMError, LLMUnavailable, anthropic_messages, strip_code_fences
from .errors import ExtractionParseError, ExtractionServiceError
from .vocab import (
    CATEGORIES,
    ENTITY_TYPES,
    EVENT_TYPES,
    PREDICATES,
    normalize_category,
    normalize_predicate,
)

ARTICLE_MAX_TOKENS = 2000
RELATIONSHIP_MAX_TOKENS = 800
SUMMARY_MAX_TOKENS = 600
RELATIONSHIP_CONTEXT_CHARS = 3000
DEFAULT_RELATIONSHIP_CONFIDENCE = 0.7
MIN_SUMMARY_CHARS = 50

_EVENT_TYPE_HINTS = {
    "release": "new product or model launch",
    "upgrade": "major version improvement",
    "security": "breach, vulnerability, or data issue",
    "regulation": "government action or policy",
    "funding": "investment or financial event",
    "partnership": "collaboration between entities",
    "leadership": "CEO change or executive shift",
    "research": "published breakthrough or paper",
    "infrastructure": "data centers, compute expansion",
    "other": "none of the above",
}


def _build_system_prompt() -> str:
    categories = "\n".join(CATEGORIES)
    entity_types = " | ".join(ENTITY_TYPES)
    event_types = " | ".join(EVENT_TYPES)
    event_lines = "\n".join(f"- {t} → {_EVENT_TYPE_HINTS[t]}" for t in EVENT_TYPES)
    predicates = ", ".join(PREDICATES)
    return f"""
You are an intelligence analysis engine.

Rewrite the provided article into a neutral, analytical intelligence brief.

Remove marketing tone.
No hype.
Technical significance.
Geopolitical impact.

Select category strictly from:

{categories}

Extract only clearly mentioned entities from the article.
Do not hallucinate entities.
Maximum 8 entities.
If none are clearly mentioned, return an empty array.
Entity type MUST be one of: {entity_types}

Relationships between entities are later described only with these verbs:
{predicates}

Return STRICT JSON ONLY:

{{
  "title": "",
  "content": "",
  "summary": "",
  "category": "",
  "entities": [
    {{ "name": "", "type": "{entity_types}" }}
  ],
  "timeline_event": {{
    "entity": "",
    "date": "YYYY-MM-DD",
    "title": "",
    "description": "",
    "event_type": "{event_types}"
  }}
}}

You MUST always return event_type in timeline_event.
Do NOT invent new labels.
Choose the closest match from the allowed values.
If uncertain, use "other".

event_type MUST be one of:
{event_lines}

If no timeline_event exists, set timeline_event to null.
No markdown.
No commentary.
Only valid JSON.
""".strip()


SYSTEM_PROMPT = _build_system_prompt()

RELATIONSHIP_SYSTEM_PROMPT = (
    "You extract entity relationships from text. "
    "Return only valid JSON arrays. No markdown."
)

SUMMARY_SYSTEM_PROMPT = (
    "You are a concise encyclopedia writer. Write a 200–300 word structured summary "
    "about the given entity. Cover: what it is, its significance in the AI/tech "
    "landscape, key products or contributions, and notable milestones. Use neutral, "
    "analytical tone. No markdown. No headers. Plain text only."
)


@dataclass
class EntityCandidate:
    name: str
    type: str


@dataclass
class ExtractionResult:
    title: str
    content: str
    summary: str = ""
    category: str = "Intelligence Brief"
    raw_category: Optional[str] = None
    entities: list[EntityCandidate] = field(default_factory=list)
    timeline_event: Optional[dict] = None


@dataclass
class RelationshipTriple:
    subject: str
    predicate: str
    object: str
    confidence: float = DEFAULT_RELATIONSHIP_CONFIDENCE


def _as_text(value) -> str:
    return value.strip() if isinstance(value, str) else ""


def _decode_json(raw: str):
    cleaned = strip_code_fences(raw)
    try:
        return json.loads(cleaned)
    except (TypeError, ValueError) as e:
        raise ExtractionParseError(
            f"Failed to parse AI response as JSON: {e}",
            "Failed to parse AI response as JSON.",
        )


def parse_extraction(raw: str) -> ExtractionResult:
    obj = _decode_json(raw)
    if not isinstance(obj, dict):
        raise ExtractionParseError("AI response is not a JSON object")

    title = _as_text(obj.get("title"))
    content = _as_text(obj.get("content"))
    if not title or not content:
        raise ExtractionParseError("AI response missing required title or content")

    entities = []
    for item in obj.get("entities") or []:
        if not isinstance(item, dict):
            continue
        entities.append(EntityCandidate(name=_as_text(item.get("name")), type=_as_text(item.get("type"))))

    event = obj.get("timeline_event")
    if not isinstance(event, dict):
        event = None

    raw_category = obj.get("category") if isinstance(obj.get("category"), str) else None
    category = normalize_category(raw_category)
    if raw_category and category != raw_category.strip():
        print(f"INGEST_CATEGORY_COERCED raw={raw_category!r} category={category!r}")

    return ExtractionResult(
        title=title,
        content=content,
        summary=_as_text(obj.get("summary")),
        category=category,
        raw_category=raw_category,
        entities=entities,
        timeline_event=event,
    )


def clamp_confidence(value, default: float = DEFAULT_RELATIONSHIP_CONFIDENCE) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return default
    return min(1.0, max(0.0, float(value)))


def parse_relationships(raw: str) -> list[RelationshipTriple]:
    obj = _decode_json(raw)
    if not isinstance(obj, list):
        print("INGEST_RELATIONSHIPS_NOT_ARRAY")
        return []

    triples = []
    for item in obj:
        if not isinstance(item, dict):
            continue
        subject = _as_text(item.get("subject"))
        obj_name = _as_text(item.get("object"))
        predicate = normalize_predicate(item.get("predicate"))
        if not subject or not obj_name or not predicate:
            print(f"INGEST_RELATIONSHIP_REJECTED item={json.dumps(item)[:200]}")
            continue
        triples.append(
            RelationshipTriple(
                subject=subject,
                predicate=predicate,
                object=obj_name,
                confidence=clamp_confidence(item.get("confidence")),
            )
        )
    return triples


def build_relationship_prompt(entity_names: list[str], content: str) -> str:
    return f"""From the following article text and list of entities, extract relationships between entities.

Entities: {", ".join(entity_names)}

Allowed predicates (use ONLY these):
{", ".join(PREDICATES)}

Return STRICT JSON array only. No markdown. No commentary.
Each element: {{"subject": "", "predicate": "", "object": "", "confidence": 0.0}}

Rules:
- subject and object MUST be from the entity list above
- predicate MUST be from the allowed list
- confidence between 0.0 and 1.0
- If no relationships exist, return []

Article text:
{(content or "")[:RELATIONSHIP_CONTEXT_CHARS]}"""


class ExtractionClient:
    """
    Wraps the text-generation service. `complete(system, user, max_tokens)`
    returns the raw completion text; it defaults to the Anthropic Messages API.
    """

    def __init__(self, complete: Callable[..., str] | None = None):
        if complete is None and not get_str("ANTHROPIC_API_KEY"):
            raise ExtractionServiceError(
                "ANTHROPIC_API_KEY not configured", "Extraction service is not configured."
            )
        self.complete = complete or anthropic_messages

    def _call(self, system: str, user: str, max_tokens: int) -> str:
        try:
            raw = self.complete(system, user, max_tokens=max_tokens)
        except (LLMUnavailable, LLMError) as e:
            raise ExtractionServiceError(str(e), f"AI request failed: {e}")
        if not raw or not raw.strip():
            raise ExtractionServiceError("Empty response from Anthropic", "Empty response from Anthropic.")
        return raw

    def extract_article(self, text: str, title: str | None = None) -> ExtractionResult:
        user = f"Page title: {title}\n\n{text}" if title else text
        raw = self._call(SYSTEM_PROMPT, user, ARTICLE_MAX_TOKENS)
        return parse_extraction(raw)

    def extract_relationships(self, entity_names: list[str], content: str) -> list[RelationshipTriple]:
        if len(entity_names) < 2:
            return []
        raw = self._call(
            RELATIONSHIP_SYSTEM_PROMPT,
            build_relationship_prompt(entity_names, content),
            RELATIONSHIP_MAX_TOKENS,
        )
        return parse_relationships(raw)

    def summarize_entity(self, name: str, entity_type: str) -> str | None:
        raw = self._call(
            SUMMARY_SYSTEM_PROMPT,
            f"Write a 200–300 word summary about: {name} (type: {entity_type})",
            SUMMARY_MAX_TOKENS,
        )
        text = raw.strip()
        if len(text) <= MIN_SUMMARY_CHARS:
            return None
        return text
