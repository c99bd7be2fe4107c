"""
Closed vocabularies for everything the extraction service returns.

The service output is untrusted: every field with a fixed vocabulary goes
through one of the normalizers below. Each normalizer tries an exact match
first, then an ordered list of (keyword, value) rules where the first hit
wins, then falls back to a default.
"""

import re
from typing import Optional

CATEGORIES = [
    "AI",
    "AI Governance",
    "AI Operations",
    "Quantum",
    "Space",
    "Biotech",
    "India–China",
    "USA Europe",
    "Intelligence Brief",
]
DEFAULT_CATEGORY = "Intelligence Brief"
AI_CATEGORIES = {"AI", "AI Governance", "AI Operations"}

ENTITY_TYPES = [
    "company",
    "model",
    "country",
    "lab",
    "regulator",
    "person",
    "institution",
    "event",
    "venue",
]

PREDICATES = [
    "partnered_with",
    "acquired",
    "invested_in",
    "competes_with",
    "developed",
    "regulates",
    "funded_by",
    "subsidiary_of",
    "spun_off",
    "collaborated_with",
    "supplies_to",
    "licensed_from",
]

EVENT_TYPES = [
    "release",
    "upgrade",
    "security",
    "regulation",
    "funding",
    "partnership",
    "leadership",
    "research",
    "infrastructure",
    "other",
]
DEFAULT_EVENT_TYPE = "other"

VERIFICATION_STATUSES = ["auto_extracted", "human_reviewed", "verified", "disputed"]

# Order matters: the more specific AI categories must be tried before "AI".
CATEGORY_KEYWORDS: list[tuple[str, str]] = [
    ("governance", "AI Governance"),
    ("regulat", "AI Governance"),
    ("policy", "AI Governance"),
    ("operation", "AI Operations"),
    ("deploy", "AI Operations"),
    ("quantum", "Quantum"),
    (r"\bspace\b", "Space"),
    ("satellite", "Space"),
    ("biotech", "Biotech"),
    ("pharma", "Biotech"),
    ("genom", "Biotech"),
    (r"\bindia", "India–China"),
    (r"\bchina\b", "India–China"),
    (r"\busa\b", "USA Europe"),
    ("united states", "USA Europe"),
    (r"\beurope", "USA Europe"),
    ("artificial intelligence", "AI"),
    ("machine learning", "AI"),
    (r"\bai\b", "AI"),
    ("intelligence", "Intelligence Brief"),
]

PREDICATE_KEYWORDS: list[tuple[str, str]] = [
    ("acquir", "acquired"),
    ("bought", "acquired"),
    ("funded", "funded_by"),
    ("backed", "funded_by"),
    ("invest", "invested_in"),
    ("subsidiar", "subsidiary_of"),
    ("owned_by", "subsidiary_of"),
    ("spun", "spun_off"),
    ("spin", "spun_off"),
    ("collaborat", "collaborated_with"),
    ("partner", "partnered_with"),
    ("compet", "competes_with"),
    ("rival", "competes_with"),
    ("regulat", "regulates"),
    ("licens", "licensed_from"),
    ("suppl", "supplies_to"),
    ("develop", "developed"),
    ("built", "developed"),
    ("created", "developed"),
]

EVENT_TYPE_KEYWORDS: list[tuple[str, str]] = [
    ("release", "release"),
    ("launch", "release"),
    ("upgrade", "upgrade"),
    ("update", "upgrade"),
    ("security", "security"),
    ("breach", "security"),
    ("vulnerab", "security"),
    ("regulation", "regulation"),
    ("policy", "regulation"),
    ("government", "regulation"),
    ("funding", "funding"),
    ("investment", "funding"),
    ("partnership", "partnership"),
    ("collaboration", "partnership"),
    ("leadership", "leadership"),
    ("ceo", "leadership"),
    ("research", "research"),
    ("paper", "research"),
    ("infrastructure", "infrastructure"),
    ("data center", "infrastructure"),
]


def _fold_dashes(value: str) -> str:
    return re.sub(r"\s*[-–—]\s*", "-", value)


def classify(
    raw,
    allowed: list[str],
    keywords: list[tuple[str, str]],
    default: Optional[str],
) -> Optional[str]:
    if not isinstance(raw, str) or not raw.strip():
        return default
    lower = raw.strip().lower()

    folded = _fold_dashes(lower)
    for value in allowed:
        if _fold_dashes(value.lower()) == folded:
            return value

    for pattern, value in keywords:
        if re.search(pattern, lower):
            return value
    return default


def normalize_category(raw) -> str:
    return classify(raw, CATEGORIES, CATEGORY_KEYWORDS, DEFAULT_CATEGORY)


def normalize_event_type(raw) -> str:
    return classify(raw, EVENT_TYPES, EVENT_TYPE_KEYWORDS, DEFAULT_EVENT_TYPE)


def normalize_predicate(raw) -> Optional[str]:
    if not isinstance(raw, str):
        return None
    key = re.sub(r"[\s-]+", "_", raw.strip().lower())
    return classify(key, PREDICATES, PREDICATE_KEYWORDS, None)


def normalize_entity_type(raw) -> Optional[str]:
    if not isinstance(raw, str):
        return None
    value = raw.strip().lower()
    return value if value in ENTITY_TYPES else None
