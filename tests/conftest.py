import json

import pytest

from backend.db import reset_column_cache
from runner.ingest.extract import FetchedPage
from runner.ingest.extraction import (
    RELATIONSHIP_SYSTEM_PROMPT,
    SUMMARY_SYSTEM_PROMPT,
    SYSTEM_PROMPT,
    ExtractionClient,
)
from tests.fakes import FakeSupabase

ADMIN = "s3cret"
SOURCE_URL = "https://news.example.com/acme-model-x"

ARTICLE_BODY = (
    "Acme Corp today announced Model X, a new AI model trained for long-context "
    "reasoning. The company said the research effort took two years and the model "
    "will be offered to enterprise customers through its cloud platform. Analysts "
    "expect the release to intensify competition among frontier labs."
)

ARTICLE_JSON = {
    "title": "Acme Launches Model X",
    "content": "Acme released Model X, a long-context AI model aimed at enterprise customers.",
    "summary": "Acme ships Model X.",
    "category": "AI",
    "entities": [
        {"name": "Acme Corp", "type": "company"},
        {"name": "Acme Model X", "type": "model"},
        {"name": "AI", "type": "company"},
    ],
    "timeline_event": {
        "entity": "Acme Corp",
        "date": "2025-01-10",
        "title": "Model X released",
        "description": "Acme released Model X.",
        "event_type": "product launch",
    },
}

RELATIONSHIPS_JSON = [
    {"subject": "Acme", "predicate": "developed", "object": "Acme Model X", "confidence": 0.9},
]

SUMMARY_TEXT = (
    "Acme is a technology company building large language models for enterprise "
    "customers, best known for the Model X family."
)


def article_html(body: str = ARTICLE_BODY, title: str = "Acme news") -> str:
    return (
        f"<html><head><title>{title}</title><style>p {{ color: red; }}</style></head>"
        "<body><nav>Home | World | Tech</nav>"
        f"<article><h1>{title}</h1><p>{body}</p></article>"
        "<script>var tracking = true;</script><footer>Copyright</footer>"
        "</body></html>"
    )


class FakeLLM:
    """Answers by system prompt. A value that is an exception instance is raised."""

    def __init__(self, article=None, relationships=None, summary=SUMMARY_TEXT):
        self.responses = {
            SYSTEM_PROMPT: json.dumps(ARTICLE_JSON) if article is None else article,
            RELATIONSHIP_SYSTEM_PROMPT: (
                json.dumps(RELATIONSHIPS_JSON) if relationships is None else relationships
            ),
            SUMMARY_SYSTEM_PROMPT: summary,
        }
        self.calls = []

    def __call__(self, system, user, max_tokens=2000):
        self.calls.append((system, user, max_tokens))
        value = self.responses[system]
        if isinstance(value, Exception):
            raise value
        return value

    def calls_for(self, system):
        return [c for c in self.calls if c[0] == system]


@pytest.fixture(autouse=True)
def _env(monkeypatch):
    monkeypatch.setenv("ADMIN_SECRET", ADMIN)
    for name in ("ENTITY_SUMMARY_ON_INGEST", "INGEST_MAX_CHARS", "FETCH_TIMEOUT", "FETCH_MAX_BYTES"):
        monkeypatch.delenv(name, raising=False)
    reset_column_cache()
    yield
    reset_column_cache()


@pytest.fixture
def db():
    return FakeSupabase()


@pytest.fixture
def llm():
    return FakeLLM()


@pytest.fixture
def client(llm):
    return ExtractionClient(complete=llm)


def make_fetch(html: str | None = None):
    calls = []

    def fetch(url):
        calls.append(url)
        return FetchedPage(
            url=url,
            html=article_html() if html is None else html,
            status_code=200,
            content_type="text/html; charset=utf-8",
            elapsed_ms=3,
        )

    fetch.calls = calls
    return fetch


@pytest.fixture
def fetch():
    return make_fetch()
