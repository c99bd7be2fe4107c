"""Unit tests for timeline recording."""

import pytest

from runner.ingest.timeline import parse_event_date, record_extracted_event, record_timeline_event
from tests.fakes import FakeSupabase

URL = "https://news.example.com/launch"


@pytest.fixture
def acme(db):
    return db.seed("entities", name="Acme", slug="acme", type="company")


class TestEventDate:
    @pytest.mark.parametrize(
        "raw,expected",
        [
            ("2025-01-10", "2025-01-10"),
            ("2025-01-10T12:00:00Z", "2025-01-10"),
            ("2025-03", "2025-03-01"),
            ("2025", "2025-01-01"),
            ("2025-02-30", None),
            ("January 2025", None),
            ("", None),
            (None, None),
        ],
    )
    def test_parse(self, raw, expected):
        assert parse_event_date(raw) == expected


class TestRecordTimelineEvent:
    def test_insert_with_paired_claim(self, db, acme):
        outcome = record_timeline_event(
            db, "Model X released", "2025-01-10", "product launch", URL, "Acme released Model X.", entity_name="Acme Corp"
        )
        assert outcome.status == "inserted"
        assert outcome.event_type == "release"
        [event] = db.rows("timelines")
        assert event["entity"] == acme["id"]
        assert event["event_type"] == "release"
        assert event["confidence"] == 0.85
        [claim] = db.rows("claims")
        assert claim["claim_type"] == "timeline"
        assert claim["subject_id"] == acme["id"]
        assert claim["revision"] == 1
        assert claim["is_current"] is True
        assert claim["predicate"] is None
        assert claim["structured_payload"] == {
            "event_type": "release",
            "event_date": "2025-01-10",
            "title": "Model X released",
            "description": "Acme released Model X.",
        }

    def test_duplicate_tuple_skipped(self, db, acme):
        args = (db, "Model X released", "2025-01-10", "release", URL)
        record_timeline_event(*args, entity_id=acme["id"])
        outcome = record_timeline_event(*args, entity_id=acme["id"])
        assert outcome.status == "duplicate"
        assert len(db.rows("timelines")) == 1
        assert len(db.rows("claims")) == 1

    def test_duplicate_after_normalization(self, db, acme):
        record_timeline_event(db, "Model X released", "2025-01-10", "launch", URL, entity_id=acme["id"])
        outcome = record_timeline_event(db, "Model X released", "2025-01-10", "release", URL, entity_id=acme["id"])
        assert outcome.status == "duplicate"

    def test_different_date_is_new_event(self, db, acme):
        record_timeline_event(db, "Model X released", "2025-01-10", "release", URL, entity_id=acme["id"])
        outcome = record_timeline_event(db, "Model X released", "2025-01-11", "release", URL, entity_id=acme["id"])
        assert outcome.status == "inserted"
        assert len(db.rows("timelines")) == 2

    def test_unknown_type_defaults_to_other(self, db, acme):
        outcome = record_timeline_event(db, "Office move", "2025-05-01", "relocation", URL, entity_id=acme["id"])
        assert outcome.event_type == "other"

    def test_unresolved_entity(self, db):
        outcome = record_timeline_event(db, "Launch", "2025-01-10", "release", URL, entity_name="Nobody")
        assert outcome.status == "unresolved"
        assert db.rows("timelines") == []

    def test_invalid_date_skipped(self, db, acme):
        outcome = record_timeline_event(db, "Launch", "soon", "release", URL, entity_id=acme["id"])
        assert outcome.status == "invalid"
        assert db.rows("timelines") == []

    def test_claim_failure_reported(self):
        db = FakeSupabase(fail_inserts={"claims"})
        row = db.seed("entities", name="Acme", slug="acme", type="company")
        outcome = record_timeline_event(db, "Launch", "2025-01-10", "release", URL, entity_id=row["id"])
        assert outcome.status == "claim_failed"
        assert len(db.rows("timelines")) == 1


class TestRecordExtractedEvent:
    def test_from_extraction(self, db, acme):
        outcome = record_extracted_event(
            db,
            {
                "entity": "ACME Inc.",
                "date": "2025-01",
                "title": "Acme raises Series B",
                "description": None,
                "event_type": "Series B investment",
            },
            URL,
        )
        assert outcome.status == "inserted"
        assert outcome.event_type == "funding"
        assert outcome.event_date == "2025-01-01"
        assert db.rows("timelines")[0]["description"] == ""

    @pytest.mark.parametrize("event", [None, {}, {"entity": ""}, {"entity": 5, "title": "x"}])
    def test_absent_or_entityless(self, db, event):
        assert record_extracted_event(db, event, URL) is None
        assert db.rows("timelines") == []
