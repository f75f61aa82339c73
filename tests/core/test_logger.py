"""Tests for logger setup and the retrieval event log."""

import json
import sys

import pytest
from loguru import logger

from coach_context.core.logger import is_retrieval_event, setup_logger


@pytest.fixture
def restore_logger():
    yield
    # Closing the sinks flushes the event file
    logger.remove()
    logger.add(sys.stderr)


def _read_events(path):
    logger.remove()
    return [json.loads(line)["record"] for line in path.read_text().splitlines()]


class TestRetrievalEventFilter:
    """Tests for is_retrieval_event."""

    def test_event_message(self):
        """Test that rag_ messages are retrieval events."""
        assert is_retrieval_event({"message": "rag_book_retrieval"})

    def test_plain_message(self):
        """Test that ordinary messages are not."""
        assert not is_retrieval_event({"message": "Embedding backfill stopped after 2/5 instructions"})
        assert not is_retrieval_event({"message": "drag_race"})


class TestSetupLogger:
    """Tests for setup_logger sinks."""

    def test_events_file_keeps_only_retrieval_events(self, tmp_path, restore_logger):
        """Test that the JSON sink records rag_ events with their context and nothing else."""
        events_path = tmp_path / "logs" / "retrieval.jsonl"
        setup_logger(level="WARNING", events_file=str(events_path))

        logger.info("rag_context_assembly", athlete_id="a1", total_tokens=1200, degraded_layers=["book"])
        logger.warning("Coach layer timed out after 15s")
        logger.info("rag_coach_retrieval", athlete_id="a1", strategy="phase")

        records = _read_events(events_path)

        assert [r["message"] for r in records] == ["rag_context_assembly", "rag_coach_retrieval"]
        assert records[0]["extra"] == {"athlete_id": "a1", "total_tokens": 1200, "degraded_layers": ["book"]}
        assert records[1]["extra"]["strategy"] == "phase"

    def test_no_events_file_by_default(self, tmp_path, restore_logger, monkeypatch):
        """Test that nothing is written to disk without an events path."""
        monkeypatch.chdir(tmp_path)
        setup_logger()

        logger.info("rag_context_assembly", athlete_id="a1")

        assert list(tmp_path.iterdir()) == []

    def test_console_shows_event_context(self, capsys, restore_logger):
        """Test that keyword context is appended on the console only when present."""
        setup_logger(level="INFO")

        logger.info("rag_coach_retrieval", athlete_id="a1")
        logger.info("Loaded 12 book instructions")

        lines = [line for line in capsys.readouterr().err.splitlines() if line.strip()]
        event_line = next(line for line in lines if "rag_coach_retrieval" in line)
        plain_line = next(line for line in lines if "Loaded 12 book instructions" in line)
        assert "'athlete_id': 'a1'" in event_line
        assert "{}" not in plain_line
        assert "athlete_id" not in plain_line
