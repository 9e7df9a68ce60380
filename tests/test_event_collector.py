"""Tests for event truncation and the EventCollector buffer."""

import pytest

from agent_looper.loop.contracts import ProgressEvent
from agent_looper.loop.event_collector import (
    EventCollector,
    truncate_content,
    truncate_diff,
    truncate_event,
    truncate_text,
    truncate_tool_input,
)


class TestTruncation:
    """Test the truncation rules applied before buffering."""

    def test_short_text_unchanged(self):
        assert truncate_text("short") == "short"

    def test_long_text_cut_at_200(self):
        text = "x" * 250
        assert truncate_text(text) == "x" * 200 + "..."

    def test_long_content_keeps_edges(self):
        lines = [f"line {i} " + "y" * 30 for i in range(10)]
        content = "\n".join(lines)

        result = truncate_content(content)

        assert result == "\n".join(lines[:3]) + "\n...\n" + "\n".join(lines[-3:])

    def test_long_content_with_few_lines_unchanged(self):
        content = "z" * 500
        assert truncate_content(content) == content

    def test_diff_capped_at_20_lines(self):
        diff = "\n".join(f"+line {i}" for i in range(30))

        result = truncate_diff(diff)

        assert result.endswith("\n... (truncated)")
        assert result.count("\n") == 20

    def test_tool_input_keeps_useful_fields(self):
        tool_input = {
            "file_path": "src/app.py",
            "command": "pytest -q",
            "description": "run tests",
            "mode": "fast",
            "blob": "b" * 150,
            "count": 3,
        }

        result = truncate_tool_input(tool_input)

        assert result == {
            "file_path": "src/app.py",
            "command": "pytest -q",
            "description": "run tests",
            "mode": "fast",
        }

    def test_truncate_event_text(self):
        event = truncate_event(ProgressEvent.text("w" * 300, name="producer"))
        assert event.content == "w" * 200 + "..."
        assert event.name == "producer"

    def test_truncate_event_tool_use(self):
        event = truncate_event(ProgressEvent.tool_use("Write", {"file_path": "a", "content": "c"}))
        assert event.detail == {"input": {"file_path": "a", "content": "c"}}


class TestEventCollector:
    """Test buffering and flushing."""

    def test_rejects_non_positive_size(self):
        with pytest.raises(ValueError):
            EventCollector(max_events=0)

    def test_add_counts_and_threshold(self):
        collector = EventCollector(max_events=2)

        assert collector.add(ProgressEvent.text("a")) == 1
        assert not collector.should_summarize()
        assert collector.add(ProgressEvent.text("b")) == 2
        assert collector.should_summarize()

    def test_flush_returns_and_clears(self):
        collector = EventCollector()
        collector.add(ProgressEvent.text("a"))
        collector.add(ProgressEvent.tool_use("Bash"))

        events = collector.flush()

        assert [e.kind for e in events] == ["text", "tool_use"]
        assert not collector.has_events()
        assert collector.count() == 0
        assert collector.flush() == []

    def test_buffered_events_are_truncated(self):
        collector = EventCollector()
        collector.add(ProgressEvent.text("q" * 1000))

        assert len(collector.flush()[0].content) == 203
