"""Tests for tool call deduplication and rate limiting."""

import pytest

from loopguard.execution.deduplicator import (
    SEMANTIC_SIGNATURES,
    DeduplicatorConfig,
    ToolCallDeduplicator,
    is_read_only_by_convention,
)


@pytest.fixture
def dedup(clock):
    return ToolCallDeduplicator(clock=clock)


def _call(dedup, tool_name, tool_input, result=None):
    """Check then record, the way an orchestrator drives one tool call."""
    check = dedup.check_duplicate(tool_name, tool_input)
    if not check.is_duplicate:
        dedup.record_call(tool_name, tool_input, result)
    return check


class TestCallKey:
    """Test cases for exact-call keys."""

    def test_key_order_insensitive(self):
        assert ToolCallDeduplicator.call_key(
            "t", {"a": 1, "b": {"y": 2, "x": 1}}
        ) == ToolCallDeduplicator.call_key("t", {"b": {"x": 1, "y": 2}, "a": 1})

    def test_key_includes_tool_name(self):
        key = ToolCallDeduplicator.call_key("read_file", {"path": "a"})
        assert key.startswith("read_file:")
        assert key != ToolCallDeduplicator.call_key("write_file", {"path": "a"})

    def test_none_input(self):
        assert ToolCallDeduplicator.call_key("t", None) == ToolCallDeduplicator.call_key(
            "t", {}
        )


class TestSemanticSignature:
    """Test cases for semantic signatures."""

    @pytest.mark.parametrize(
        "filename",
        ["report_v1.docx", "report_v2.docx", "report_final.docx", "report-draft.docx"],
    )
    def test_file_variants_share_signature(self, filename):
        signature = ToolCallDeduplicator.semantic_signature(
            "create_document", {"filename": filename}
        )
        assert signature == "create_document:file:report"

    def test_path_used_when_no_filename(self):
        assert (
            ToolCallDeduplicator.semantic_signature("write_file", {"path": "notes_v3.md"})
            == "write_file:file:notes"
        )

    def test_copy_uses_destination(self):
        assert (
            ToolCallDeduplicator.semantic_signature(
                "copy_file", {"sourcePath": "a.docx", "destPath": "out_updated.docx"}
            )
            == "copy_file:copy:out"
        )

    def test_search_strips_site_modifiers(self):
        with_site = ToolCallDeduplicator.semantic_signature(
            "web_search", {"query": "Python asyncio site:reddit.com"}
        )
        with_platform = ToolCallDeduplicator.semantic_signature(
            "web_search", {"query": '"python asyncio" reddit'}
        )
        assert with_site == with_platform == "web_search:search:python asyncio"

    def test_default_signature_is_tool_name(self):
        assert ToolCallDeduplicator.semantic_signature("send_email", {"to": "a"}) == (
            "send_email"
        )
        assert ToolCallDeduplicator.semantic_signature("create_document", None) == (
            "create_document"
        )

    def test_empty_input_uses_registered_signature(self):
        assert ToolCallDeduplicator.semantic_signature("create_document", {}) == (
            "create_document:file:"
        )

    def test_registry_covers_loop_prone_tools(self):
        assert set(SEMANTIC_SIGNATURES) == {
            "create_document",
            "write_file",
            "create_spreadsheet",
            "create_presentation",
            "copy_file",
            "web_search",
        }


class TestExactDuplicates:
    """Test cases for exact duplicate detection."""

    def test_third_identical_call_rejected(self, dedup):
        """maxDuplicates+1 identical calls within the window: the last is rejected."""
        assert not _call(dedup, "read_file", {"path": "a.txt"}, "contents").is_duplicate
        assert not _call(dedup, "read_file", {"path": "a.txt"}, "contents").is_duplicate

        check = dedup.check_duplicate("read_file", {"path": "a.txt"})

        assert check.is_duplicate
        assert "identical parameters" in check.reason
        assert check.cached_result == "contents"

    def test_accepted_after_window(self, dedup, clock):
        _call(dedup, "read_file", {"path": "a.txt"})
        _call(dedup, "read_file", {"path": "a.txt"})

        clock.advance(61)

        assert not dedup.check_duplicate("read_file", {"path": "a.txt"}).is_duplicate

    def test_key_order_does_not_matter(self, dedup):
        _call(dedup, "search_code", {"query": "x", "limit": 5})
        _call(dedup, "search_code", {"limit": 5, "query": "x"})

        assert dedup.check_duplicate("search_code", {"query": "x", "limit": 5}).is_duplicate

    def test_different_inputs_allowed(self, dedup):
        for i in range(5):
            assert not _call(dedup, "read_file", {"path": f"{i}.txt"}).is_duplicate

    def test_stateful_tools_bypass(self, dedup):
        for _ in range(30):
            assert not _call(dedup, "browser_screenshot", {}).is_duplicate

    def test_custom_max_duplicates(self, clock):
        dedup = ToolCallDeduplicator(DeduplicatorConfig(max_duplicates=1), clock=clock)
        _call(dedup, "read_file", {"path": "a"})
        assert dedup.check_duplicate("read_file", {"path": "a"}).is_duplicate


class TestSemanticDuplicates:
    """Test cases for semantic duplicate detection."""

    def test_report_variants_rejected_at_threshold(self, dedup):
        """Three report versions go through; the fourth similar call is rejected."""
        for name in ("report_v1.docx", "report_v2.docx", "report_final.docx"):
            assert not _call(dedup, "create_document", {"filename": name}).is_duplicate

        check = dedup.check_duplicate("create_document", {"filename": "report_v3.docx"})

        assert check.is_duplicate
        assert "semantically similar" in check.reason
        assert check.cached_result is None

    def test_window_expiry(self, dedup, clock):
        for name in ("report_v1.docx", "report_v2.docx", "report_final.docx"):
            _call(dedup, "create_document", {"filename": name})

        clock.advance(61)

        assert not dedup.check_duplicate(
            "create_document", {"filename": "report_v3.docx"}
        ).is_duplicate

    def test_unregistered_tools_not_checked(self, dedup):
        for i in range(6):
            assert not _call(dedup, "send_email", {"subject": f"hi {i}"}).is_duplicate

    def test_registered_read_only_tool_exempt(self, dedup, monkeypatch):
        """A read-only name skips the semantic check even when registered."""
        monkeypatch.setitem(
            SEMANTIC_SIGNATURES, "get_report", lambda name, _input: f"{name}:report"
        )
        for i in range(6):
            check = _call(dedup, "get_report", {"filename": f"report_v{i}.docx"})
            assert not check.is_duplicate

    def test_registered_mutating_tool_checked(self, dedup, monkeypatch):
        monkeypatch.setitem(
            SEMANTIC_SIGNATURES, "render_report", lambda name, _input: f"{name}:report"
        )
        for i in range(3):
            _call(dedup, "render_report", {"filename": f"report_v{i}.docx"})

        check = dedup.check_duplicate("render_report", {"filename": "report_v9.docx"})

        assert check.is_duplicate

    def test_read_only_convention(self):
        assert is_read_only_by_convention("get_weather")
        assert is_read_only_by_convention("search_files")
        assert is_read_only_by_convention("task_status")
        assert is_read_only_by_convention("channel_history")
        assert not is_read_only_by_convention("create_document")
        assert not is_read_only_by_convention("web_search")


class TestRateLimit:
    """Test cases for per-tool rate limiting."""

    def test_rejects_after_limit(self, dedup):
        for i in range(20):
            assert not _call(dedup, "fetch_page", {"url": f"https://e.com/{i}"}).is_duplicate

        check = dedup.check_duplicate("fetch_page", {"url": "https://e.com/new"})

        assert check.is_duplicate
        assert "Rate limit exceeded" in check.reason
        assert dedup.rate_limit_count("fetch_page") == 20

    def test_fresh_window_accepted(self, dedup, clock):
        for i in range(20):
            _call(dedup, "fetch_page", {"url": f"https://e.com/{i}"})

        clock.advance(61)

        assert not dedup.check_duplicate("fetch_page", {"url": "https://e.com/new"}).is_duplicate
        assert dedup.rate_limit_count("fetch_page") == 0

    def test_reset_preserves_rate_limits(self, dedup):
        for i in range(20):
            _call(dedup, "fetch_page", {"url": f"https://e.com/{i}"})
        _call(dedup, "read_file", {"path": "a"})
        _call(dedup, "read_file", {"path": "a"})

        dedup.reset()

        assert dedup.check_duplicate("fetch_page", {"url": "https://e.com/x"}).is_duplicate
        assert not dedup.check_duplicate("read_file", {"path": "a"}).is_duplicate

    def test_record_is_unconditional(self, dedup):
        """Recording counts even calls that would have been rejected."""
        for _ in range(3):
            dedup.record_call("read_file", {"path": "a"})
        assert dedup.rate_limit_count("read_file") == 3


class TestIdempotentTools:
    """Test cases for is_idempotent_tool."""

    def test_explicit_list(self):
        assert ToolCallDeduplicator.is_idempotent_tool("read_file")
        assert ToolCallDeduplicator.is_idempotent_tool("web_search")

    def test_naming_convention(self):
        assert ToolCallDeduplicator.is_idempotent_tool("get_calendar_events")

    def test_mutating_tools(self):
        assert not ToolCallDeduplicator.is_idempotent_tool("write_file")
        assert not ToolCallDeduplicator.is_idempotent_tool("create_document")
