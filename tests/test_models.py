"""Tests for Pydantic models in cwv_lab.models."""

from __future__ import annotations

import pydantic
import pytest

from cwv_lab.models import coverage, layout, report, third_party

# ── Coverage ────────────────────────────────────────────────────


class TestPercentage:
    """Tests for percentage()."""

    @pytest.mark.parametrize(
        ("part", "total", "expected"),
        [(1, 8, 13), (1, 3, 33), (2, 3, 67), (1, 200, 1), (0, 10, 0), (5, 0, 0)],
    )
    def test_rounds_half_up(self, part: int, total: int, expected: int) -> None:
        assert coverage.percentage(part, total) == expected


class TestCoverageRange:
    """Tests for CoverageRange."""

    def test_v8_spelling(self) -> None:
        r = coverage.CoverageRange.model_validate({"startOffset": 4, "endOffset": 10, "count": 0})
        assert (r.start, r.end, r.size) == (4, 10, 6)
        assert r.executed is False

    def test_css_spelling_defaults_count(self) -> None:
        r = coverage.CoverageRange.model_validate({"start": 0, "end": 5})
        assert r.count == 1
        assert r.executed is True

    def test_inverted_range_has_no_size(self) -> None:
        assert coverage.CoverageRange(start=10, end=4).size == 0


class TestCoverageEntry:
    """Tests for CoverageEntry."""

    def test_resource_type(self) -> None:
        js = coverage.CoverageEntry.model_validate({"url": "u", "rawScriptCoverage": {"functions": []}})
        css = coverage.CoverageEntry.model_validate({"url": "u", "ranges": []})
        assert js.resource_type == "js"
        assert css.resource_type == "css"

    def test_has_coverage_distinguishes_missing_from_empty(self) -> None:
        assert coverage.CoverageEntry(url="u", ranges=[]).has_coverage is True
        assert coverage.CoverageEntry(url="u").has_coverage is False


class TestByteStats:
    """Tests for ByteStats."""

    def test_derived_fields(self) -> None:
        stats = coverage.ByteStats(total=200, used=150, pre_lcp=50, post_lcp=100)
        assert stats.unused == 50
        assert stats.unused_percent == 25
        assert stats.pre_lcp_percent == 25
        assert stats.post_lcp_percent == 50

    def test_addition(self) -> None:
        total = coverage.ByteStats(total=10, used=5) + coverage.ByteStats(total=30, used=5, pre_lcp=5)
        assert (total.total, total.used, total.pre_lcp) == (40, 10, 5)

    def test_empty_file(self) -> None:
        assert coverage.ByteStats().unused_percent == 0


class TestDisplayName:
    """Tests for display_name()."""

    @pytest.mark.parametrize(
        ("key", "expected"),
        [
            ("foo:L12", "foo"),
            (".a:hover:L3", ".a:hover"),
            ("@media (x):L1", "@media (x)"),
            ("no-line", "no-line"),
            (".a,\n.b:L2", ".a, .b"),
        ],
    )
    def test_strips_line_suffix(self, key: str, expected: str) -> None:
        assert coverage.display_name(key) == expected


# ── Layout ──────────────────────────────────────────────────────


class TestRect:
    """Tests for Rect."""

    def test_left_top_spelling(self) -> None:
        rect = layout.Rect.model_validate({"left": 5, "top": 7, "width": 10, "height": 20})
        assert (rect.left, rect.top) == (5, 7)
        assert rect.center == (10, 17)

    def test_defaults(self) -> None:
        assert layout.Rect() == layout.Rect(x=0, y=0, width=0, height=0)


class TestLayoutShift:
    """Tests for LayoutShift."""

    def test_parses_sources(self) -> None:
        shift = layout.LayoutShift.model_validate({
            "value": 0.1,
            "hadRecentInput": False,
            "sources": [{"nodeId": 3, "previousRect": {"x": 0, "y": 0}, "currentRect": {"x": 0, "y": 10}}],
        })
        source = shift.sources[0]
        assert source.node_id == 3
        assert source.current_rect is not None
        assert source.current_rect.top == 10


# ── Third party ─────────────────────────────────────────────────


class TestHarEntry:
    """Tests for HarEntry."""

    def test_chromium_extensions(self) -> None:
        entry = third_party.HarEntry.model_validate({
            "request": {"url": "https://a.com/x.js"},
            "response": {"_transferSize": 120, "content": {"mimeType": "text/javascript"}},
            "_resourceType": "script",
            "_priority": "High",
            "_initiator": {"type": "script", "url": "https://a.com/", "lineNumber": 4},
            "_startOffsetMs": 12.5,
        })
        assert entry.resource_type == "script"
        assert entry.priority == "High"
        assert entry.initiator is not None
        assert entry.initiator.line_number == 4
        assert entry.response.transfer_size == 120
        assert entry.start_offset_ms == 12.5

    def test_defaults(self) -> None:
        entry = third_party.HarEntry.model_validate({"request": {"url": "u"}})
        assert entry.timings.dns == -1
        assert entry.response.transfer_size is None
        assert entry.initiator is None

    def test_request_is_required(self) -> None:
        with pytest.raises(pydantic.ValidationError):
            third_party.HarEntry.model_validate({"response": {}})


class TestThirdPartyScript:
    """Tests for ThirdPartyScript."""

    def test_blocking_time(self) -> None:
        script = third_party.ThirdPartyScript(
            url="u",
            domain="d",
            category="other",
            long_tasks=[
                third_party.LongTaskHit(start_time=0, duration=80, blocking_duration=30),
                third_party.LongTaskHit(start_time=100, duration=60, blocking_duration=10),
            ],
        )
        assert script.blocking_time == 40


# ── Report ──────────────────────────────────────────────────────


class TestLabReport:
    """Tests for LabReport."""

    def test_complete_requires_every_stage(self) -> None:
        assert report.LabReport(url="u").complete is True
        assert report.LabReport(url="u", layout_shifts_complete=False).complete is False

    def test_issue_aliases(self) -> None:
        issue = report.AnalysisIssue(stage="collection", message="boom", resource="har")
        assert issue.model_dump(by_alias=True) == {"stage": "collection", "message": "boom", "resource": "har"}
