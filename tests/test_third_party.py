"""Tests for cwv_lab.analysis.third_party — script categorisation and attribution."""

from __future__ import annotations

import pytest

from cwv_lab import config
from cwv_lab.analysis import third_party
from cwv_lab.models import performance
from cwv_lab.models import third_party as third_party_models
from cwv_lab.utils import url as url_mod

from conftest import AD_URL, GTM_URL, PAGE_URL, har_entry

THRESHOLDS = config.ThirdPartyThresholds()
ANTI_FLICKER_HTML = "<style>.async-hide { opacity: 0 !important }</style>"


def _entry(**kwargs: object) -> third_party_models.HarEntry:
    return third_party_models.HarEntry.model_validate(kwargs)


# ── categorize ──────────────────────────────────────────────────


class TestCategorize:
    """Tests for categorize()."""

    @pytest.mark.parametrize(
        ("url", "expected"),
        [
            (AD_URL, "advertising"),
            (GTM_URL, "tag-manager"),
            ("https://www.googletagmanager.com/gtag/js?id=G-1", "tag-manager"),
            ("https://gtag.example.net/t.js", "analytics"),
            ("https://www.google-analytics.com/analytics.js", "analytics"),
            ("https://cdn.cookielaw.org/scripttemplates/otSDKStub.js", "consent"),
            ("https://cdn.jsdelivr.net/npm/lib@1/dist/lib.min.js", "cdn"),
            ("https://cdn.optimizely.com/js/123.js", "testing"),
            ("https://js.stripe.com/v3/", "payment"),
            ("https://static.zdassets.com/ekr/snippet.js", "support"),
            ("https://static.hotjar.com/c/hotjar-1.js", "session-replay"),
            ("https://example.org/rum.js", "monitoring"),
            ("https://www.youtube.com/iframe_api", "video"),
            ("https://unknown-vendor.io/widget.js", "other"),
        ],
    )
    def test_categories(self, url: str, expected: str) -> None:
        assert third_party.categorize(url, url_mod.extract_domain(url)) == expected

    def test_case_insensitive(self) -> None:
        assert third_party.categorize("https://AD.DOUBLECLICK.NET/x.js", "AD.DOUBLECLICK.NET") == "advertising"


# ── HAR helpers ─────────────────────────────────────────────────


class TestHarHelpers:
    """Tests for the HAR entry helpers."""

    def test_script_detection_by_type_and_mime(self) -> None:
        assert third_party.is_script_entry(_entry(request={"url": "u"}, _resourceType="script"))
        assert not third_party.is_script_entry(_entry(request={"url": "u"}, _resourceType="image"))
        assert third_party.is_script_entry(_entry(
            request={"url": "u"}, response={"content": {"mimeType": "text/javascript"}},
        ))
        assert not third_party.is_script_entry(_entry(
            request={"url": "u"}, response={"content": {"mimeType": "image/png"}},
        ))

    @pytest.mark.parametrize(
        ("url", "expected"),
        [
            ("https://example.com/app.js", False),
            ("https://example.com:443/app.js", False),
            ("https://cdn.example.com/app.js", True),
            ("http://example.com/app.js", True),
            ("data:text/javascript,alert(1)", False),
        ],
    )
    def test_is_third_party(self, url: str, expected: bool) -> None:
        assert third_party.is_third_party(url, PAGE_URL) is expected

    def test_render_blocking(self) -> None:
        assert third_party.is_render_blocking(_entry(request={"url": "u"}, _priority="VeryHigh"))
        assert third_party.is_render_blocking(_entry(request={"url": "u"}, _initiator={"type": "parser"}))
        assert not third_party.is_render_blocking(_entry(
            request={"url": "u"}, _priority="Low", _initiator={"type": "script"},
        ))

    def test_network_timing_falls_back_to_phases(self) -> None:
        entry = third_party_models.HarEntry.model_validate(har_entry(AD_URL, time=0))
        timing = third_party.network_timing(entry)
        assert timing.dns == 10
        assert timing.download == 20
        assert timing.total == 105

    def test_transfer_size_falls_back_to_body_size(self) -> None:
        assert third_party.transfer_size(_entry(request={"url": "u"}, response={"bodySize": 500})) == 500
        assert third_party.transfer_size(_entry(
            request={"url": "u"}, response={"bodySize": 500, "_transferSize": 800},
        )) == 800


# ── execution and initiators ────────────────────────────────────


class TestInitiatorChain:
    """Tests for initiator_chain()."""

    def test_follows_links(self) -> None:
        entries = [
            _entry(request={"url": "c"}, _initiator={"type": "script", "url": "b"}),
            _entry(request={"url": "b"}, _initiator={"type": "script", "url": "a"}),
            _entry(request={"url": "a"}),
        ]
        by_url = {e.request.url: e for e in entries}
        assert third_party.initiator_chain(entries[0], by_url) == ["b", "a"]

    def test_stops_at_cycle(self) -> None:
        a = _entry(request={"url": "a"}, _initiator={"url": "b"})
        b = _entry(request={"url": "b"}, _initiator={"url": "a"})
        assert third_party.initiator_chain(a, {"a": a, "b": b}) == ["b"]

    def test_respects_max_depth(self) -> None:
        entries = {
            f"u{i}": _entry(request={"url": f"u{i}"}, _initiator={"url": f"u{i + 1}"})
            for i in range(20)
        }
        assert len(third_party.initiator_chain(entries["u0"], entries, max_depth=3)) == 3


class TestFindLongTasks:
    """Tests for find_long_tasks()."""

    def test_matches_by_container_src(self, sample_perf: dict) -> None:
        perf = performance.PerformanceEntries.from_raw(sample_perf)
        hits = third_party.find_long_tasks(GTM_URL, "www.googletagmanager.com", perf)
        assert len(hits) == 1
        assert hits[0].blocking_duration == 70

    def test_no_match(self, sample_perf: dict) -> None:
        perf = performance.PerformanceEntries.from_raw(sample_perf)
        assert third_party.find_long_tasks(AD_URL, "ad.doubleclick.net", perf) == []


# ── analyze ─────────────────────────────────────────────────────


class TestAnalyze:
    """Tests for analyze()."""

    def test_scripts_and_summary(self, sample_har: list, sample_perf: dict) -> None:
        analysis = third_party.analyze(sample_har, sample_perf, PAGE_URL, ANTI_FLICKER_HTML, THRESHOLDS)

        assert [s.url for s in analysis.scripts] == [GTM_URL, AD_URL]
        assert analysis.summary.total_scripts == 2
        assert analysis.summary.total_transfer_size == 2000
        assert analysis.summary.total_execution_time == 120
        assert analysis.summary.total_blocking_time == 70
        assert analysis.summary.render_blocking_count == 1
        assert analysis.personalization_markers == ["async-hide"]

    def test_initiator_attribution(self, sample_har: list, sample_perf: dict) -> None:
        analysis = third_party.analyze(sample_har, sample_perf, PAGE_URL, thresholds=THRESHOLDS)
        ad = next(s for s in analysis.scripts if s.url == AD_URL)
        assert ad.initiator.chain == [GTM_URL, PAGE_URL]
        assert ad.initiator.loaded_via == "tag-manager"

    def test_category_impact(self, sample_har: list, sample_perf: dict) -> None:
        analysis = third_party.analyze(sample_har, sample_perf, PAGE_URL, ANTI_FLICKER_HTML, THRESHOLDS)
        impact = {c.category: c for c in analysis.category_impact}

        assert [c.category for c in analysis.category_impact] == ["tag-manager", "advertising"]

        tag_manager = impact["tag-manager"]
        assert tag_manager.is_render_blocking is True
        assert tag_manager.lcp_critical is True
        assert tag_manager.preconnect == "conditional"
        assert tag_manager.decision.recommend is True

        advertising = impact["advertising"]
        assert advertising.lcp_critical is False
        assert advertising.preconnect is False
        assert advertising.decision.recommend is False

    def test_conditional_without_markers(self, sample_har: list, sample_perf: dict) -> None:
        analysis = third_party.analyze(sample_har, sample_perf, PAGE_URL, "<html></html>", THRESHOLDS)
        tag_manager = next(c for c in analysis.category_impact if c.category == "tag-manager")
        assert tag_manager.decision.recommend is False

    def test_accepts_har_document(self, sample_har: list, sample_perf: dict) -> None:
        document = {"log": {"version": "1.2", "entries": sample_har}}
        analysis = third_party.analyze(document, sample_perf, PAGE_URL, thresholds=THRESHOLDS)
        assert analysis.summary.total_scripts == 2

    def test_malformed_entries_are_skipped(self, sample_har: list) -> None:
        analysis = third_party.analyze([*sample_har, {"response": {}}, "junk"], {}, PAGE_URL, thresholds=THRESHOLDS)
        assert analysis.skipped_entries == 2
        assert analysis.summary.total_scripts == 2

    def test_empty_har(self) -> None:
        analysis = third_party.analyze([], {}, PAGE_URL, thresholds=THRESHOLDS)
        assert analysis.scripts == []
        assert analysis.category_impact == []

    def test_naive_timestamps_are_read_as_utc(self) -> None:
        first = har_entry("https://cdn.vendor-a.com/a.js")
        second = har_entry("https://cdn.vendor-b.com/b.js")
        first["startedDateTime"] = "2024-01-01T00:00:00.000Z"
        second["startedDateTime"] = "2024-01-01T00:00:01.000"
        analysis = third_party.analyze([first, second], {}, PAGE_URL, thresholds=THRESHOLDS)
        assert [s.start_time for s in analysis.scripts] == [0, 1000]

    def test_unparseable_timestamp_leaves_start_unknown(self) -> None:
        good = har_entry("https://cdn.vendor-a.com/a.js")
        bad = har_entry("https://cdn.vendor-b.com/b.js")
        bad["startedDateTime"] = "yesterday"
        analysis = third_party.analyze([good, bad], {}, PAGE_URL, thresholds=THRESHOLDS)
        assert [s.start_time for s in analysis.scripts] == [0, None]


# ── markdown ────────────────────────────────────────────────────


class TestRenderMarkdown:
    """Tests for render_markdown()."""

    def test_report_sections(self, sample_har: list, sample_perf: dict) -> None:
        analysis = third_party.analyze(sample_har, sample_perf, PAGE_URL, ANTI_FLICKER_HTML, THRESHOLDS)
        text = third_party.render_markdown(analysis, THRESHOLDS)

        assert text.startswith("**Third-Party Script Analysis:**")
        assert "* **Total Scripts**: 2" in text
        assert "* **Personalization Markers**: async-hide" in text
        assert "1. **tag-manager**: 1 script, " in text
        assert "**Top Scripts by Execution Time:**" in text
        assert "- Execution: 120ms [RENDER-BLOCKING]" in text
        assert "- Long Tasks: 1 (70ms blocking)" in text

    def test_empty_analysis(self) -> None:
        text = third_party.render_markdown(third_party_models.ThirdPartyAnalysis(), THRESHOLDS)
        assert "* **Total Scripts**: 0" in text
        assert "By Category" not in text
