"""Tests for cwv_lab.analysis.coverage — pre/post-paint classification."""

from __future__ import annotations

import copy

import pytest

from cwv_lab.analysis import coverage
from cwv_lab.models import coverage as coverage_models

from conftest import JS_TEXT, css_entry, js_entry, js_function

CSS_URL = "https://example.com/site.css"
JS_URL = "https://example.com/app.js"


# ── classify ────────────────────────────────────────────────────


class TestClassifyCss:
    """Tests for classify() on stylesheets."""

    def test_rule_used_only_after_lcp_is_post_paint(self, css_text: str) -> None:
        pre = [css_entry(CSS_URL, css_text, [(0, 100)])]
        full = [{"url": CSS_URL, "text": css_text, "ranges": [{"start": 50, "end": 150, "count": 2}]}]
        result = coverage.classify(pre, full)

        file = result.files[CSS_URL]
        assert file.units[".a:L1"].usage == "pre-paint"
        assert file.units[".b:L1"].usage == "post-paint"
        assert file.loaded_pre_paint is True

    def test_css_byte_totals(self, css_text: str) -> None:
        pre = [css_entry(CSS_URL, css_text, [(0, 100)])]
        full = [css_entry(CSS_URL, css_text, [(50, 150)])]
        file = coverage.classify(pre, full).files[CSS_URL]
        assert file.bytes.total == len(css_text)
        assert file.bytes.used == len(css_text)
        assert file.bytes.pre_lcp == 100
        assert file.bytes.post_lcp == len(css_text) - 100

    def test_fully_unused_stylesheet(self) -> None:
        full = [css_entry(CSS_URL, ".a{x:y}.b{x:z}", [])]
        file = coverage.classify([], full).files[CSS_URL]
        assert file.count("unused") == 2
        assert file.bytes.unused_percent == 100
        assert file.bytes.pre_lcp_percent == 0
        assert file.bytes.post_lcp_percent == 0
        assert file.loaded_pre_paint is False

    def test_duplicate_keys_keep_highest_usage(self) -> None:
        # Both rules sit on line 1 with the same selector.
        text = ".a{x:y}.a{x:z}"
        full = [css_entry(CSS_URL, text, [(7, 14)])]
        file = coverage.classify([], full).files[CSS_URL]
        assert file.units == {".a:L1": coverage_models.UnitClassification(usage="post-paint")}


class TestClassifyJs:
    """Tests for classify() on scripts."""

    def test_usage_buckets(self, pre_js_entry: dict, full_js_entry: dict) -> None:
        file = coverage.classify([pre_js_entry], [full_js_entry]).files[JS_URL]
        assert file.resource_type == "js"
        assert file.units["foo:L1"].usage == "pre-paint"
        assert file.units["bar:L2"].usage == "post-paint"
        assert file.units["baz:L3"].usage == "unused"

    def test_pre_paint_survives_zero_full_count(self, pre_js_entry: dict, full_js_entry: dict) -> None:
        file = coverage.classify([pre_js_entry], [full_js_entry]).files[JS_URL]
        assert file.units["foo:L1"].execution_count == 5

    def test_js_byte_totals(self, pre_js_entry: dict, full_js_entry: dict) -> None:
        file = coverage.classify([pre_js_entry], [full_js_entry]).files[JS_URL]
        assert file.bytes.total == 84
        assert file.bytes.used == 56
        assert file.bytes.pre_lcp == 28
        assert file.bytes.post_lcp == 28

    def test_anonymous_functions_count_bytes_only(self) -> None:
        entry = js_entry(JS_URL, JS_TEXT, [
            js_function("", 0, 28, 1),
            js_function("bar", 29, 57, 0),
        ])
        file = coverage.classify([], [entry]).files[JS_URL]
        assert list(file.units) == ["bar:L2"]
        assert file.bytes.total == 56
        assert file.bytes.post_lcp == 28

    def test_script_only_in_pre_snapshot(self, pre_js_entry: dict) -> None:
        file = coverage.classify([pre_js_entry], []).files[JS_URL]
        assert file.units["foo:L1"].usage == "pre-paint"
        assert file.loaded_pre_paint is True


class TestClassifyCompleteness:
    """Tests for the complete flag and skipped list of classify()."""

    def test_clean_run_is_complete(self, pre_js_entry: dict, full_js_entry: dict) -> None:
        result = coverage.classify([pre_js_entry], [full_js_entry])
        assert result.complete is True
        assert result.skipped == []

    def test_resource_without_coverage_is_skipped(self) -> None:
        full = [
            {"url": "https://example.com/none.css", "text": ".a{}"},
            css_entry(CSS_URL, ".a{}", [(0, 4)]),
        ]
        result = coverage.classify([], full)
        assert result.complete is False
        assert result.skipped == ["https://example.com/none.css"]
        assert CSS_URL in result.files

    def test_malformed_entry_marks_incomplete(self) -> None:
        full = [{"url": 12, "ranges": "bad"}, css_entry(CSS_URL, ".a{}", [])]
        result = coverage.classify([], full)
        assert result.complete is False
        assert CSS_URL in result.files

    def test_empty_snapshots(self) -> None:
        result = coverage.classify([], [])
        assert result.files == {}
        assert result.complete is True


# ── astral characters ───────────────────────────────────────────


class TestUtf16Offsets:
    """Tests for classify() on text with characters outside the BMP."""

    def test_css_rule_matching_after_emoji(self) -> None:
        text = "/*" + "\U0001F600" * 4 + "*/\n.a{x:y}\n.b{x:z}"
        # ".a{x:y}" is code units 13-20 in the browser's UTF-16 view.
        file = coverage.classify([], [css_entry(CSS_URL, text, [(13, 20)])]).files[CSS_URL]
        assert file.units == {
            ".a:L2": coverage_models.UnitClassification(usage="post-paint"),
            ".b:L3": coverage_models.UnitClassification(usage="unused"),
        }
        assert file.bytes.used == 7

    def test_function_line_after_emoji(self) -> None:
        text = "x = '" + "\U0001F600" * 4 + "';\nfoo\nbar\n"
        entry = js_entry(JS_URL, text, [js_function("foo", 16, 19, 1)])
        file = coverage.classify([], [entry]).files[JS_URL]
        assert list(file.units) == ["foo:L2"]
        assert file.bytes.total == 3


# ── classification properties ───────────────────────────────────

OTHER_CSS_URL = "https://example.com/extra.css"
PADDED_CSS = ".a{color:red}" + " " * 107 + ".b{color:blue}"


def _scenarios() -> list:
    return [
        pytest.param(
            [js_entry(JS_URL, JS_TEXT, [js_function("foo", 0, 28, 5), js_function("bar", 29, 57, 0), js_function("baz", 58, 86, 0)])],
            [js_entry(JS_URL, JS_TEXT, [js_function("foo", 0, 28, 0), js_function("bar", 29, 57, 3), js_function("baz", 58, 86, 0)])],
            id="js-buckets",
        ),
        pytest.param(
            [css_entry(CSS_URL, PADDED_CSS, [(0, 100)])],
            [css_entry(CSS_URL, PADDED_CSS, [(50, 150)]), css_entry(OTHER_CSS_URL, ".x{}.y{}", [(0, 4)])],
            id="css-two-files",
        ),
        pytest.param(
            [css_entry(CSS_URL, ".a{}.b{}.c{}", [(0, 4)])],
            [css_entry(CSS_URL, ".a{}.b{}.c{}", [(4, 8)])],
            id="css-thirds",
        ),
        pytest.param(
            [],
            [js_entry(JS_URL, JS_TEXT, [js_function("", 58, 86, 2), js_function("foo", 0, 28, 1), js_function("bar", 29, 57, 0)])],
            id="js-late-only",
        ),
        pytest.param(
            [js_entry(JS_URL, JS_TEXT, [js_function("foo", 0, 28, 1)]), css_entry(CSS_URL, ".a{x:y}.b{x:z}", [(0, 7)])],
            [js_entry(JS_URL, JS_TEXT, [js_function("bar", 29, 57, 1), js_function("foo", 0, 28, 2)])],
            id="mixed",
        ),
    ]


def _reordered(entries: list[dict]) -> list[dict]:
    """Reverse the entries and every function and range list inside them."""
    result = []
    for entry in reversed(copy.deepcopy(entries)):
        if "rawScriptCoverage" in entry:
            entry["rawScriptCoverage"]["functions"].reverse()
        if entry.get("ranges"):
            entry["ranges"].reverse()
        result.append(entry)
    return result


class TestClassificationProperties:
    """Tests for invariants of classify() across several inputs."""

    @pytest.mark.parametrize(("pre", "full"), _scenarios())
    def test_input_order_does_not_matter(self, pre: list[dict], full: list[dict]) -> None:
        forward = coverage.classify(pre, full)
        backward = coverage.classify(_reordered(pre), _reordered(full))
        assert forward.files == backward.files

    @pytest.mark.parametrize(("pre", "full"), _scenarios())
    def test_byte_percentages_sum_to_100(self, pre: list[dict], full: list[dict]) -> None:
        result = coverage.classify(pre, full)
        assert result.files
        for file in result.files.values():
            stats = file.bytes
            assert stats.used == stats.pre_lcp + stats.post_lcp
            total_percent = stats.unused_percent + stats.pre_lcp_percent + stats.post_lcp_percent
            assert abs(total_percent - 100) <= 1

    @pytest.mark.parametrize(("pre", "full"), _scenarios())
    def test_pre_paint_units_stay_pre_paint(self, pre: list[dict], full: list[dict]) -> None:
        early = coverage.classify(pre, []).files
        merged = coverage.classify(pre, full).files
        for rid, file in early.items():
            for key, unit in file.units.items():
                if unit.usage == "pre-paint":
                    assert merged[rid].units[key].usage == "pre-paint"
