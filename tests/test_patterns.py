"""Tests for coursecompare.extractors.patterns - rule tables and the evaluator."""

from __future__ import annotations

import re

import pytest
from bs4 import BeautifulSoup

from coursecompare.extractors.patterns import (
    FIELDS,
    TUITION,
    AttributeRule,
    RegexRule,
    SelectorRule,
    StructuredRule,
    canonical_format,
    evaluate,
    parses_as_date,
    plausible_duration,
    plausible_gpa,
    plausible_tuition,
    with_selectors,
)


def _soup(html: str) -> BeautifulSoup:
    return BeautifulSoup(html, "lxml")


class TestPlausibility:
    def test_small_amount_rejected(self):
        assert not plausible_tuition("$50")

    def test_yearly_tuition_accepted(self):
        assert plausible_tuition("$45,000 per year")

    def test_huge_amount_rejected(self):
        assert not plausible_tuition("$2,500,000")

    def test_bounds_inclusive(self):
        assert plausible_tuition("$1,000")
        assert plausible_tuition("$200,000")

    def test_duration_limits(self):
        assert plausible_duration("2 years")
        assert plausible_duration("18 months")
        assert not plausible_duration("30 years")
        assert not plausible_duration("0 years")

    def test_spelled_duration(self):
        assert plausible_duration("two years")

    def test_date_parsing(self):
        assert parses_as_date("January 15, 2026")
        assert parses_as_date("March 1st")
        assert not parses_as_date("whenever")

    def test_gpa_range(self):
        assert plausible_gpa("3.0")
        assert not plausible_gpa("4.5")
        assert not plausible_gpa("high")

    def test_canonical_format(self):
        assert canonical_format("fully online") == "Online"
        assert canonical_format("on campus") == "On-campus"
        assert canonical_format("Blended") == "Hybrid"


class TestFieldTables:
    def test_every_field_has_rules(self):
        for name, spec in FIELDS.items():
            assert spec.name == name
            assert spec.rules

    def test_only_title_and_institution_required(self):
        required = {name for name, spec in FIELDS.items() if spec.required}
        assert required == {"title", "institution"}

    def test_extra_fields(self):
        extra = {name for name, spec in FIELDS.items() if spec.extra}
        assert extra == {"format", "credits", "min_gpa", "funding"}

    def test_structured_rule_comes_first(self):
        assert isinstance(TUITION.rules[0], StructuredRule)

    def test_with_selectors_prepends(self):
        spec = with_selectors(TUITION, [".fees td.total"])
        assert spec.rules[0] == SelectorRule(".fees td.total")
        assert spec.rules[1:] == TUITION.rules
        assert spec.max_length == TUITION.max_length

    def test_with_selectors_none_returns_same_spec(self):
        assert with_selectors(TUITION, None) is TUITION


class TestEvaluate:
    def test_selector_rule(self):
        soup = _soup('<div class="program-title"> MSc  Physics </div>')
        assert list(evaluate(SelectorRule(".program-title"), soup)) == ["MSc Physics"]

    def test_selector_accept_filters(self):
        soup = _soup('<span class="cost">$20</span><span class="cost">$20,000 per year</span>')
        rule = TUITION.rules[2]
        assert list(evaluate(rule, soup)) == ["$20,000 per year"]

    def test_attribute_rule(self):
        soup = _soup('<meta name="description" content="A two-year degree.">')
        rule = AttributeRule('meta[name="description"]', "content")
        assert list(evaluate(rule, soup)) == ["A two-year degree."]

    def test_regex_group_and_transform(self):
        rule = RegexRule(re.compile(r"lasts (\w+ years)"), group=1, transform=str.upper)
        assert list(evaluate(rule, _soup(""), "It lasts two years.")) == ["TWO YEARS"]

    def test_regex_ignores_soup(self):
        rule = RegexRule(re.compile(r"\$\d+"))
        assert list(evaluate(rule, _soup("<p>$10</p>"), "")) == []

    def test_structured_rule(self):
        html = (
            '<script type="application/ld+json">'
            '{"@type": "Course", "name": "MSc Robotics"}</script>'
        )
        assert list(evaluate(StructuredRule("title"), _soup(html))) == ["MSc Robotics"]

    def test_failing_transform_is_swallowed(self):
        def boom(value: str) -> str:
            raise RuntimeError("bad transform")

        rule = SelectorRule("p", transform=boom)
        assert list(evaluate(rule, _soup("<p>text</p>"))) == []

    def test_unknown_rule_type(self):
        with pytest.raises(TypeError):
            list(evaluate("not a rule", _soup("")))  # type: ignore[arg-type]


class TestTestRequirement:
    def _run(self, text: str) -> str | None:
        spec = FIELDS["test_requirement"]
        for rule in spec.rules:
            for value in evaluate(rule, _soup(""), text):
                return value
        return None

    def test_not_required(self):
        assert self._run("GRE scores are not required.") == "GRE: Not required"

    def test_required(self):
        assert self._run("The GMAT is required for all applicants.") == "GMAT: Required"

    def test_mentioned_only(self):
        assert self._run("Some applicants submit the GRE.") == "GRE: Check requirements"

    def test_no_mention(self):
        assert self._run("No tests at all.") is None
