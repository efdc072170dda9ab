from __future__ import annotations

import itertools

import pytest

from statement_ingest.errors import EmptyPattern, InvalidPattern, RuleConstructionError
from statement_ingest.matching import ContainsMatcher, RegexMatcher, RuleSet, build_matcher
from statement_ingest.models import MatcherKind

# ---- document matcher --------------------------------------------------------


def test_contains_is_accent_and_case_insensitive():
    m = build_matcher("padaria", MatcherKind.CONTAINS)
    assert isinstance(m, ContainsMatcher)
    res = m.match("Pagamento Padaria José")
    assert res.matched
    assert res.reason == 'contains "padaria"'


def test_contains_pattern_with_accents_matches_unaccented_descriptor():
    assert build_matcher("José", "contains").match("PADARIA JOSE").matched
    assert build_matcher("JOSE", "contains").match("padaria josé").matched


def test_contains_miss_reports_reason():
    res = build_matcher("PADARIA", MatcherKind.CONTAINS).match("Transferência Banco Central")
    assert not res.matched
    assert "PADARIA" in res.reason


def test_regex_is_compiled_case_insensitive_and_searches_folded_text():
    m = build_matcher(r"^pix\s+(enviado|recebido)", MatcherKind.REGEX)
    assert isinstance(m, RegexMatcher)
    res = m.match("PIX  Recebido de João")
    assert res.matched
    assert res.reason == r"matches /^pix\s+(enviado|recebido)/"
    assert not m.match("TED ENVIADO").matched


def test_regex_pattern_diacritics_are_folded():
    assert build_matcher("transferência", MatcherKind.REGEX).match("TRANSFERENCIA TED").matched


@pytest.mark.parametrize("kind", list(MatcherKind))
@pytest.mark.parametrize("pattern", ["", "   "])
def test_blank_patterns_are_rejected(kind, pattern):
    with pytest.raises(EmptyPattern):
        build_matcher(pattern, kind)


def test_invalid_regex_fails_at_construction():
    with pytest.raises(InvalidPattern):
        build_matcher("([unclosed", MatcherKind.REGEX)


@pytest.mark.parametrize("kind", list(MatcherKind))
def test_empty_descriptor_never_matches(kind):
    m = build_matcher(".*" if kind is MatcherKind.REGEX else "A", kind)
    assert not m.match("").matched
    assert not m.match("   ").matched


# ---- rule set ----------------------------------------------------------------


def test_highest_priority_wins_regardless_of_insertion_order():
    rules = [(1, "low", 5), (2, "high", 20), (3, "mid", 10)]
    for order in itertools.permutations(rules):
        rs = RuleSet()
        for rule_id, name, priority in order:
            rs.add_rule(rule_id, name, "PADARIA", MatcherKind.CONTAINS, priority)
        best = rs.find_best_match("Pagamento Padaria José")
        assert best is not None
        assert (best.rule_id, best.priority) == (2, 20)


def test_ties_go_to_first_added():
    rs = RuleSet()
    rs.add_rule(10, "first", "PADARIA", MatcherKind.CONTAINS, 7)
    rs.add_rule(11, "second", "PAD", MatcherKind.CONTAINS, 7)
    best = rs.find_best_match("PADARIA")
    assert best is not None and best.rule_name == "first"


def test_find_all_matches_is_priority_ordered():
    rs = RuleSet()
    rs.add_rule(1, "food", "PADARIA", MatcherKind.CONTAINS, 10)
    rs.add_rule(2, "pix", "^PAGAMENTO", MatcherKind.REGEX, 30)
    rs.add_rule(3, "other", "MERCADO", MatcherKind.CONTAINS, 50)
    matches = rs.find_all_matches("Pagamento Padaria José")
    assert [m.rule_name for m in matches] == ["pix", "food"]
    assert rs.has_match("mercado central")
    assert not rs.has_match("farmácia")
    assert rs.rules() == [(3, "other", 50), (2, "pix", 30), (1, "food", 10)]


def test_bad_rule_is_named_and_set_left_unchanged():
    rs = RuleSet()
    rs.add_rule(1, "ok", "PADARIA", MatcherKind.CONTAINS, 1)
    with pytest.raises(RuleConstructionError) as ei:
        rs.add_rule(2, "broken", "(", MatcherKind.REGEX, 99)
    assert ei.value.rule_name == "broken"
    assert "broken" in str(ei.value)
    assert isinstance(ei.value.cause, InvalidPattern)
    assert len(rs) == 1
    assert rs.rules() == [(1, "ok", 1)]


def test_no_match_returns_none_and_clear_empties():
    rs = RuleSet()
    rs.add_rule(1, "food", "PADARIA", MatcherKind.CONTAINS, 10)
    assert rs.find_best_match("Transferência Banco Central") is None
    rs.clear()
    assert len(rs) == 0
    assert rs.find_best_match("PADARIA") is None
