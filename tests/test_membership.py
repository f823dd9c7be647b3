"""Tests for membership policy evaluation."""

import pytest

from rolekeeper.membership.policy import (
    EligibilityRule,
    MembershipPolicy,
    PredicateRule,
    admits_unlisted,
    as_rule,
    evaluate,
    is_eligible,
)
from rolekeeper.subjects.directory import Subject

P = MembershipPolicy

# (policy, on_list) -> expected for rule absent / true / false
EXPECTED = {
    (P.LIST_ONLY, True): (True, True, True),
    (P.LIST_ONLY, False): (False, False, False),
    (P.PREDICATE_ONLY, True): (False, True, False),
    (P.PREDICATE_ONLY, False): (False, True, False),
    (P.LIST_AND_PREDICATE, True): (False, True, False),
    (P.LIST_AND_PREDICATE, False): (False, False, False),
    (P.LIST_OR_PREDICATE, True): (True, True, True),
    (P.LIST_OR_PREDICATE, False): (False, True, False),
    (P.LIST_AND_PREDICATE_OR_ABSENT, True): (True, True, False),
    (P.LIST_AND_PREDICATE_OR_ABSENT, False): (False, False, False),
    (P.LIST_OR_PREDICATE_OR_ABSENT, True): (True, True, True),
    (P.LIST_OR_PREDICATE_OR_ABSENT, False): (True, True, False),
}


@pytest.mark.parametrize("policy,on_list", sorted(EXPECTED, key=lambda k: (k[0].value, k[1])))
def test_eligibility_table(policy, on_list):
    absent, true, false = EXPECTED[(policy, on_list)]
    assert evaluate(policy, on_list, None) is absent
    assert evaluate(policy, on_list, True) is true
    assert evaluate(policy, on_list, False) is false


def test_every_policy_is_covered():
    assert {policy for policy, _ in EXPECTED} == set(MembershipPolicy)


def test_admits_unlisted():
    assert admits_unlisted(P.PREDICATE_ONLY)
    assert admits_unlisted(P.LIST_OR_PREDICATE)
    assert admits_unlisted(P.LIST_OR_PREDICATE_OR_ABSENT)
    assert not admits_unlisted(P.LIST_ONLY)
    assert not admits_unlisted(P.LIST_AND_PREDICATE)
    assert not admits_unlisted(P.LIST_AND_PREDICATE_OR_ABSENT)


def _subject(subject_id: str = "7") -> Subject:
    return Subject(directory=None, scope_id="guild-1", subject_id=subject_id)


def test_list_only_never_calls_rule():
    calls = []

    def rule(subject):
        calls.append(subject)
        return False

    assert is_eligible(P.LIST_ONLY, _subject(), {"7"}, as_rule(rule))
    assert calls == []


def test_rule_sees_subject():
    rule = PredicateRule(lambda s: s.subject_id.startswith("7"), "sevens")
    assert is_eligible(P.PREDICATE_ONLY, _subject("77"), set(), rule)
    assert not is_eligible(P.PREDICATE_ONLY, _subject("8"), set(), rule)


def test_as_rule():
    rule = PredicateRule(lambda s: True)
    assert as_rule(rule) is rule
    assert as_rule(None) is None
    assert isinstance(as_rule(lambda s: True), EligibilityRule)
    with pytest.raises(TypeError):
        as_rule(42)
