"""Membership policy evaluation.

Eligibility combines two inputs: whether the subject is on the controller's
allow-list, and the outcome of an optional eligibility rule. Each policy is a
row in ``ELIGIBILITY_TABLE``: how the two inputs are joined, and what an
absent rule counts as. An absent rule only counts as "true" in the two
``..._OR_ABSENT`` policies.
"""

from __future__ import annotations

import operator
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Callable, Collection, Protocol, runtime_checkable

if TYPE_CHECKING:
    from rolekeeper.subjects.directory import Subject


class MembershipPolicy(Enum):
    """How a controller decides whether a subject should hold its role."""

    LIST_ONLY = "list_only"
    PREDICATE_ONLY = "predicate_only"
    LIST_AND_PREDICATE = "list_and_predicate"
    LIST_OR_PREDICATE = "list_or_predicate"
    LIST_AND_PREDICATE_OR_ABSENT = "list_and_predicate_or_absent"
    LIST_OR_PREDICATE_OR_ABSENT = "list_or_predicate_or_absent"


@runtime_checkable
class EligibilityRule(Protocol):
    """A dynamic eligibility check over a subject."""

    def evaluate(self, subject: Subject) -> bool:
        ...


@dataclass(frozen=True)
class PredicateRule:
    """Adapts a plain callable to ``EligibilityRule``."""

    predicate: Callable[[Subject], bool]
    description: str = ""

    def evaluate(self, subject: Subject) -> bool:
        return bool(self.predicate(subject))


def as_rule(rule: EligibilityRule | Callable[[Subject], bool] | None) -> EligibilityRule | None:
    """Normalize a rule argument: rules pass through, callables are wrapped."""
    if rule is None or isinstance(rule, EligibilityRule):
        return rule
    if callable(rule):
        return PredicateRule(rule)
    raise TypeError(f"Not an eligibility rule: {rule!r}")


@dataclass(frozen=True)
class _Row:
    join: Callable[[bool, bool], bool]
    absent_as: bool
    consults_list: bool = True
    consults_rule: bool = True


ELIGIBILITY_TABLE: dict[MembershipPolicy, _Row] = {
    MembershipPolicy.LIST_ONLY: _Row(operator.and_, absent_as=True, consults_rule=False),
    MembershipPolicy.PREDICATE_ONLY: _Row(operator.and_, absent_as=False, consults_list=False),
    MembershipPolicy.LIST_AND_PREDICATE: _Row(operator.and_, absent_as=False),
    MembershipPolicy.LIST_OR_PREDICATE: _Row(operator.or_, absent_as=False),
    MembershipPolicy.LIST_AND_PREDICATE_OR_ABSENT: _Row(operator.and_, absent_as=True),
    MembershipPolicy.LIST_OR_PREDICATE_OR_ABSENT: _Row(operator.or_, absent_as=True),
}


def consults_rule(policy: MembershipPolicy) -> bool:
    return ELIGIBILITY_TABLE[policy].consults_rule


def admits_unlisted(policy: MembershipPolicy) -> bool:
    """Whether a subject can be eligible under this policy without being on the list."""
    row = ELIGIBILITY_TABLE[policy]
    return not row.consults_list or row.join is operator.or_


def evaluate(policy: MembershipPolicy, on_list: bool, rule_result: bool | None) -> bool:
    """Pure eligibility function. ``rule_result`` is None when no rule is set."""
    row = ELIGIBILITY_TABLE[policy]
    list_value = on_list if row.consults_list else True
    if not row.consults_rule:
        rule_value = True
    elif rule_result is None:
        rule_value = row.absent_as
    else:
        rule_value = rule_result
    return bool(row.join(list_value, rule_value))


def is_eligible(
    policy: MembershipPolicy,
    subject: Subject,
    allow_list: Collection[str],
    rule: EligibilityRule | None = None,
) -> bool:
    """Evaluate a policy for a subject. The rule is only invoked when the policy consults it."""
    on_list = subject.subject_id in allow_list
    rule_result = None
    if rule is not None and consults_rule(policy):
        rule_result = rule.evaluate(subject)
    return evaluate(policy, on_list, rule_result)
