"""Priority assignment from ordered (predicate, outcome) rules.

Rules are checked in order and the first match decides. The urgent override
is checked before any rule and again after a rule matches, so an explicit
urgency marker always wins.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Callable

DEFAULT_PRIORITY = "medium"
WIDE_IMPACT_UNITS = 3


@dataclass
class PriorityInput:
    title: str
    labels: list[str] = field(default_factory=list)
    unit_count: int = 1

    @property
    def lowered_labels(self) -> set[str]:
        return {label.lower() for label in self.labels}


@dataclass
class PriorityRule:
    name: str
    predicate: Callable[[PriorityInput], bool]
    outcome: str


@dataclass
class PriorityDecision:
    priority: str
    rule: str  # name of the deciding rule, or "default"


def _matches(patterns: list[str], labels: set[str] = frozenset()) -> Callable[[PriorityInput], bool]:
    compiled = [re.compile(p, re.IGNORECASE) for p in patterns]

    def predicate(item: PriorityInput) -> bool:
        if labels & item.lowered_labels:
            return True
        return any(p.search(item.title or "") for p in compiled)

    return predicate


is_urgent = _matches(
    [r"\burgent\b", r"\bcritical\b", r"\bproduction (is )?down\b", r"\boutage\b", r"\bdata loss\b"],
    labels={"urgent", "critical", "p0"},
)

DEFAULT_RULES = [
    PriorityRule(
        "security",
        _matches(
            [
                r"\bsecurity\b", r"vulnerab", r"\bxss\b", r"\bcsrf\b", r"sql injection",
                r"\bexploit", r"\bcve-\d+", r"\brce\b", r"auth(entication)? bypass",
                r"\bleak(ed|s|ing)? (credentials|tokens?|secrets?|passwords?)",
            ],
            labels={"security", "vulnerability"},
        ),
        "urgent",
    ),
    PriorityRule(
        "regression",
        _matches(
            [
                r"\bregression\b", r"used to work", r"stopped working",
                r"\bbr(o|e)ke(n)? (after|since|in)\b", r"\bafter (upgrading|updating)\b",
                r"\bsince (upgrading|updating|v?\d)",
            ],
            labels={"regression"},
        ),
        "high",
    ),
    PriorityRule(
        "bug",
        _matches(
            [
                r"\bbug\b", r"\berror\b", r"\bcrash(es|ed|ing)?\b", r"\bfail(s|ed|ing|ure)?\b",
                r"\bbroken\b", r"\bexception\b", r"\bnot working\b", r"\bdoes(n'?t| not) work\b",
            ],
            labels={"bug"},
        ),
        "high",
    ),
    PriorityRule(
        "wide-impact",
        lambda item: item.unit_count >= WIDE_IMPACT_UNITS,
        "high",
    ),
    PriorityRule(
        "feature-request",
        _matches(
            [
                r"feature request", r"would be (nice|great|cool)", r"nice to have",
                r"\b(add|adding) support\b", r"\bsupport for\b", r"\benhancement\b",
                r"\bsuggestion\b", r"\bproposal\b",
            ],
            labels={"enhancement", "feature", "feature request", "feature-request"},
        ),
        "low",
    ),
]


def evaluate_priority(item: PriorityInput, rules: list[PriorityRule] | None = None) -> PriorityDecision:
    if is_urgent(item):
        return PriorityDecision("urgent", "urgent-override")

    for rule in rules if rules is not None else DEFAULT_RULES:
        if rule.predicate(item):
            if is_urgent(item):
                return PriorityDecision("urgent", "urgent-override")
            return PriorityDecision(rule.outcome, rule.name)

    return PriorityDecision(DEFAULT_PRIORITY, "default")


def assign_priority(title: str, labels: list[str] | None = None, unit_count: int = 1) -> str:
    """Priority label for a group title, its labels and member count."""
    return evaluate_priority(PriorityInput(title=title, labels=labels or [], unit_count=unit_count)).priority
