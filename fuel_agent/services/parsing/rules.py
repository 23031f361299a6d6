"""Ordered number-recovery rules.

Each rule pairs a pattern with a constructor that turns one match into candidate
readings (in preference order) and a range check on the resulting value. Rules are
evaluated in list order and the first validated candidate wins, so each heuristic
can be exercised on its own.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Callable, Collection, Iterable, List, Optional, Sequence, Tuple

from . import filters

GALLONS_RANGE = (1.0, 25.0)   # a single consumer fill-up
TOTAL_RANGE = (10.0, 500.0)   # a single fill-up cost


@dataclass(frozen=True)
class Candidate:
    value: float
    # text looked up in the OCR lines to score this reading
    source: str
    # span of the digit token in the cleaned text
    span: Tuple[int, int]


@dataclass(frozen=True)
class NumberRule:
    name: str
    pattern: re.Pattern
    construct: Callable[[re.Match], List[Candidate]]
    validate: Callable[[float], bool]
    # True when the rule rebuilt the value from a bare digit token
    reconstructed: bool = False


@dataclass(frozen=True)
class RuleHit:
    rule: NumberRule
    candidate: Candidate


def in_range(bounds: Tuple[float, float]) -> Callable[[float], bool]:
    lo, hi = bounds
    return lambda v: lo <= v <= hi


def _as_decimal(m: re.Match) -> List[Candidate]:
    token = m.group(1)
    return [Candidate(value=float(token), source=token, span=m.span(1))]


def insert_decimal_from_left(positions: Sequence[int], frac_digits: int) -> Callable[[re.Match], List[Candidate]]:
    """Candidates with a point after `pos` leading digits, kept only when the
    remaining digits match the display's fixed decimals."""

    def construct(m: re.Match) -> List[Candidate]:
        token = m.group(1)
        out: List[Candidate] = []
        for pos in positions:
            if len(token) != pos + frac_digits:
                continue
            out.append(Candidate(value=float(f"{token[:pos]}.{token[pos:]}"), source=token, span=m.span(1)))
        return out

    return construct


def insert_decimal_from_right(frac_digits: Sequence[int]) -> Callable[[re.Match], List[Candidate]]:
    """Candidates with `n` fraction digits for each n in order."""

    def construct(m: re.Match) -> List[Candidate]:
        token = m.group(1)
        out: List[Candidate] = []
        for n in frac_digits:
            if not 0 < n < len(token):
                continue
            out.append(Candidate(value=float(f"{token[:-n]}.{token[-n:]}"), source=token, span=m.span(1)))
        return out

    return construct


GALLONS_RULES: Tuple[NumberRule, ...] = (
    NumberRule(
        name="gallons-3-decimals",
        pattern=filters.GALLONS_RE,
        construct=_as_decimal,
        validate=lambda v: True,
    ),
    NumberRule(
        name="gallons-digits",
        pattern=filters.GALLONS_DIGITS_RE,
        construct=insert_decimal_from_left((1, 2), frac_digits=3),
        validate=in_range(GALLONS_RANGE),
        reconstructed=True,
    ),
)

TOTAL_RULES: Tuple[NumberRule, ...] = (
    NumberRule(
        name="total-2-decimals",
        pattern=filters.MONEY_RE,
        construct=_as_decimal,
        validate=in_range(TOTAL_RANGE),
    ),
    NumberRule(
        name="total-digits",
        pattern=filters.TOTAL_DIGITS_RE,
        construct=insert_decimal_from_right((2, 3)),
        validate=in_range(TOTAL_RANGE),
        reconstructed=True,
    ),
)


def first_match(rules: Iterable[NumberRule], text: str, skip_spans: Collection[Tuple[int, int]] = ()) -> Optional[RuleHit]:
    """Run rules in order; within a rule, matches left to right."""
    for rule in rules:
        for m in rule.pattern.finditer(text):
            if m.span(1) in skip_spans:
                continue
            for cand in rule.construct(m):
                if rule.validate(cand.value):
                    return RuleHit(rule=rule, candidate=cand)
    return None
