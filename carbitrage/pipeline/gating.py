"""
Hard gates and the BUY / WATCH / IGNORE decision for hunt candidates.

A candidate first passes the hard gates: every attribute the hunt pins
(series, engine, cab, body) must not contradict what the text resolved to,
and in strict mode every must-have token must be present. It is then scored
on a 0-10 scale. A gate rejection is not an error; the score is still
computed and stored, but the decision is forced to IGNORE.
"""
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from carbitrage.config import TRUSTED_SOURCES
from carbitrage.errors import GateRejected
from carbitrage.pipeline.classification import CATEGORIES
from carbitrage.pipeline.records import Candidate, Decision, HuntSpec
from carbitrage.pipeline.scoring import load_scoring_config

# (attribute, reject code). Badge is scored but never gated
GATED_ATTRIBUTES = (
    ('series_family', 'SERIES_MISMATCH'),
    ('engine_family', 'ENGINE_MISMATCH'),
    ('cab_type', 'CAB_MISMATCH'),
    ('body_type', 'BODY_MISMATCH'),
)

_MATCH_REASONS = {
    'series_family': 'series_match',
    'engine_family': 'engine_match',
    'cab_type': 'cab_match',
    'body_type': 'body_match',
    'badge': 'badge_match',
}


def apply_hard_gates(classification: Dict[str, Optional[str]], hunt: HuntSpec, text: str) -> List[str]:
    """Return reject reason codes; an empty list means the candidate passes."""
    reasons = []
    for attribute, code in GATED_ATTRIBUTES:
        target = hunt.target(attribute)
        resolved = classification.get(attribute)
        if target and resolved and resolved != target:
            reasons.append(f"{code}:{resolved}")

    if hunt.must_have_mode == 'strict' and hunt.must_have_tokens:
        upper = (text or '').upper()
        for token in hunt.must_have_tokens:
            if token.upper() not in upper:
                reasons.append(f"MISSING_REQUIRED_TOKEN:{token}")

    return reasons


def check_gates(classification: Dict[str, Optional[str]], hunt: HuntSpec, text: str):
    """Raise GateRejected with every failed gate's code."""
    reasons = apply_hard_gates(classification, hunt, text)
    if reasons:
        raise GateRejected(reasons)


def derive_confidence(candidate: Candidate, hunt: HuntSpec) -> str:
    """
    high: year and price known and the text names the hunt's make and model;
    medium: year or price known and the text names either; else low.
    """
    text = candidate.text.lower()
    has_make = bool(hunt.make) and hunt.make.lower() in text
    has_model = bool(hunt.model) and hunt.model.lower() in text
    has_year = candidate.year is not None
    has_price = candidate.asking_price is not None
    if has_year and has_price and has_make and has_model:
        return 'high'
    if (has_year or has_price) and (has_make or has_model):
        return 'medium'
    return 'low'


def price_gap(asking: Optional[float], proven: Optional[float]) -> Tuple[Optional[float], Optional[float]]:
    """(gap in dollars, gap as % of proven exit value), or (None, None) if either price is unknown."""
    if asking is None or not proven:
        return None, None
    gap = proven - asking
    return gap, gap / proven * 100


def is_trusted_source(domain: str) -> bool:
    domain = (domain or '').lower()
    return any(domain == d or domain.endswith('.' + d) for d in TRUSTED_SOURCES)


@dataclass
class DecisionResult:
    score: float
    decision: Decision
    reasons: List[str] = field(default_factory=list)
    gap_dollars: Optional[float] = None
    gap_pct: Optional[float] = None
    confidence: str = 'low'

    @property
    def alertable(self) -> bool:
        return self.decision in (Decision.BUY, Decision.WATCH)


def score_and_decide(candidate: Candidate, classification: Dict[str, Optional[str]],
                     hunt: HuntSpec, reject_reasons: Optional[List[str]] = None) -> DecisionResult:
    w = load_scoring_config()['hunt']
    score = w['base']
    reasons: List[str] = []
    confidence = candidate.confidence or derive_confidence(candidate, hunt)

    if candidate.year is not None:
        if candidate.year == hunt.year:
            score += w['exact_year']
            reasons.append('exact_year_match')
        elif abs(candidate.year - hunt.year) == 1:
            score += w['adjacent_year']
            reasons.append('adjacent_year')

    if candidate.make and candidate.make.upper() == hunt.make.upper():
        score += w['make_match']
    if candidate.model and candidate.model.upper() == hunt.model.upper():
        score += w['model_match']

    for attribute in CATEGORIES:
        target = hunt.target(attribute)
        if target and classification.get(attribute) == target:
            score += w['classification_match']
            reasons.append(_MATCH_REASONS[attribute])

    gap_dollars, gap_pct = price_gap(candidate.asking_price, hunt.proven_exit_value)
    if gap_pct is not None:
        if gap_pct >= 0:
            for tier in w['gap_tiers']:
                if gap_pct >= tier['min_pct']:
                    score += tier['bonus']
                    if tier['min_pct'] > 0:
                        reasons.append(f"gap_{gap_pct:.0f}pct")
                    break
        else:
            score += w['overpriced_penalty']
            reasons.append('overpriced')

    if confidence == 'high':
        score += w['high_confidence']
        reasons.append('high_confidence')

    if is_trusted_source(candidate.domain):
        score += w['trusted_source']
        reasons.append('auction_source')

    score = round(min(10.0, max(0.0, score)), 2)

    if reject_reasons:
        decision = Decision.IGNORE
        reasons = list(reject_reasons) + reasons
    else:
        decision = _decide(score, gap_dollars, gap_pct, confidence, hunt, w)

    return DecisionResult(
        score=score,
        decision=decision,
        reasons=reasons,
        gap_dollars=gap_dollars,
        gap_pct=gap_pct,
        confidence=confidence,
    )


def _decide(score, gap_dollars, gap_pct, confidence, hunt: HuntSpec, w) -> Decision:
    if gap_dollars is None:
        return Decision.IGNORE
    if (score >= w['buy_score']
            and gap_dollars >= hunt.min_gap_abs_buy
            and gap_pct >= hunt.min_gap_pct_buy
            and confidence != 'low'):
        return Decision.BUY
    if score >= w['watch_score'] and (gap_dollars >= hunt.min_gap_abs_watch or gap_pct >= hunt.min_gap_pct_watch):
        return Decision.WATCH
    return Decision.IGNORE
