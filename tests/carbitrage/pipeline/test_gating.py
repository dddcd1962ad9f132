"""Tests for carbitrage.pipeline.gating — hard gates and BUY/WATCH/IGNORE."""
import pytest

from carbitrage.errors import GateRejected
from carbitrage.pipeline.classification import classify_text
from carbitrage.pipeline.gating import (
    apply_hard_gates,
    check_gates,
    derive_confidence,
    is_trusted_source,
    price_gap,
    score_and_decide,
)
from carbitrage.pipeline.records import Decision


# ── Hard gates ───────────────────────────────────────────────────────────────

class TestHardGates:

    def test_engine_mismatch(self, make_hunt):
        text = '2021 LandCruiser 79 2.8L 4CYL DIESEL'
        reasons = apply_hard_gates(classify_text(text), make_hunt(), text)
        assert reasons == ['ENGINE_MISMATCH:I4_DIESEL']

    def test_unresolved_attribute_passes(self, make_hunt):
        text = '2021 LandCruiser for sale'
        assert apply_hard_gates(classify_text(text), make_hunt(), text) == []

    def test_unconstrained_hunt_passes_anything(self, make_hunt):
        hunt = make_hunt(series_family=None, engine_family=None, cab_type=None)
        text = 'LC300 twin turbo wagon single cab'
        assert apply_hard_gates(classify_text(text), hunt, text) == []

    def test_every_mismatch_is_reported(self, make_hunt):
        text = 'LC300 GDJ single cab'
        reasons = apply_hard_gates(classify_text(text), make_hunt(), text)
        assert reasons == ['SERIES_MISMATCH:LC300', 'ENGINE_MISMATCH:I4_DIESEL', 'CAB_MISMATCH:SINGLE']

    def test_strict_mode_requires_tokens(self, make_hunt):
        hunt = make_hunt(must_have_tokens=['79', 'winch'], must_have_mode='strict')
        text = 'LC79 V8 dual cab'
        assert apply_hard_gates(classify_text(text), hunt, text) == ['MISSING_REQUIRED_TOKEN:winch']

    def test_soft_mode_ignores_tokens(self, make_hunt):
        hunt = make_hunt(must_have_tokens=['winch'], must_have_mode='soft')
        text = 'LC79 V8 dual cab'
        assert apply_hard_gates(classify_text(text), hunt, text) == []

    def test_check_gates_raises_with_reasons(self, make_hunt):
        text = 'GDJ79 dual cab'
        with pytest.raises(GateRejected) as exc:
            check_gates(classify_text(text), make_hunt(), text)
        assert exc.value.reasons == ['ENGINE_MISMATCH:I4_DIESEL']


# ── Helpers ──────────────────────────────────────────────────────────────────

class TestHelpers:

    def test_price_gap(self):
        gap, pct = price_gap(80000, 100000)
        assert gap == 20000
        assert pct == 20.0

    def test_price_gap_unknown(self):
        assert price_gap(None, 100000) == (None, None)
        assert price_gap(80000, None) == (None, None)

    def test_trusted_source_matches_subdomains(self):
        assert is_trusted_source('pickles.com.au')
        assert is_trusted_source('www.pickles.com.au')
        assert not is_trusted_source('notpickles.com.au')

    def test_confidence_levels(self, make_candidate, make_hunt):
        hunt = make_hunt()
        assert derive_confidence(make_candidate(), hunt) == 'high'
        assert derive_confidence(make_candidate(asking_price=None), hunt) == 'medium'
        assert derive_confidence(make_candidate(year=None, asking_price=None), hunt) == 'low'

    def test_confidence_reads_text_not_extracted_fields(self, make_candidate, make_hunt):
        hunt = make_hunt()
        # Extracted make/model set, but the text never names the hunt's vehicle
        unnamed = make_candidate(title='2021 ute, one owner', snippet='45,000 km, $78,000')
        assert derive_confidence(unnamed, hunt) == 'low'
        # Text names the model only, extracted fields empty
        model_only = make_candidate(title='2021 LandCruiser GXL', make=None, model=None)
        assert derive_confidence(model_only, hunt) == 'medium'


# ── Score & decide ───────────────────────────────────────────────────────────

class TestScoreAndDecide:

    def test_clean_underpriced_candidate_is_buy(self, make_candidate, make_hunt):
        candidate, hunt = make_candidate(), make_hunt()
        classification = classify_text(candidate.text)
        outcome = score_and_decide(candidate, classification, hunt)

        assert outcome.decision == Decision.BUY
        assert outcome.score == 10.0
        assert outcome.gap_dollars == 12000
        assert outcome.alertable
        assert 'exact_year_match' in outcome.reasons
        assert 'auction_source' in outcome.reasons

    def test_engine_mismatch_forces_ignore(self, make_candidate, make_hunt):
        candidate = make_candidate(title='2021 Toyota LandCruiser 79 Series', snippet='2.8L 4CYL DIESEL, $78,000')
        hunt = make_hunt()
        classification = classify_text(candidate.text)
        rejects = apply_hard_gates(classification, hunt, candidate.text)
        outcome = score_and_decide(candidate, classification, hunt, rejects)

        assert classification['engine_family'] == 'I4_DIESEL'
        assert outcome.decision == Decision.IGNORE
        assert outcome.reasons[0] == 'ENGINE_MISMATCH:I4_DIESEL'
        assert not outcome.alertable

    def test_unknown_price_is_ignore(self, make_candidate, make_hunt):
        candidate = make_candidate(asking_price=None)
        outcome = score_and_decide(candidate, classify_text(candidate.text), make_hunt())
        assert outcome.gap_dollars is None
        assert outcome.decision == Decision.IGNORE

    def test_small_gap_is_watch(self, make_candidate, make_hunt):
        # $1,000 under: below the BUY gap, above the WATCH gap
        candidate = make_candidate(asking_price=89000.0)
        outcome = score_and_decide(candidate, classify_text(candidate.text), make_hunt())
        assert outcome.decision == Decision.WATCH

    def test_low_confidence_never_buys(self, make_candidate, make_hunt):
        candidate = make_candidate(confidence='low')
        outcome = score_and_decide(candidate, classify_text(candidate.text), make_hunt())
        assert outcome.decision == Decision.WATCH

    def test_overpriced_is_ignore(self, make_candidate, make_hunt):
        candidate = make_candidate(asking_price=99000.0, domain='example.com')
        outcome = score_and_decide(candidate, classify_text(candidate.text), make_hunt())
        assert 'overpriced' in outcome.reasons
        assert outcome.decision == Decision.IGNORE

    def test_score_stays_within_scale(self, make_candidate, make_hunt):
        candidate = make_candidate(year=2010, make=None, model=None, asking_price=200000.0,
                                   title='', snippet='', domain='example.com')
        outcome = score_and_decide(candidate, classify_text(candidate.text), make_hunt())
        assert 0.0 <= outcome.score <= 10.0
