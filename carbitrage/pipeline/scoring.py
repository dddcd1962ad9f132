"""
Listing scoring — match normalized listings against sales fingerprints.

score_listing() is pure: listing + fingerprint in, score/bands/reasons out.
run_fingerprint_match() is the "run once" job that loads an account's
fingerprints and newest listings, scores them and upserts every listing at
or above the threshold into matched_opportunities.

Scoring (additive, clamped to [0, 100]):
  +40  platform class match (MAKE|MODEL)
  +25  km inside [p25, p75]        / +10 within ±20,000 of that range
  +15  asking <= median price      / +5 asking <= median × 1.10
  +10  each for transmission / fuel / drivetrain matching the dominant value
"""
import logging
import os
import time
from dataclasses import dataclass, field
from typing import Dict, List, Optional

import yaml

from carbitrage.config import MATCH_BATCH_SIZE, UPSERT_CHUNK_SIZE
from carbitrage.errors import InputMissing, NoMatch, TransientError
from carbitrage.pipeline.base import StepResult
from carbitrage.pipeline.records import (
    Fingerprint, KmBand, ListingRecord, Opportunity, PriceBand,
)
from carbitrage.services.db import (
    load_fingerprints, load_recent_listings, upsert_opportunities,
)

logger = logging.getLogger('pipeline.scoring')

ATTRIBUTES = ('transmission', 'fuel', 'drivetrain')


# ── Scoring config (YAML with hardcoded fallback) ────────────────────────────

_scoring_config = None


def _default_config():
    """Hardcoded fallback if YAML is missing."""
    return {
        'version': 'default',
        'opportunity': {
            'base': 40,
            'km_inside': 25,
            'km_near': 10,
            'km_near_margin': 20000,
            'price_below': 15,
            'price_near': 5,
            'price_near_ratio': 1.10,
            'attribute_match': 10,
            'threshold': 60,
        },
        'hunt': {
            'base': 5.0,
            'exact_year': 1.5,
            'adjacent_year': 0.5,
            'make_match': 1.0,
            'model_match': 1.0,
            'classification_match': 0.5,
            'high_confidence': 0.5,
            'trusted_source': 0.5,
            'gap_tiers': [
                {'min_pct': 10, 'bonus': 1.5},
                {'min_pct': 5, 'bonus': 1.0},
                {'min_pct': 0, 'bonus': 0.5},
            ],
            'overpriced_penalty': -1.0,
            'buy_score': 7.0,
            'watch_score': 5.5,
        },
    }


def load_scoring_config():
    """Load scoring config from YAML, with in-memory cache and hardcoded fallback."""
    global _scoring_config
    if _scoring_config is not None:
        return _scoring_config

    config_path = os.path.join(os.path.dirname(__file__), 'scoring_config.yaml')
    try:
        with open(config_path, 'r') as f:
            _scoring_config = yaml.safe_load(f)
        logger.info("Config loaded from YAML (version=%s)", _scoring_config.get('version', '?'))
    except Exception as e:
        logger.warning("YAML config not found (%s), using defaults", e)
        _scoring_config = _default_config()

    return _scoring_config


def _weights() -> Dict:
    return load_scoring_config()['opportunity']


# ── Pure scoring ─────────────────────────────────────────────────────────────

@dataclass
class ScoreResult:
    score: int
    km_band: KmBand
    price_band: PriceBand
    # Insertion order is the reporting order: platform_class, km, price, attributes
    reasons: Dict[str, str] = field(default_factory=dict)


def classify_km(km: Optional[int], p25: Optional[int], p75: Optional[int],
                margin: int = 20000) -> KmBand:
    """Bounds are inclusive on both ends, for the inner range and the near margin."""
    if km is None or p25 is None or p75 is None:
        return KmBand.UNKNOWN
    if p25 <= km <= p75:
        return KmBand.INSIDE
    if p25 - margin <= km <= p75 + margin:
        return KmBand.NEAR
    return KmBand.OUTSIDE


def classify_price(asking: Optional[float], median: Optional[float],
                   near_ratio: float = 1.10) -> PriceBand:
    if asking is None or median is None or median <= 0:
        return PriceBand.UNKNOWN
    if asking <= median:
        return PriceBand.BELOW
    if asking <= median * near_ratio:
        return PriceBand.NEAR
    return PriceBand.ABOVE


def _attribute_matches(listing_value, dominant_value, support) -> bool:
    if not listing_value or not dominant_value or not support:
        return False
    return listing_value.strip().lower() == dominant_value.strip().lower()


def score_listing(listing: ListingRecord, fingerprint: Optional[Fingerprint]) -> ScoreResult:
    """
    Score one listing against its platform-class fingerprint.

    Raises NoMatch when there is no fingerprint for the listing's platform
    class; such listings are skipped, never scored.
    """
    platform_class = listing.platform_class
    if fingerprint is None or platform_class is None or platform_class != fingerprint.platform_class:
        raise NoMatch(f"No fingerprint for {platform_class or 'unknown platform class'}")

    w = _weights()
    score = w['base']
    reasons = {'platform_class': f"{platform_class} ({fingerprint.sales_count} sales)"}

    km_band = classify_km(listing.km, fingerprint.km_p25, fingerprint.km_p75, w['km_near_margin'])
    if km_band == KmBand.INSIDE:
        score += w['km_inside']
        reasons['km'] = f"{listing.km:,} km inside {fingerprint.km_p25:,}-{fingerprint.km_p75:,}"
    elif km_band == KmBand.NEAR:
        score += w['km_near']
        reasons['km'] = f"{listing.km:,} km near {fingerprint.km_p25:,}-{fingerprint.km_p75:,}"
    elif km_band == KmBand.OUTSIDE:
        reasons['km'] = f"{listing.km:,} km outside {fingerprint.km_p25:,}-{fingerprint.km_p75:,}"
    else:
        reasons['km'] = 'km unknown'

    price_band = classify_price(listing.asking_price, fingerprint.price_median, w['price_near_ratio'])
    if price_band == PriceBand.BELOW:
        score += w['price_below']
        reasons['price'] = f"${listing.asking_price:,.0f} at or below median ${fingerprint.price_median:,.0f}"
    elif price_band == PriceBand.NEAR:
        score += w['price_near']
        reasons['price'] = f"${listing.asking_price:,.0f} within 10% of median ${fingerprint.price_median:,.0f}"
    elif price_band == PriceBand.ABOVE:
        reasons['price'] = f"${listing.asking_price:,.0f} above median ${fingerprint.price_median:,.0f}"
    else:
        reasons['price'] = 'price unknown'

    for attr in ATTRIBUTES:
        dominant = getattr(fingerprint, f'dominant_{attr}')
        support = getattr(fingerprint, f'dominant_{attr}_count')
        if _attribute_matches(getattr(listing, attr), dominant, support):
            score += w['attribute_match']
            reasons[attr] = f"matches dominant {dominant} ({support} sales)"

    return ScoreResult(
        score=int(min(100, max(0, score))),
        km_band=km_band,
        price_band=price_band,
        reasons=reasons,
    )


def should_persist(score: int) -> bool:
    """Threshold is inclusive: a score of exactly 60 persists."""
    return score >= _weights()['threshold']


def build_opportunity(listing: ListingRecord, fingerprint: Fingerprint, result: ScoreResult) -> Opportunity:
    return Opportunity(
        account_id=listing.account_id,
        listing_id=listing.id,
        platform_class=fingerprint.platform_class,
        match_score=result.score,
        km_band=result.km_band.value,
        price_band=result.price_band.value,
        reasons=dict(result.reasons),
        url=listing.url,
        make=listing.make,
        model=listing.model,
        year=listing.year,
        km=listing.km,
        asking_price=listing.asking_price,
        source=listing.source,
        sales_count=fingerprint.sales_count,
    )


# ── Run once ─────────────────────────────────────────────────────────────────

def _chunks(items: List, size: int):
    for i in range(0, len(items), size):
        yield items[i:i + size]


def run_fingerprint_match(account_id: str, batch_size: int = MATCH_BATCH_SIZE,
                          dry_run: bool = False) -> StepResult:
    """
    Score the account's newest listings against its fingerprints.

    Upserts run in chunks; a failing chunk is counted as failed and the job
    moves on to the next one.
    """
    if not account_id:
        raise InputMissing('account_id')

    start = time.monotonic()
    fingerprints = {fp.platform_class: fp for fp in load_fingerprints(account_id)}
    result = StepResult(meta={'fingerprints_loaded': len(fingerprints), 'dry_run': dry_run})

    if not fingerprints:
        result.meta['message'] = 'No fingerprints for account'
        result.duration_ms = int((time.monotonic() - start) * 1000)
        return result

    listings = load_recent_listings(account_id, limit=batch_size)
    matched: List[Opportunity] = []

    for listing in listings:
        result.processed += 1
        try:
            scored = score_listing(listing, fingerprints.get(listing.platform_class))
        except NoMatch:
            result.skipped += 1
            continue
        if not should_persist(scored.score):
            result.skipped += 1
            continue
        matched.append(build_opportunity(listing, fingerprints[listing.platform_class], scored))

    result.meta['matched'] = len(matched)

    if not dry_run:
        for chunk in _chunks(matched, UPSERT_CHUNK_SIZE):
            try:
                created, updated = upsert_opportunities(chunk)
                result.created += created
                result.updated += updated
            except TransientError as e:
                logger.warning("Opportunity chunk failed for account %s: %s", account_id, e)
                result.failed += len(chunk)
                result.errors.append(str(e))

    result.duration_ms = int((time.monotonic() - start) * 1000)
    logger.info(
        "Fingerprint match for %s — checked=%d matched=%d created=%d updated=%d skipped=%d",
        account_id, result.processed, len(matched), result.created, result.updated, result.skipped,
    )
    return result
