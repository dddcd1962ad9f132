"""
Hunt scan — search the web for listings that replicate a proven sale.

For one hunt: build up to four queries, run each through the candidate
supplier, then classify → gate → score & decide every candidate, upsert it
keyed by (hunt, source, url) and raise a BUY/WATCH alert the first time a
candidate qualifies.
"""
import logging
import time
from collections import Counter
from typing import Callable, List, Optional

from carbitrage.config import HUNT_MAX_QUERIES, HUNT_MAX_RESULTS
from carbitrage.errors import GateRejected, InputMissing, TransientError
from carbitrage.pipeline.base import StepResult
from carbitrage.pipeline.classification import classify_text
from carbitrage.pipeline.gating import (
    DecisionResult, check_gates, derive_confidence, score_and_decide,
)
from carbitrage.pipeline.records import Candidate, HuntSpec
from carbitrage.services.db import (
    emit_alert_once, finish_hunt_scan_run, load_hunt, save_candidate, start_hunt_scan_run,
)
from carbitrage.services.search import search_candidates

logger = logging.getLogger('pipeline.hunt_scan')

# (query, hunt, limit) -> candidates
CandidateSupplier = Callable[[str, HuntSpec, int], List[Candidate]]


def build_queries(hunt: HuntSpec) -> List[str]:
    """Most specific first, deduplicated, capped at HUNT_MAX_QUERIES."""
    base = f"{hunt.year} {hunt.make} {hunt.model}"
    queries = []
    if hunt.series_family:
        queries.append(f"{base} {hunt.series_family}")
    if hunt.badge:
        queries.append(f"{base} {hunt.badge}")
    if hunt.cab_type:
        queries.append(f"{base} {hunt.cab_type.lower()} cab")
    queries.append(f"{base} for sale")

    seen = set()
    unique = []
    for query in queries:
        if query not in seen:
            seen.add(query)
            unique.append(query)
    return unique[:HUNT_MAX_QUERIES]


def build_alert_payload(candidate: Candidate, hunt: HuntSpec, outcome: DecisionResult, classification) -> dict:
    return {
        'year': candidate.year,
        'make': candidate.make,
        'model': candidate.model,
        'km': candidate.km,
        'asking_price': candidate.asking_price,
        'proven_exit_value': hunt.proven_exit_value,
        'gap_dollars': outcome.gap_dollars,
        'gap_pct': round(outcome.gap_pct, 2) if outcome.gap_pct is not None else None,
        'match_score': outcome.score,
        'source': f"Web Discovery ({candidate.domain})",
        'listing_url': candidate.url,
        'classification': dict(classification),
        'reasons': list(outcome.reasons),
    }


def run_hunt_scan(hunt_id: str, max_results: int = HUNT_MAX_RESULTS, dry_run: bool = False,
                  supplier: Optional[CandidateSupplier] = None) -> StepResult:
    """
    Scan the web for one hunt.

    Result counters: processed = results found, created/updated = candidate
    rows, skipped = gate rejections, failed = candidates that could not be
    stored. A failing query is recorded in errors and the scan carries on.
    """
    if not hunt_id:
        raise InputMissing('hunt_id')

    start = time.monotonic()
    supplier = supplier or search_candidates

    hunt = load_hunt(hunt_id)
    if hunt is None:
        logger.warning("Hunt %s not found — skipping", hunt_id)
        return StepResult(status='skipped', skipped=1, meta={'hunt_id': hunt_id, 'reason': 'hunt not found'},
                          duration_ms=int((time.monotonic() - start) * 1000))

    queries = build_queries(hunt)
    result = StepResult(meta={'hunt_id': hunt_id, 'queries': queries, 'dry_run': dry_run})
    reject_reasons = Counter()
    decisions = Counter()
    queries_run = 0
    alerts_emitted = 0

    scan_run_id = None if dry_run else start_hunt_scan_run(hunt_id, queries)

    for query in queries:
        try:
            candidates = supplier(query, hunt, max_results)
        except TransientError as e:
            queries_run += 1
            result.errors.append(f"{query}: {e}")
            continue
        queries_run += 1

        for candidate in candidates:
            result.processed += 1
            if candidate.confidence is None:
                candidate.confidence = derive_confidence(candidate, hunt)

            classification = classify_text(candidate.text)
            rejects = []
            try:
                check_gates(classification, hunt, candidate.text)
            except GateRejected as e:
                rejects = e.reasons
                result.skipped += 1
                for reason in rejects:
                    reject_reasons[reason.split(':')[0]] += 1

            outcome = score_and_decide(candidate, classification, hunt, rejects)
            decisions[outcome.decision.value] += 1

            if dry_run:
                continue

            try:
                candidate_id, created = save_candidate(
                    hunt_id, candidate, classification, outcome.score,
                    outcome.decision.value, outcome.reasons,
                )
            except TransientError as e:
                result.failed += 1
                result.errors.append(str(e))
                continue

            if created:
                result.created += 1
            else:
                result.updated += 1

            if outcome.alertable:
                payload = build_alert_payload(candidate, hunt, outcome, classification)
                try:
                    if emit_alert_once(hunt_id, candidate_id, outcome.decision.value, payload):
                        alerts_emitted += 1
                except TransientError as e:
                    result.errors.append(str(e))

    result.status = 'partial' if result.errors else 'success'
    result.meta.update({
        'queries_run': queries_run,
        'alerts_emitted': alerts_emitted,
        'reject_reasons': dict(reject_reasons),
        'decisions': dict(decisions),
    })

    if not dry_run:
        finish_hunt_scan_run(
            scan_run_id, hunt_id, result.status,
            {
                'queries_run': queries_run,
                'results_found': result.processed,
                'candidates_created': result.created,
                'candidates_rejected': result.skipped,
                'alerts_emitted': alerts_emitted,
            },
            error='; '.join(result.errors)[:1000] or None,
        )

    result.duration_ms = int((time.monotonic() - start) * 1000)
    logger.info(
        "Hunt %s scan — queries=%d results=%d rejected=%d alerts=%d errors=%d",
        hunt_id, queries_run, result.processed, result.skipped, alerts_emitted, len(result.errors),
    )
    return result
