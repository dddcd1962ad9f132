"""
Listing ingest client — asks the ingest service to pull one (make, state)
slice of retail listings into listing_details_norm.
"""
import logging
from typing import Dict

import requests

from carbitrage.config import (
    INGEST_API_URL, INGEST_API_TOKEN, INGEST_TIMEOUT_SECONDS,
    SEED_YEAR_MIN, SEED_PAGE_LIMIT,
)
from carbitrage.errors import TransientError

logger = logging.getLogger('services.ingest')


def ingest_unit(make: str, state: str, year_min: int = SEED_YEAR_MIN,
                limit: int = SEED_PAGE_LIMIT, run_mode: str = 'seed') -> Dict[str, int]:
    """
    Ingest one make/state slice.

    Returns {'new', 'updated', 'evaluations', 'errors'} counters. Any network
    failure, non-2xx status or error payload raises TransientError.
    """
    headers = {"Content-Type": "application/json"}
    if INGEST_API_TOKEN:
        headers["Authorization"] = f"Bearer {INGEST_API_TOKEN}"
    payload = {
        "search": make,
        "state": state,
        "year_min": year_min,
        "limit": limit,
        "run_mode": run_mode,
    }

    try:
        response = requests.post(INGEST_API_URL, json=payload, headers=headers, timeout=INGEST_TIMEOUT_SECONDS)
        response.raise_for_status()
        data = response.json()
    except (requests.exceptions.RequestException, ValueError) as e:
        logger.error("Ingest failed for %s/%s: %s", make, state, e)
        raise TransientError(f"Ingest {make}/{state}: {e}") from e

    if data.get('error'):
        logger.error("Ingest error for %s/%s: %s", make, state, data['error'])
        raise TransientError(f"Ingest {make}/{state}: {data['error']}")

    counters = {
        'new': int(data.get('new_listings') or 0),
        'updated': int(data.get('updated_listings') or 0),
        'evaluations': int(data.get('evaluations_triggered') or 0),
        'errors': int(data.get('errors') or 0),
    }
    logger.debug("%s/%s: %d new, %d updated", make, state, counters['new'], counters['updated'])
    return counters
