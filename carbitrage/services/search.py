"""
Web search client — finds listings that could replicate a hunt's proven sale.

search_candidates() runs one query against the search API and turns each
result into a Candidate with whatever year / price / km the title and
snippet reveal. Results that are obviously not listings, or are for the
wrong vehicle, are dropped here.
"""
import logging
import re
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse

import requests

from carbitrage.config import SEARCH_API_URL, SEARCH_API_KEY
from carbitrage.errors import TransientError
from carbitrage.pipeline.records import Candidate, HuntSpec

logger = logging.getLogger('services.search')

# Path fragments that mark search/landing pages rather than a single listing
_NON_LISTING_PATHS = ('/search', '/login', '/category', '/about', '/contact', '/help')

# Sites that block direct access; kept but flagged for a manual check
BLOCKED_DOMAINS = ('carsales.com.au', 'carsales.com')

_YEAR_RE = re.compile(r'\b(20[0-2][0-9])\b')
_PRICE_RE = re.compile(r'\$\s*([\d,]+)')
_KM_RE = re.compile(r'([\d,]{3,})\s*km\b', re.IGNORECASE)

MIN_PRICE = 5000
MAX_PRICE = 500000
MAX_YEAR_DISTANCE = 3


def extract_domain(url: str) -> str:
    try:
        host = urlparse(url).hostname or ''
    except ValueError:
        return 'unknown'
    if host.startswith('www.'):
        host = host[4:]
    return host or 'unknown'


def _to_int(raw: str) -> Optional[int]:
    digits = raw.replace(',', '')
    return int(digits) if digits.isdigit() else None


def extract_candidate(result: Dict[str, Any], hunt: HuntSpec) -> Optional[Candidate]:
    """Build a Candidate from one search result, or None if it is not a plausible match."""
    url = result.get('url') or ''
    if not url or any(part in url for part in _NON_LISTING_PATHS):
        return None

    title = result.get('title') or ''
    snippet = result.get('description') or (result.get('markdown') or '')[:500]
    text = f"{title} {snippet}"
    lower = text.lower()

    year_match = _YEAR_RE.search(text)
    year = int(year_match.group(1)) if year_match else None
    if year is not None and abs(year - hunt.year) > MAX_YEAR_DISTANCE:
        return None

    make_hit = hunt.make.lower() in lower
    model_hit = hunt.model.lower() in lower
    if not make_hit and not model_hit:
        return None

    # LandCruiser and Prado share a name but are different vehicles
    hunt_model = hunt.model.lower()
    if hunt_model == 'landcruiser' and 'prado' in lower:
        return None
    if 'prado' in hunt_model and 'prado' not in lower:
        return None

    price_match = _PRICE_RE.search(text)
    asking_price = _to_int(price_match.group(1)) if price_match else None
    if asking_price is not None and not (MIN_PRICE <= asking_price <= MAX_PRICE):
        asking_price = None

    km_match = _KM_RE.search(text)
    km = _to_int(km_match.group(1)) if km_match else None

    domain = extract_domain(url)
    return Candidate(
        url=url,
        domain=domain,
        title=title[:200],
        snippet=snippet[:500],
        year=year,
        make=hunt.make if make_hit else None,
        model=hunt.model if model_hit else None,
        km=km,
        asking_price=float(asking_price) if asking_price is not None else None,
        requires_manual_check=any(d in domain for d in BLOCKED_DOMAINS),
    )


def search_candidates(query: str, hunt: HuntSpec, limit: int = 10) -> List[Candidate]:
    """Run one search query. Raises TransientError on any API failure."""
    if not SEARCH_API_KEY:
        raise TransientError("SEARCH_API_KEY not configured")

    headers = {
        "Authorization": f"Bearer {SEARCH_API_KEY}",
        "Content-Type": "application/json",
    }
    payload = {
        "query": query,
        "limit": limit,
        "lang": "en",
        "country": "AU",
    }

    try:
        response = requests.post(SEARCH_API_URL, json=payload, headers=headers, timeout=30)
        response.raise_for_status()
        data = response.json()
    except (requests.exceptions.RequestException, ValueError) as e:
        logger.error("Search failed for %r: %s", query, e)
        raise TransientError(f"Search error: {str(e)[:100]}") from e

    results = data.get('data') or []
    candidates = [c for c in (extract_candidate(r, hunt) for r in results) if c is not None]
    logger.info("Query %r returned %d results, %d candidates", query[:50], len(results), len(candidates))
    return candidates
