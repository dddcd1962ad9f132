"""
Typed records for every entity the pipeline touches.

Rows coming out of the database (ORM objects or plain dicts from the ingest
service) are converted with `from_row()` at the boundary, which validates the
identifiers each record cannot live without. Everything downstream of this
module works with these records, never with raw rows.
"""
from dataclasses import dataclass, field, asdict
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from carbitrage.errors import InputMissing


class RunStatus(str, Enum):
    RUNNING = 'RUNNING'
    SUCCESS = 'SUCCESS'
    PARTIAL_FAIL = 'PARTIAL_FAIL'
    FAIL = 'FAIL'


class StepStatus(str, Enum):
    PENDING = 'PENDING'
    RUNNING = 'RUNNING'
    SUCCESS = 'SUCCESS'
    FAIL = 'FAIL'
    SKIPPED = 'SKIPPED'


class CursorStatus(str, Enum):
    PENDING = 'pending'
    RUNNING = 'running'
    DONE = 'done'


class Decision(str, Enum):
    BUY = 'BUY'
    WATCH = 'WATCH'
    IGNORE = 'IGNORE'


class KmBand(str, Enum):
    INSIDE = 'inside'
    NEAR = 'near'
    OUTSIDE = 'outside'
    UNKNOWN = 'unknown'


class PriceBand(str, Enum):
    BELOW = 'below'
    NEAR = 'near'
    ABOVE = 'above'
    UNKNOWN = 'unknown'


# ── Row access helpers ───────────────────────────────────────────────────────

def _get(row, name, default=None):
    """Read a field from an ORM object or a dict."""
    if isinstance(row, dict):
        value = row.get(name, default)
    else:
        value = getattr(row, name, default)
    return default if value is None else value


def _require(row, name, entity):
    value = _get(row, name)
    if value is None or (isinstance(value, str) and not value.strip()):
        raise InputMissing(name, entity)
    return value


def _int_or_none(value):
    if value is None or value == '':
        return None
    return int(value)


def _float_or_none(value):
    if value is None or value == '':
        return None
    return float(value)


def _clean(value) -> Optional[str]:
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def make_platform_class(make, model) -> Optional[str]:
    """Normalize make + model into the "MAKE|MODEL" join key."""
    make = _clean(make)
    model = _clean(model)
    if not make or not model:
        return None
    return f"{make.upper()}|{model.upper()}"


def _iso(value):
    return value.isoformat() if isinstance(value, datetime) else value


# ── Listings + fingerprints ──────────────────────────────────────────────────

@dataclass
class ListingRecord:
    id: str
    account_id: str
    make: Optional[str] = None
    model: Optional[str] = None
    year: Optional[int] = None
    km: Optional[int] = None
    asking_price: Optional[float] = None
    transmission: Optional[str] = None
    fuel: Optional[str] = None
    drivetrain: Optional[str] = None
    url: Optional[str] = None
    source: Optional[str] = None
    last_seen: Optional[datetime] = None
    extraction_confidence: Optional[str] = None

    @property
    def platform_class(self) -> Optional[str]:
        return make_platform_class(self.make, self.model)

    @classmethod
    def from_row(cls, row) -> 'ListingRecord':
        return cls(
            id=str(_require(row, 'id', 'listing')),
            account_id=str(_require(row, 'account_id', 'listing')),
            make=_clean(_get(row, 'make')),
            model=_clean(_get(row, 'model')),
            year=_int_or_none(_get(row, 'year')),
            km=_int_or_none(_get(row, 'km')),
            asking_price=_float_or_none(_get(row, 'asking_price')),
            transmission=_clean(_get(row, 'transmission')),
            fuel=_clean(_get(row, 'fuel')),
            drivetrain=_clean(_get(row, 'drivetrain')),
            url=_get(row, 'url'),
            source=_get(row, 'source'),
            last_seen=_get(row, 'last_seen'),
            extraction_confidence=_get(row, 'extraction_confidence'),
        )


@dataclass
class Fingerprint:
    account_id: str
    platform_class: str
    make: str
    model: str
    sales_count: int = 0
    km_p25: Optional[int] = None
    km_median: Optional[int] = None
    km_p75: Optional[int] = None
    price_median: Optional[float] = None
    last_sold_at: Optional[datetime] = None
    dominant_transmission: Optional[str] = None
    dominant_transmission_count: int = 0
    dominant_fuel: Optional[str] = None
    dominant_fuel_count: int = 0
    dominant_drivetrain: Optional[str] = None
    dominant_drivetrain_count: int = 0

    @classmethod
    def from_row(cls, row) -> 'Fingerprint':
        make = str(_require(row, 'make', 'fingerprint'))
        model = str(_require(row, 'model', 'fingerprint'))
        platform_class = _get(row, 'platform_class') or make_platform_class(make, model)
        return cls(
            account_id=str(_require(row, 'account_id', 'fingerprint')),
            platform_class=platform_class.strip().upper(),
            make=make,
            model=model,
            sales_count=int(_get(row, 'sales_count', 0)),
            km_p25=_int_or_none(_get(row, 'km_p25')),
            km_median=_int_or_none(_get(row, 'km_median')),
            km_p75=_int_or_none(_get(row, 'km_p75')),
            price_median=_float_or_none(_get(row, 'price_median')),
            last_sold_at=_get(row, 'last_sold_at'),
            dominant_transmission=_clean(_get(row, 'dominant_transmission')),
            dominant_transmission_count=int(_get(row, 'dominant_transmission_count', 0)),
            dominant_fuel=_clean(_get(row, 'dominant_fuel')),
            dominant_fuel_count=int(_get(row, 'dominant_fuel_count', 0)),
            dominant_drivetrain=_clean(_get(row, 'dominant_drivetrain')),
            dominant_drivetrain_count=int(_get(row, 'dominant_drivetrain_count', 0)),
        )


@dataclass
class Opportunity:
    """A scored listing ready for the opportunity sink."""
    account_id: str
    listing_id: str
    platform_class: str
    match_score: int
    km_band: str
    price_band: str
    reasons: Dict[str, str] = field(default_factory=dict)
    url: Optional[str] = None
    make: Optional[str] = None
    model: Optional[str] = None
    year: Optional[int] = None
    km: Optional[int] = None
    asking_price: Optional[float] = None
    source: Optional[str] = None
    sales_count: int = 0
    status: str = 'open'

    def to_row(self) -> Dict[str, Any]:
        return asdict(self)


# ── Hunts + candidates ───────────────────────────────────────────────────────

@dataclass
class HuntSpec:
    id: str
    make: str
    model: str
    year: int
    account_id: Optional[str] = None
    km: Optional[int] = None
    proven_exit_value: Optional[float] = None
    series_family: Optional[str] = None
    engine_family: Optional[str] = None
    cab_type: Optional[str] = None
    body_type: Optional[str] = None
    badge: Optional[str] = None
    must_have_tokens: List[str] = field(default_factory=list)
    must_have_mode: str = 'soft'
    min_gap_abs_buy: float = 2000.0
    min_gap_pct_buy: float = 8.0
    min_gap_abs_watch: float = 500.0
    min_gap_pct_watch: float = 3.0
    status: str = 'active'

    def target(self, attribute: str) -> Optional[str]:
        """Target value for a classification attribute, or None if unconstrained."""
        return getattr(self, attribute, None)

    @classmethod
    def from_row(cls, row) -> 'HuntSpec':
        tokens = _get(row, 'must_have_tokens', []) or []
        return cls(
            id=str(_require(row, 'id', 'hunt')),
            make=str(_require(row, 'make', 'hunt')),
            model=str(_require(row, 'model', 'hunt')),
            year=int(_require(row, 'year', 'hunt')),
            account_id=_get(row, 'account_id'),
            km=_int_or_none(_get(row, 'km')),
            proven_exit_value=_float_or_none(_get(row, 'proven_exit_value')),
            series_family=_clean(_get(row, 'series_family')),
            engine_family=_clean(_get(row, 'engine_family')),
            cab_type=_clean(_get(row, 'cab_type')),
            body_type=_clean(_get(row, 'body_type')),
            badge=_clean(_get(row, 'badge')),
            must_have_tokens=[t for t in (_clean(t) for t in tokens) if t],
            must_have_mode=(_get(row, 'must_have_mode', 'soft') or 'soft').lower(),
            min_gap_abs_buy=float(_get(row, 'min_gap_abs_buy', 2000)),
            min_gap_pct_buy=float(_get(row, 'min_gap_pct_buy', 8)),
            min_gap_abs_watch=float(_get(row, 'min_gap_abs_watch', 500)),
            min_gap_pct_watch=float(_get(row, 'min_gap_pct_watch', 3)),
            status=_get(row, 'status', 'active'),
        )


@dataclass
class Candidate:
    """One search result after field extraction."""
    url: str
    domain: str
    title: str = ''
    snippet: str = ''
    source: str = 'outward_web'
    year: Optional[int] = None
    make: Optional[str] = None
    model: Optional[str] = None
    km: Optional[int] = None
    asking_price: Optional[float] = None
    confidence: Optional[str] = None          # high/medium/low
    requires_manual_check: bool = False

    @property
    def text(self) -> str:
        return f"{self.title} {self.snippet}"

    def extracted(self) -> Dict[str, Any]:
        return {
            'year': self.year,
            'make': self.make,
            'model': self.model,
            'km': self.km,
            'asking_price': self.asking_price,
            'confidence': self.confidence,
        }

    @classmethod
    def from_row(cls, row) -> 'Candidate':
        return cls(
            url=str(_require(row, 'url', 'candidate')),
            domain=_get(row, 'domain', 'unknown'),
            title=_get(row, 'title', ''),
            snippet=_get(row, 'snippet', ''),
            source=_get(row, 'source', 'outward_web'),
            year=_int_or_none(_get(row, 'year')),
            make=_clean(_get(row, 'make')),
            model=_clean(_get(row, 'model')),
            km=_int_or_none(_get(row, 'km')),
            asking_price=_float_or_none(_get(row, 'asking_price')),
            confidence=_get(row, 'confidence'),
            requires_manual_check=bool(_get(row, 'requires_manual_check', False)),
        )


# ── Orchestration ────────────────────────────────────────────────────────────

@dataclass
class StepRecord:
    run_id: str
    name: str
    order: int
    status: StepStatus = StepStatus.PENDING
    records_processed: int = 0
    records_created: int = 0
    records_updated: int = 0
    records_failed: int = 0
    error_sample: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @classmethod
    def from_row(cls, row) -> 'StepRecord':
        return cls(
            run_id=str(_require(row, 'run_id', 'step')),
            name=str(_require(row, 'step_name', 'step')),
            order=int(_get(row, 'step_order', 0)),
            status=StepStatus(_get(row, 'status', 'PENDING')),
            records_processed=_get(row, 'records_processed', 0),
            records_created=_get(row, 'records_created', 0),
            records_updated=_get(row, 'records_updated', 0),
            records_failed=_get(row, 'records_failed', 0),
            error_sample=_get(row, 'error_sample'),
            metadata=_get(row, 'step_metadata', {}),
            started_at=_get(row, 'started_at'),
            completed_at=_get(row, 'completed_at'),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'run_id': self.run_id,
            'name': self.name,
            'order': self.order,
            'status': self.status.value,
            'records_processed': self.records_processed,
            'records_created': self.records_created,
            'records_updated': self.records_updated,
            'records_failed': self.records_failed,
            'error_sample': self.error_sample,
            'metadata': self.metadata,
            'started_at': _iso(self.started_at),
            'completed_at': _iso(self.completed_at),
        }


@dataclass
class RunRecord:
    id: str
    status: RunStatus
    triggered_by: str = 'manual'
    previous_run_id: Optional[str] = None
    total_steps: int = 0
    completed_steps: int = 0
    failed_steps: int = 0
    skipped_steps: int = 0
    error_summary: Optional[str] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    steps: List[StepRecord] = field(default_factory=list)

    @classmethod
    def from_row(cls, row, steps=None) -> 'RunRecord':
        return cls(
            id=str(_require(row, 'id', 'run')),
            status=RunStatus(_get(row, 'status', 'RUNNING')),
            triggered_by=_get(row, 'triggered_by', 'manual'),
            previous_run_id=_get(row, 'previous_run_id'),
            total_steps=_get(row, 'total_steps', 0),
            completed_steps=_get(row, 'completed_steps', 0),
            failed_steps=_get(row, 'failed_steps', 0),
            skipped_steps=_get(row, 'skipped_steps', 0),
            error_summary=_get(row, 'error_summary'),
            started_at=_get(row, 'started_at'),
            completed_at=_get(row, 'completed_at'),
            steps=[StepRecord.from_row(s) for s in (steps or [])],
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'status': self.status.value,
            'triggered_by': self.triggered_by,
            'previous_run_id': self.previous_run_id,
            'total_steps': self.total_steps,
            'completed_steps': self.completed_steps,
            'failed_steps': self.failed_steps,
            'skipped_steps': self.skipped_steps,
            'error_summary': self.error_summary,
            'started_at': _iso(self.started_at),
            'completed_at': _iso(self.completed_at),
            'steps': [s.to_dict() for s in self.steps],
        }


# ── Resumable cursor ─────────────────────────────────────────────────────────

EMPTY_TOTALS = {'new': 0, 'updated': 0, 'evaluations': 0, 'errors': 0}


@dataclass
class CursorState:
    name: str
    indices: List[int]
    batches_completed: int = 0
    totals: Dict[str, int] = field(default_factory=lambda: dict(EMPTY_TOTALS))
    status: CursorStatus = CursorStatus.PENDING
    lock_token: Optional[str] = None
    locked_until: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    last_error: Optional[str] = None
    last_done_log_at: Optional[datetime] = None

    def is_locked(self, now: datetime) -> bool:
        return self.locked_until is not None and self.locked_until > now

    @classmethod
    def from_row(cls, row, dimensions: int = 2) -> 'CursorState':
        indices = list(_get(row, 'indices', []) or [])
        # Pad/truncate so a cursor created for fewer dimensions still lines up
        indices = (indices + [0] * dimensions)[:dimensions]
        totals = dict(EMPTY_TOTALS)
        totals.update(_get(row, 'totals', {}) or {})
        return cls(
            name=str(_require(row, 'name', 'cursor')),
            indices=[int(i) for i in indices],
            batches_completed=int(_get(row, 'batches_completed', 0)),
            totals=totals,
            status=CursorStatus(_get(row, 'status', 'pending')),
            lock_token=_get(row, 'lock_token'),
            locked_until=_get(row, 'locked_until'),
            started_at=_get(row, 'started_at'),
            completed_at=_get(row, 'completed_at'),
            last_error=_get(row, 'last_error'),
            last_done_log_at=_get(row, 'last_done_log_at'),
        )
