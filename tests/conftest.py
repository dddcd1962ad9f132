"""Shared test fixtures."""
from datetime import timedelta

import pytest
from unittest.mock import patch
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from carbitrage.database import Base, utcnow
from carbitrage.pipeline.records import Candidate, Fingerprint, HuntSpec, ListingRecord


@pytest.fixture
def db_engine():
    """In-memory SQLite engine with schema created."""
    engine = create_engine(
        'sqlite://',
        connect_args={'check_same_thread': False},
        poolclass=StaticPool,
    )
    import carbitrage.models.listing
    import carbitrage.models.fingerprint
    import carbitrage.models.opportunity
    import carbitrage.models.hunt
    import carbitrage.models.pipeline_run
    import carbitrage.models.scan_cursor
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db_session(db_engine):
    """SQLAlchemy session bound to in-memory SQLite. Rolls back after each test."""
    Session = sessionmaker(bind=db_engine)
    session = Session()
    yield session
    session.rollback()
    session.close()


@pytest.fixture(autouse=True)
def patch_get_session(db_session):
    """Route all get_session() calls to the test session.

    We disable close() so that helpers calling session.close() in their
    finally blocks don't invalidate the shared test session.
    """
    _real_close = db_session.close
    db_session.close = lambda: None
    with patch('carbitrage.services.db.get_session', return_value=db_session), \
         patch('carbitrage.routes.jobs.get_session', return_value=db_session):
        yield db_session
    db_session.close = _real_close


@pytest.fixture(autouse=True)
def no_slack():
    """Never post to a real webhook from tests."""
    with patch('carbitrage.services.notifications.SLACK_WEBHOOK_URL', ''):
        yield


@pytest.fixture
def app():
    """Flask test app."""
    from carbitrage import create_app
    app = create_app()
    app.config['TESTING'] = True
    yield app


@pytest.fixture
def client(app):
    """Flask test client."""
    with app.test_client() as c:
        yield c


# ── Record factories ─────────────────────────────────────────────────────────

@pytest.fixture
def make_fingerprint():
    """Factory fixture — a TOYOTA|HILUX fingerprint with a 60k-110k km band."""
    def _make(**overrides):
        defaults = dict(
            account_id='acct-1',
            platform_class='TOYOTA|HILUX',
            make='Toyota',
            model='Hilux',
            sales_count=12,
            km_p25=60000,
            km_median=85000,
            km_p75=110000,
            price_median=40000.0,
            dominant_transmission='Automatic',
            dominant_transmission_count=9,
            dominant_fuel='Diesel',
            dominant_fuel_count=12,
            dominant_drivetrain='4WD',
            dominant_drivetrain_count=10,
        )
        defaults.update(overrides)
        return Fingerprint(**defaults)
    return _make


@pytest.fixture
def make_listing():
    """Factory fixture — a listing that matches make_fingerprint() on class only."""
    def _make(**overrides):
        defaults = dict(
            id='listing-1',
            account_id='acct-1',
            make='Toyota',
            model='Hilux',
            year=2019,
            km=85000,
            asking_price=38000.0,
            transmission='Manual',
            fuel='Petrol',
            drivetrain='2WD',
            url='https://www.autotrader.com.au/car/listing-1',
            source='autotrader',
        )
        defaults.update(overrides)
        return ListingRecord(**defaults)
    return _make


@pytest.fixture
def make_hunt():
    """Factory fixture — a 2021 LandCruiser 79 V8 dual cab hunt, $90k proven exit."""
    def _make(**overrides):
        defaults = dict(
            id='hunt-1',
            account_id='acct-1',
            make='Toyota',
            model='LandCruiser',
            year=2021,
            proven_exit_value=90000.0,
            series_family='LC70',
            engine_family='V8_DIESEL',
            cab_type='DUAL',
        )
        defaults.update(overrides)
        return HuntSpec(**defaults)
    return _make


@pytest.fixture
def make_candidate():
    """Factory fixture — a clean V8 LC79 listing priced $12k under the proven exit."""
    def _make(**overrides):
        defaults = dict(
            url='https://www.pickles.com.au/cars/item/lc79-1',
            domain='pickles.com.au',
            title='2021 Toyota LandCruiser LC79 GXL Dual Cab',
            snippet='VDJ79 V8 diesel, 45,000 km, $78,000',
            year=2021,
            make='Toyota',
            model='LandCruiser',
            km=45000,
            asking_price=78000.0,
        )
        defaults.update(overrides)
        return Candidate(**defaults)
    return _make


# ── Row helpers ──────────────────────────────────────────────────────────────

@pytest.fixture
def add_hunt_row(db_session):
    """Insert a SaleHunt row matching make_hunt() defaults."""
    from carbitrage.models.hunt import SaleHunt

    def _add(**overrides):
        defaults = dict(
            id='hunt-1',
            account_id='acct-1',
            make='Toyota',
            model='LandCruiser',
            year=2021,
            proven_exit_value=90000.0,
            series_family='LC70',
            engine_family='V8_DIESEL',
            cab_type='DUAL',
        )
        defaults.update(overrides)
        row = SaleHunt(**defaults)
        db_session.add(row)
        db_session.commit()
        return row
    return _add


@pytest.fixture
def expired():
    """A naive UTC timestamp safely in the past."""
    return utcnow() - timedelta(minutes=5)
