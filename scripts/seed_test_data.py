#!/usr/bin/env python3
"""
Seed demo data for running the pipeline locally.

Creates one dealer account with:
  1. Sales fingerprints for two platform classes
  2. Fresh listings: strong matches, a borderline one and a class with no fingerprint
  3. An active LandCruiser 79 hunt with a proven exit value
  4. The retail seed cursor rewound to its origin

Usage:
    python scripts/seed_test_data.py          # seed everything
    python scripts/seed_test_data.py --clear  # wipe seeded data first

Requires: DATABASE_URL set (or defaults to sqlite:///local.db).
"""
import sys
import os
import argparse
from datetime import timedelta

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from carbitrage import create_app
from carbitrage.config import SEED_CURSOR_NAME
from carbitrage.database import get_session, engine, Base, utcnow
from carbitrage.models.fingerprint import SalesFingerprint
from carbitrage.models.hunt import HuntAlert, HuntCandidate, HuntScanRun, SaleHunt
from carbitrage.models.listing import NormalizedListing
from carbitrage.models.opportunity import MatchedOpportunity
from carbitrage.pipeline.cursor import DEFAULT_DIMENSIONS
from carbitrage.services.db import reset_cursor


ACCOUNT_ID = 'seed-dealer'

# Prefix for seeded IDs so we can clear them
SEED_PREFIX = 'seed-'

FINGERPRINTS = [
    {'make': 'TOYOTA', 'model': 'HILUX', 'sales_count': 14, 'km_p25': 60000, 'km_median': 85000,
     'km_p75': 110000, 'price_median': 42000, 'transmission': 'Automatic', 'fuel': 'Diesel', 'drivetrain': '4WD'},
    {'make': 'MAZDA', 'model': 'BT-50', 'sales_count': 6, 'km_p25': 40000, 'km_median': 70000,
     'km_p75': 95000, 'price_median': 36000, 'transmission': 'Automatic', 'fuel': 'Diesel', 'drivetrain': '4WD'},
]

LISTINGS = [
    # Inside km range, below median, all attributes match → 100
    {'make': 'Toyota', 'model': 'Hilux', 'variant': 'SR5', 'year': 2019, 'km': 78000, 'asking_price': 39500,
     'transmission': 'Automatic', 'fuel': 'Diesel', 'drivetrain': '4WD', 'source': 'autotrader'},
    # Near km range, near median → 40 + 10 + 5 + 10 = 65
    {'make': 'Toyota', 'model': 'Hilux', 'variant': 'SR', 'year': 2017, 'km': 125000, 'asking_price': 45000,
     'transmission': 'Manual', 'fuel': 'Diesel', 'drivetrain': '2WD', 'source': 'gumtree'},
    # Outside km range, above median → 40 + 10 = 50, not persisted
    {'make': 'Mazda', 'model': 'BT-50', 'variant': 'XTR', 'year': 2016, 'km': 180000, 'asking_price': 48000,
     'transmission': 'Manual', 'fuel': 'Diesel', 'drivetrain': '2WD', 'source': 'autotrader'},
    # No fingerprint for this class
    {'make': 'Ford', 'model': 'Ranger', 'variant': 'XLT', 'year': 2020, 'km': 50000, 'asking_price': 52000,
     'transmission': 'Automatic', 'fuel': 'Diesel', 'drivetrain': '4WD', 'source': 'autotrader'},
]


# ── Scenarios ────────────────────────────────────────────────────────────────

def seed_fingerprints(session):
    now = utcnow()
    for fp in FINGERPRINTS:
        session.add(SalesFingerprint(
            account_id=ACCOUNT_ID,
            platform_class=f"{fp['make']}|{fp['model']}",
            make=fp['make'],
            model=fp['model'],
            sales_count=fp['sales_count'],
            km_p25=fp['km_p25'],
            km_median=fp['km_median'],
            km_p75=fp['km_p75'],
            price_median=fp['price_median'],
            last_sold_at=now - timedelta(days=12),
            dominant_transmission=fp['transmission'],
            dominant_transmission_count=fp['sales_count'] - 2,
            dominant_fuel=fp['fuel'],
            dominant_fuel_count=fp['sales_count'],
            dominant_drivetrain=fp['drivetrain'],
            dominant_drivetrain_count=fp['sales_count'] - 1,
        ))
    print(f'  [1] Fingerprints:   {len(FINGERPRINTS)}')


def seed_listings(session):
    now = utcnow()
    for i, listing in enumerate(LISTINGS):
        listing_id = f'{SEED_PREFIX}listing-{i + 1}'
        session.add(NormalizedListing(
            id=listing_id,
            account_id=ACCOUNT_ID,
            url=f'https://www.{listing["source"]}.com.au/car/{listing_id}',
            extraction_confidence='high',
            last_seen=now - timedelta(hours=i),
            **listing,
        ))
    print(f'  [2] Listings:       {len(LISTINGS)}')


def seed_hunt(session):
    hunt_id = f'{SEED_PREFIX}hunt-lc79'
    session.add(SaleHunt(
        id=hunt_id,
        account_id=ACCOUNT_ID,
        make='Toyota',
        model='LandCruiser',
        year=2021,
        km=45000,
        proven_exit_value=92000,
        series_family='LC70',
        engine_family='V8_DIESEL',
        cab_type='DUAL',
        body_type='CAB_CHASSIS',
        badge='GXL',
        must_have_tokens=['79'],
        must_have_mode='soft',
    ))
    print(f'  [3] Hunt:           {hunt_id}')
    return hunt_id


# ── Clear / Main ─────────────────────────────────────────────────────────────

def clear_seeded_data(session):
    """Remove all rows for the seeded account."""
    hunt_ids = [h.id for h in session.query(SaleHunt.id).filter(SaleHunt.id.like(f'{SEED_PREFIX}%')).all()]
    if hunt_ids:
        session.query(HuntAlert).filter(HuntAlert.hunt_id.in_(hunt_ids)).delete(synchronize_session=False)
        session.query(HuntCandidate).filter(HuntCandidate.hunt_id.in_(hunt_ids)).delete(synchronize_session=False)
        session.query(HuntScanRun).filter(HuntScanRun.hunt_id.in_(hunt_ids)).delete(synchronize_session=False)
        session.query(SaleHunt).filter(SaleHunt.id.in_(hunt_ids)).delete(synchronize_session=False)

    deleted_opps = session.query(MatchedOpportunity).filter_by(account_id=ACCOUNT_ID).delete(synchronize_session=False)
    deleted_listings = session.query(NormalizedListing).filter_by(account_id=ACCOUNT_ID).delete(synchronize_session=False)
    deleted_fps = session.query(SalesFingerprint).filter_by(account_id=ACCOUNT_ID).delete(synchronize_session=False)
    session.commit()

    print(f'Cleared {deleted_fps} fingerprints, {deleted_listings} listings, '
          f'{deleted_opps} opportunities, {len(hunt_ids)} hunts.')


def main():
    parser = argparse.ArgumentParser(description='Seed demo data for local pipeline runs')
    parser.add_argument('--clear', action='store_true', help='Clear seeded data before (or instead of) seeding')
    parser.add_argument('--clear-only', action='store_true', help='Only clear, do not re-seed')
    args = parser.parse_args()

    app = create_app()
    with app.app_context():
        # Ensure tables exist (for SQLite local dev)
        Base.metadata.create_all(engine)

        session = get_session()
        try:
            if args.clear or args.clear_only:
                clear_seeded_data(session)
                if args.clear_only:
                    return

            print('Seeding demo data...')
            seed_fingerprints(session)
            seed_listings(session)
            seed_hunt(session)
            session.commit()
        except Exception as e:
            session.rollback()
            print(f'Error: {e}')
            raise
        finally:
            session.close()

        reset_cursor(SEED_CURSOR_NAME, len(DEFAULT_DIMENSIONS))
        print(f'  [4] Cursor reset:   {SEED_CURSOR_NAME}')
        print('\nDone! POST /api/pipeline/runs to run the pipeline.')


if __name__ == '__main__':
    main()
