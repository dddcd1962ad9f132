"""
Centralized configuration — env vars, thresholds, scan dimensions.
"""
import os


# ── Logging ──────────────────────────────────────────────────────────────────
LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO')
LOG_FORMAT = os.getenv('LOG_FORMAT', 'text')

# ── Redis ─────────────────────────────────────────────────────────────────────
REDIS_URL = os.getenv('REDIS_URL', 'redis://localhost:6379/0')

# ── PostgreSQL ────────────────────────────────────────────────────────────────
DATABASE_URL = os.getenv('DATABASE_URL', 'sqlite:///local.db')

# ── Listing ingest service ───────────────────────────────────────────────────
INGEST_API_URL = os.getenv('INGEST_API_URL', 'http://localhost:8081/ingest')
INGEST_API_TOKEN = os.getenv('INGEST_API_TOKEN')
INGEST_TIMEOUT_SECONDS = int(os.getenv('INGEST_TIMEOUT_SECONDS', 20))

# ── Web search (hunt candidates) ─────────────────────────────────────────────
SEARCH_API_URL = os.getenv('SEARCH_API_URL', 'https://api.firecrawl.dev/v1/search')
SEARCH_API_KEY = os.getenv('SEARCH_API_KEY')

# ── Slack notifications ──────────────────────────────────────────────────────
SLACK_WEBHOOK_URL = os.getenv('SLACK_WEBHOOK_URL')

# ── Pipeline orchestration ───────────────────────────────────────────────────
PIPELINE_LOCK_NAME = 'daily_pipeline'
PIPELINE_JOB_TIMEOUT = 14400
# Renewed before every step; never shorter than the RQ job timeout
PIPELINE_LOCK_SECONDS = max(int(os.getenv('PIPELINE_LOCK_SECONDS', PIPELINE_JOB_TIMEOUT)), PIPELINE_JOB_TIMEOUT)
ERROR_SAMPLE_LENGTH = 1000

# ── Fingerprint matching ─────────────────────────────────────────────────────
MATCH_BATCH_SIZE = 200
UPSERT_CHUNK_SIZE = 50

# ── Hunt scan ─────────────────────────────────────────────────────────────────
HUNT_MAX_QUERIES = 4
HUNT_MAX_RESULTS = 10

TRUSTED_SOURCES = [
    'pickles.com.au',
    'manheim.com.au',
    'grays.com',
    'lloydsauctions.com.au',
]

# ── Retail seed scan (resumable cursor) ──────────────────────────────────────
SEED_CURSOR_NAME = 'autotrader_seed'
SEED_TIME_BUDGET_SECONDS = float(os.getenv('SEED_TIME_BUDGET_SECONDS', 28))
SEED_LOCK_SECONDS = int(os.getenv('SEED_LOCK_SECONDS', 120))
SEED_YEAR_MIN = 2016
SEED_PAGE_LIMIT = 100
SEED_DONE_LOG_HOURS = 24

SEED_MAKES = [
    'Toyota', 'Mazda', 'Honda', 'Hyundai', 'Kia',
    'Mitsubishi', 'Nissan', 'Subaru', 'Ford', 'Holden',
]

SEED_STATES = ['nsw', 'vic', 'qld', 'sa', 'wa']
