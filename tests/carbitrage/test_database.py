"""Tests for carbitrage.database URL handling."""
from carbitrage.database import engine_options, normalize_url, utcnow


def test_postgres_scheme_rewritten():
    assert normalize_url('postgres://u:p@host/db') == 'postgresql://u:p@host/db'


def test_postgresql_scheme_untouched():
    assert normalize_url('postgresql://u:p@host/db') == 'postgresql://u:p@host/db'


def test_sqlite_options():
    opts = engine_options('sqlite:///local.db')
    assert opts['connect_args']['check_same_thread'] is False
    assert 'pool_size' not in opts


def test_postgres_options_use_pool():
    opts = engine_options('postgresql://host/db')
    assert opts['pool_pre_ping'] is True
    assert 'connect_args' not in opts


def test_utcnow_is_naive():
    assert utcnow().tzinfo is None
