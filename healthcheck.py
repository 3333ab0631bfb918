import secrets
import sys

from sqlalchemy import inspect, text

from compliance.cache import cache, cache_key
from compliance.config import settings
from compliance.db import Base, engine
from compliance.services.auth_service import issue_session_token, validate_session_token
from compliance.services.file_storage_service import get_storage_backend
import compliance.models  # noqa: F401


GREEN = '\033[32m'
RED = '\033[31m'
RESET = '\033[0m'


def run_check(name, fn):
    try:
        message = fn() or ''
        suffix = f' - {message}' if message else ''
        print(f'{GREEN}PASS{RESET} {name}{suffix}')
        return True
    except Exception as exc:
        print(f'{RED}FAIL{RESET} {name} - {exc}')
        return False


def check_db_connectivity_and_write():
    with engine.begin() as conn:
        conn.execute(text('SELECT 1'))
        conn.execute(text('CREATE TABLE IF NOT EXISTS _healthcheck_probe (id INTEGER PRIMARY KEY, note TEXT)'))
        conn.execute(text("INSERT INTO _healthcheck_probe (note) VALUES ('probe')"))
        conn.execute(text("DELETE FROM _healthcheck_probe WHERE note='probe'"))
        conn.execute(text('DROP TABLE IF EXISTS _healthcheck_probe'))
    return 'connect + write ok'


def check_compliance_tables():
    existing = set(inspect(engine).get_table_names())
    expected = set(Base.metadata.tables.keys())
    missing = sorted(expected - existing)
    if missing:
        raise RuntimeError(f'Missing tables {missing} (run bootstrap.py)')
    return f'{len(expected)} tables'


def check_required_env():
    required = {'DATABASE_URL': settings.database_url, 'AUTH_SECRET': settings.auth_secret}
    if settings.storage_backend == 'supabase':
        required['SUPABASE_URL'] = settings.supabase_url
        required['SUPABASE_SERVICE_KEY'] = settings.supabase_service_key
    missing = [name for name, value in required.items() if not str(value or '').strip()]
    if missing:
        raise RuntimeError(f'Missing values: {", ".join(missing)}')
    if settings.app_env != 'local' and settings.auth_secret == 'change-me':
        raise RuntimeError('AUTH_SECRET still has the default value')
    return f'storage={settings.storage_backend}'


def check_storage_round_trip():
    backend = get_storage_backend()
    path = f'_healthcheck/{secrets.token_hex(8)}.txt'
    stored = backend.upload(path, b'probe', 'text/plain')
    backend.delete(stored.path)
    return 'upload + delete ok'


def check_session_tokens():
    token = issue_session_token('healthcheck', 'admin', ttl_seconds=60)
    user = validate_session_token(token)
    if not user or user['user_id'] != 'healthcheck':
        raise RuntimeError('Session token did not validate')
    if validate_session_token(token + 'x') is not None:
        raise RuntimeError('Tampered session token unexpectedly validated')
    return 'issue/validate/tamper checks ok'


def check_cache():
    key = cache_key('healthcheck', secrets.token_hex(4))
    cache.set_cached(key, {'ok': True}, ttl=5)
    if cache.get_cached(key) != {'ok': True}:
        raise RuntimeError('Cache read did not return the stored value')
    cache.invalidate_prefix(key)
    return f'backend={settings.cache_backend}'


def main():
    checks = [
        ('Database connectivity and write access', check_db_connectivity_and_write),
        ('Compliance tables present', check_compliance_tables),
        ('Required environment variables present', check_required_env),
        ('File storage upload and delete', check_storage_round_trip),
        ('Session token issue and validation', check_session_tokens),
        ('Cache set and get', check_cache),
    ]

    all_ok = True
    for name, fn in checks:
        all_ok = run_check(name, fn) and all_ok

    if not all_ok:
        sys.exit(1)
    sys.exit(0)


if __name__ == '__main__':
    main()
