import logging
import time

from sqlalchemy import create_engine, event
from sqlalchemy.orm import declarative_base, sessionmaker

from compliance.config import settings
from compliance.route_logging import current_endpoint


def _connect_args(database_url: str) -> dict:
    if database_url.startswith('sqlite'):
        return {'check_same_thread': False}
    return {}


engine = create_engine(settings.database_url, connect_args=_connect_args(settings.database_url))
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()

_slow_logger = logging.getLogger('compliance.db.slow_query')


def install_slow_query_logging(target_engine, threshold_ms: int | None = None) -> None:
    threshold = settings.db_slow_query_ms if threshold_ms is None else threshold_ms

    @event.listens_for(target_engine, 'before_cursor_execute')
    def _before_cursor_execute(conn, cursor, statement, parameters, context, executemany):
        context._query_start_time = time.perf_counter()

    @event.listens_for(target_engine, 'after_cursor_execute')
    def _after_cursor_execute(conn, cursor, statement, parameters, context, executemany):
        start = getattr(context, '_query_start_time', None)
        if start is None:
            return
        duration_ms = (time.perf_counter() - start) * 1000.0
        if duration_ms >= threshold:
            sql_text = (statement or '').replace('\n', ' ').strip()
            _slow_logger.warning(
                'slow_query duration_ms=%.2f endpoint=%s sql=%s',
                duration_ms,
                current_endpoint.get(),
                sql_text,
            )


install_slow_query_logging(engine)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
