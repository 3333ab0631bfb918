from contextlib import asynccontextmanager
import logging
import time

from fastapi import FastAPI, Request

from compliance.config import settings
from compliance.db import Base, engine
from compliance.metrics import flush_metrics
from compliance.route_logging import EndpointNameRoute
from compliance.routers import forms, items, notifications, submissions

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s %(levelname)s %(name)s %(message)s',
)


@asynccontextmanager
async def lifespan(_: FastAPI):
    Base.metadata.create_all(bind=engine)
    yield
    flush_metrics()


app = FastAPI(title=settings.app_name, version='0.1.0', lifespan=lifespan)
app.router.route_class = EndpointNameRoute


@app.middleware('http')
async def slow_request_logger(request: Request, call_next):
    started = time.perf_counter()
    response = await call_next(request)
    duration_ms = (time.perf_counter() - started) * 1000.0
    if duration_ms >= settings.metrics_slow_ms:
        logging.getLogger('compliance.request').info(
            'request_slow path=%s method=%s status_code=%s duration_ms=%.2f',
            request.url.path,
            request.method,
            response.status_code,
            duration_ms,
        )
    return response

app.include_router(items.router)
app.include_router(forms.router)
app.include_router(submissions.router)
app.include_router(notifications.router)


@app.get('/')
def health():
    return {'app': settings.app_name, 'status': 'ok'}


@app.get('/health')
def healthcheck():
    return {'status': 'ok'}
