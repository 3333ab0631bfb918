import multiprocessing
import os

# gunicorn -c deploy/gunicorn.conf.py
wsgi_app = "compliance.main:app"
bind = os.getenv("COMPLIANCE_BIND", "127.0.0.1:8000")
workers = int(os.getenv("COMPLIANCE_WORKERS", (multiprocessing.cpu_count() * 2) + 1))
worker_class = "uvicorn.workers.UvicornWorker"

# keep above STORAGE_TIMEOUT_SECONDS
timeout = int(os.getenv("COMPLIANCE_WORKER_TIMEOUT", 90))
graceful_timeout = 30
keepalive = 5
loglevel = os.getenv("COMPLIANCE_LOG_LEVEL", "info")
accesslog = "-"
errorlog = "-"
