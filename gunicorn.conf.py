"""
Gunicorn configuration for production: uvicorn workers serving main:app.
"""
import multiprocessing
from pathlib import Path

from framework.config import settings

LOG_DIR = Path(settings.LOG_DIR)
LOG_DIR.mkdir(parents=True, exist_ok=True)

# Server
bind = "0.0.0.0:8000"
backlog = 2048

# Workers are stateless: tokens are self-contained and quota counters live in the database,
# so any number of workers (and hosts) can serve the same tenants
workers = min(multiprocessing.cpu_count() * 2 + 1, 8)
worker_class = "uvicorn.workers.UvicornWorker"
worker_connections = 1000
max_requests = 1000
max_requests_jitter = 50
timeout = 60
keepalive = 5
graceful_timeout = 30

proc_name = (settings.GUNICORN_PROC_NAME or settings.APP_NAME.lower().replace(" ", "-"))[:32]

# Logging
accesslog = str(LOG_DIR / "gunicorn_access.log")
errorlog = str(LOG_DIR / "gunicorn_error.log")
loglevel = "info"
# No request headers in the access log: bearer tokens must not be written to disk
access_log_format = '%(h)s %(t)s "%(r)s" %(s)s %(b)s %(D)s'

pidfile = str(LOG_DIR / "gunicorn.pid")
daemon = False
umask = 0o007
preload_app = True
worker_tmp_dir = "/dev/shm"

# Security
limit_request_line = 4094
limit_request_fields = 100
limit_request_field_size = 8190

def when_ready(server):
    server.log.info("%s is ready. Listening on %s", settings.APP_NAME, server.address)

def on_exit(server):
    server.log.info("%s is shutting down.", settings.APP_NAME)

def post_fork(server, worker):
    server.log.info("Worker spawned (pid: %s)", worker.pid)
