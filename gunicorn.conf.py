"""Gunicorn production configuration for the approval engine API."""
import multiprocessing
import os

chdir = os.path.join(os.path.dirname(os.path.abspath(__file__)), "backend")
wsgi_app = "approval_engine.main:app"

bind = os.environ.get("BIND", "0.0.0.0:8000")
workers = int(os.environ.get("WEB_CONCURRENCY", multiprocessing.cpu_count() * 2 + 1))
worker_class = "uvicorn.workers.UvicornWorker"
timeout = 60
keepalive = 5
max_requests = 1000
max_requests_jitter = 100
# Each worker imports the app itself and so gets its own connection pool.
preload_app = False
accesslog = "-"
errorlog = "-"
loglevel = "info"
