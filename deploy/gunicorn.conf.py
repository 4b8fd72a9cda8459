"""Gunicorn configuration for the Formula Engine web viewer."""

import os

# Worker class: uvicorn ASGI worker
worker_class = "uvicorn.workers.UvicornWorker"

# Number of worker processes
workers = int(os.environ.get("FORMULA_WORKERS", "2"))

# Bind address (localhost only)
bind = f"127.0.0.1:{os.environ.get('FORMULA_PORT', '8000')}"

# Tap is read per request
preload_app = False

timeout = 60

# Logging
accesslog = "-"  # stdout
loglevel = os.environ.get("FORMULA_LOG_LEVEL", "info")
