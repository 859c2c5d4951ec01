# Gunicorn configuration for the Fleet Compliance API
# Usage: gunicorn -c gunicorn_config.py fleet_compliance.http_server:app
import os

# Server socket
bind = os.environ.get("COMPLIANCE_HOST", "127.0.0.1") + ":" + os.environ.get("COMPLIANCE_PORT", "8300")
backlog = 2048

# Worker processes, ASGI via uvicorn worker
workers = int(os.environ.get("COMPLIANCE_WORKERS", "2"))
worker_class = "uvicorn.workers.UvicornWorker"
# The cron sweep emails every due alert inside one request
timeout = 120
graceful_timeout = 30
keepalive = 2

# Logging ("-" = stdout/stderr, picked up by journald)
accesslog = os.environ.get("COMPLIANCE_ACCESS_LOG", "-")
errorlog = os.environ.get("COMPLIANCE_ERROR_LOG", "-")
loglevel = os.environ.get("COMPLIANCE_LOG_LEVEL", "info")
access_log_format = '%({x-forwarded-for}i)s %(l)s %(u)s %(t)s "%(r)s" %(s)s %(b)s "%(f)s" "%(a)s"'

# Process naming
proc_name = "fleet-compliance"

# Server mechanics
daemon = False
pidfile = None
