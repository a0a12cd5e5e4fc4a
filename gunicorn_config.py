# Server Socket
bind = "127.0.0.1:8000"  # Only accessible locally, NGINX will proxy requests

# Worker Settings
# One worker: the burst-scan debounce guard is per-process state
workers = 1
threads = 1
worker_class = "sync"

# Security & Performance
timeout = 60
graceful_timeout = 30
keepalive = 5

# Logging
accesslog = "-"
errorlog = "-"
loglevel = "info"

# Process Name
proc_name = "qr_checkin_gunicorn"
