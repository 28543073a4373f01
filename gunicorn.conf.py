"""
Gunicorn configuration.
"""
import os

# Bind to the platform's PORT or default
bind = f"0.0.0.0:{os.getenv('PORT', '8080')}"

# Sync workers: one request (one rule save or lookup) per worker at a time
workers = int(os.getenv('GUNICORN_WORKERS', '2'))
worker_class = 'sync'
timeout = 120  # Saves can chain several Shopify calls
keepalive = 5

# Logging
accesslog = '-'  # stdout
errorlog = '-'   # stderr
loglevel = os.getenv('LOG_LEVEL', 'info')
capture_output = True

# Process naming
proc_name = 'pricing-rule-sync'

preload_app = True

# Graceful restart
graceful_timeout = 30


def on_starting(server):
    server.log.info("Starting pricing rule sync server...")


def on_exit(server):
    server.log.info("Pricing rule sync server shutting down...")
