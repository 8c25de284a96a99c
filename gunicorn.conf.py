"""
Gunicorn configuration for the points wallet.
"""
import os

bind = f"0.0.0.0:{os.getenv('PORT', '8080')}"

# Threads of one worker share the in-process wallet locks; workers are
# kept apart by the database row lock.
workers = int(os.getenv('GUNICORN_WORKERS', '2'))
worker_class = 'gthread'
threads = int(os.getenv('GUNICORN_THREADS', '4'))
timeout = 60
keepalive = 5

# Logging
accesslog = '-'  # stdout
errorlog = '-'   # stderr
loglevel = os.getenv('LOG_LEVEL', 'info')
capture_output = True

proc_name = 'pointwallet'

# Preload so the scheduler starts once, in the master
preload_app = True

graceful_timeout = 30


def on_starting(server):
    print("[Gunicorn] Starting points wallet server...")


def on_exit(server):
    print("[Gunicorn] Points wallet server shutting down...")
