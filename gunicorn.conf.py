"""Gunicorn production configuration."""

wsgi_app = "hr_console.main:app"
bind = "0.0.0.0:8000"
# Import sessions live in process memory; a second worker would not see them.
workers = 1
worker_class = "uvicorn.workers.UvicornWorker"
worker_connections = 1000
timeout = 180
keepalive = 5
accesslog = "-"
errorlog = "-"
loglevel = "info"
