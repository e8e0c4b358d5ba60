"""
WSGI Entry Point for crawlscope

Serves the health endpoints under a WSGI server and is the FLASK_APP for the
CLI (``flask --app wsgi ingest-logs``). Environment variables must be set
before this module is imported.
"""

import os

from dotenv import load_dotenv

# Load .env only outside production; the ingestion host gets its environment
# from the systemd unit.
if os.environ.get('FLASK_ENV', '').lower() != 'production' and os.environ.get('FLASK_CONFIG', '').lower() != 'production':
    load_dotenv(override=False)

from crawlscope import create_app  # noqa: E402

config_name = (os.getenv('FLASK_CONFIG') or os.getenv('FLASK_ENV') or 'development').lower()

app = create_app(config_name)
