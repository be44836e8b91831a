"""
asgi.py -- Process-wide LeadExchange application.

Run with:  uvicorn asgi:app --reload

Settings come from the environment (see core/config.py). Tests never import
this module; they call api.main.create_app() for isolated instances.
"""

from api.main import create_app

app = create_app()
