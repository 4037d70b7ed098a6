"""Gatehouse HTTP API layer.

This package provides the Falcon Asynchronous Server Gateway Interface
(ASGI) application for event submission and dead-letter administration.

Usage
-----
Create and run the application::

    from gatehouse.api import create_app

    app = create_app()              # health-only mode
    app = create_app(dependencies)  # full mode with domain endpoints

Public API
----------
create_app
    Application factory that configures the Falcon ASGI app with health
    endpoints and, when the pipeline is provided, the ingestion and
    dead-letter endpoints.
"""

from gatehouse.api.app import create_app

__all__ = ["create_app"]
