"""Top-level application package for the LedgerMind receipt API.

This package contains everything needed to run the FastAPI backend:
configuration and MongoDB access in ``app.core``, Pydantic schemas in
``app.models``, the OCR, parsing, categorisation and analytics services
in ``app.services``, the spending predictor in ``app.ml`` and the API
routers in ``app.api``.

To run the API locally you can execute:

```bash
uvicorn app.api.main:app --reload
```

This will serve the FastAPI application on http://localhost:8000 and
automatically reload on code changes. The default configuration talks
to a local MongoDB at ``mongodb://localhost:27017``. You can override
configuration values using environment variables or a ``.env`` file at
the project root.
"""

__all__: list[str] = []  # explicit for linters; populated dynamically elsewhere if needed
