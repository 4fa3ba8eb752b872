"""API package.

Routers live in ``app.api.routes`` so tests can mount one at a time:
	from app.api.routes.receipts import router
"""

__all__ = [
	"routes",
]
