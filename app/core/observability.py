"""Observability helpers (Sentry init & common scrubbing).

Keeps Sentry initialisation in one place for the API process and the
maintenance scripts.  Everything here is a no-op if the SDK or DSN are
missing.
"""

from __future__ import annotations

from typing import Any, Dict, Optional

from app.core.config import settings

try:  # Optional import
	import sentry_sdk  # type: ignore
	from sentry_sdk.integrations.fastapi import FastApiIntegration  # type: ignore
	from sentry_sdk.integrations.pymongo import PyMongoIntegration  # type: ignore
	_SENTRY_AVAILABLE = True
except Exception:  # pragma: no cover
	_SENTRY_AVAILABLE = False

_SCRUB_HEADERS = ("authorization", "cookie", "set-cookie", "x-api-key", "apikey")


def _before_send(event: Dict[str, Any], hint: Dict[str, Any] | None = None):  # type: ignore[override]
	"""Scrub secrets and receipt contents before sending to Sentry.

	- Drop Authorization, Cookie and provider API key headers
	- Remove request data/body (uploaded receipts, SMS bodies)
	"""
	try:
		req = event.get("request") or {}
		headers = req.get("headers") or {}
		for k in list(headers.keys()):
			if k.lower() in _SCRUB_HEADERS:
				headers.pop(k, None)
		req.pop("data", None)
		event["request"] = req
	except Exception:  # best effort
		pass
	return event


def init_sentry(service: str) -> bool:
	"""Initialise Sentry once for a given process.

	Returns True if Sentry was initialised; False otherwise.
	"""
	if not (_SENTRY_AVAILABLE and settings.SENTRY_DSN):  # pragma: no cover - simple guard
		return False
	if getattr(init_sentry, "_done", False):
		return True
	sentry_sdk.init(
		dsn=settings.SENTRY_DSN,
		integrations=[FastApiIntegration(), PyMongoIntegration()],
		traces_sample_rate=float(settings.SENTRY_TRACES_SAMPLE_RATE or 0),
		profiles_sample_rate=float(settings.SENTRY_PROFILES_SAMPLE_RATE or 0),
		environment=settings.ENVIRONMENT,
		release=settings.SENTRY_RELEASE,
		before_send=_before_send,
	)
	sentry_sdk.set_tag("service", service)
	init_sentry._done = True  # type: ignore[attr-defined]
	return True


def sentry_enabled() -> bool:
	return bool(_SENTRY_AVAILABLE and settings.SENTRY_DSN)


def sentry_set_tags(tags: Dict[str, Any]) -> None:
	"""Best-effort: set tags on the current Sentry scope (strings only)."""
	if not sentry_enabled():
		return
	try:
		for k, v in (tags or {}).items():
			sentry_sdk.set_tag(str(k), str(v)[:128] if v is not None else "")
	except Exception:
		return


def sentry_set_user(user_id: Optional[str]) -> None:
	if not (sentry_enabled() and user_id):
		return
	try:
		sentry_sdk.set_user({"id": str(user_id)})
	except Exception:
		return


def sentry_breadcrumb(category: str, message: str, level: str = "info", data: Optional[Dict[str, Any]] = None) -> None:
	"""Best-effort: add a breadcrumb for pipeline and provider steps."""
	if not sentry_enabled():
		return
	try:
		sentry_sdk.add_breadcrumb(
			category=category,
			message=message,
			level=level,
			data=data or {},
		)
	except Exception:
		return


def sentry_metric_inc(name: str, value: int = 1, tags: Optional[Dict[str, Any]] = None) -> None:
	"""Best-effort: increment a counter when the SDK ships a metrics API.

	Falls back to a breadcrumb so the signal is still attached to events.
	"""
	if not sentry_enabled():
		return
	safe_tags = {str(k): str(v)[:64] for k, v in (tags or {}).items()}
	try:
		metrics = getattr(sentry_sdk, "metrics", None)
		if metrics is not None and hasattr(metrics, "increment"):
			metrics.increment(name, value=value, tags=safe_tags)
		else:
			sentry_sdk.add_breadcrumb(category="metric", message=name, data={"value": value, **safe_tags})
	except Exception:
		return


def sentry_capture(exc: BaseException) -> None:
	if not sentry_enabled():
		return
	try:
		sentry_sdk.capture_exception(exc)
	except Exception:
		return


__all__ = [
	"init_sentry",
	"sentry_enabled",
	"sentry_set_tags",
	"sentry_set_user",
	"sentry_breadcrumb",
	"sentry_metric_inc",
	"sentry_capture",
]
