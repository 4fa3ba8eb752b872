"""Currency detection and conversion to INR.

Detection walks signals from strongest to weakest and stops at the
first hit: a currency symbol in the OCR text, wording typical of a
country's receipts (tax names, company suffixes, phone formats), the
merchant name, an OpenStreetMap geocode of the merchant, the caller's
IP country, and finally INR as the home-currency default.  Every result
carries the signal that decided it (``symbol:EUR``, ``geo:DE->EUR``...).

Conversion uses exchangerate-api.com's keyless endpoint.  Rates are kept
in a process-local cache for six hours; when the API is unreachable a
static table of approximate rates is used instead.
"""

from __future__ import annotations

import asyncio
import logging
import re
import time
from typing import Dict, Iterable, List, Optional, Tuple

import httpx

from app.core.config import settings
from app.models.schemas import ConversionResult, CurrencyDetection

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Detection

INDIA_HINTS = [
    re.compile(r"₹|INR|Rs\.?|Indian Rupee", re.IGNORECASE),
    re.compile(r"CGST|SGST|GSTIN", re.IGNORECASE),
    re.compile(r"Pvt\. Ltd|Limited", re.IGNORECASE),
    re.compile(r"PIN\s*Code|\d{6}(?:\s|$)", re.IGNORECASE),
    re.compile(r"\+91|\(0\)", re.IGNORECASE),
]

USD_HINTS = [
    re.compile(r"\$|USD|US Dollar|United States", re.IGNORECASE),
    re.compile(r"Sales Tax|State Tax|ZIP Code", re.IGNORECASE),
    re.compile(r"LLC|Inc\.|Suite|Corporation", re.IGNORECASE),
]

EUR_HINTS = [
    re.compile(r"€|EUR|Euro", re.IGNORECASE),
    re.compile(r"TVA|VAT|Umsatzsteuer|IVA", re.IGNORECASE),
    re.compile(r"S\.A\.|GmbH|Ltd", re.IGNORECASE),
]

GBP_HINTS = [
    re.compile(r"£|GBP|British Pound", re.IGNORECASE),
    re.compile(r"VAT|Limited|Ltd\.", re.IGNORECASE),
]

# Checked in order; "$" is ambiguous but USD is the common case
CURRENCY_SYMBOLS: List[Tuple[str, str]] = [
    ("₹", "INR"),
    ("$", "USD"),
    ("€", "EUR"),
    ("£", "GBP"),
    ("¥", "JPY"),
    ("₽", "RUB"),
    ("₩", "KRW"),
    ("฿", "THB"),
    ("₦", "NGN"),
    ("₱", "PHP"),
    ("₨", "PKR"),
    ("₲", "PYG"),
    ("₴", "UAH"),
]

COUNTRY_CURRENCY_MAP: Dict[str, str] = {
    "IN": "INR", "US": "USD", "GB": "GBP", "CA": "CAD",
    "AU": "AUD", "NZ": "NZD", "DE": "EUR", "FR": "EUR",
    "ES": "EUR", "IT": "EUR", "NL": "EUR", "BE": "EUR",
    "AT": "EUR", "CH": "CHF", "SE": "SEK", "NO": "NOK",
    "DK": "DKK", "PL": "PLN", "CZ": "CZK", "HU": "HUF",
    "RO": "RON", "BG": "BGN", "HR": "HRK", "SI": "EUR",
    "SK": "EUR", "GR": "EUR", "PT": "EUR", "IE": "EUR",
    "JP": "JPY", "CN": "CNY", "KR": "KRW", "TH": "THB",
    "SG": "SGD", "MY": "MYR", "PH": "PHP", "VN": "VND",
    "ID": "IDR", "PK": "PKR", "BD": "BDT", "LK": "LKR",
    "MX": "MXN", "BR": "BRL", "AR": "ARS", "CO": "COP",
    "ZA": "ZAR", "NG": "NGN", "KE": "KES", "EG": "EGP",
    "SA": "SAR", "AE": "AED", "IL": "ILS", "TR": "TRY",
}

MERCHANT_PATTERNS: List[Tuple[re.Pattern, str, str, float]] = [
    (re.compile(r"Pvt\. Ltd|Private Limited|India", re.IGNORECASE), "INR", "merchant:india-patterns", 0.8),
    (re.compile(r"(LLC|Inc\.|Corp|USA|US|United States)", re.IGNORECASE), "USD", "merchant:usa-patterns", 0.75),
    (re.compile(r"(GmbH|AG|Gmbh|Germany|Berlin|Munich)", re.IGNORECASE), "EUR", "merchant:germany-patterns", 0.75),
    (re.compile(r"(Ltd\.|Limited|UK|London|Manchester)", re.IGNORECASE), "GBP", "merchant:uk-patterns", 0.75),
]


def _has_hint(text: str, hints: Iterable[re.Pattern]) -> bool:
    return any(h.search(text) for h in hints)


def detect_currency_symbol(text: str) -> Optional[str]:
    if not text:
        return None
    for symbol, code in CURRENCY_SYMBOLS:
        if symbol in text:
            return code
    return None


async def lookup_merchant_country(merchant: Optional[str]) -> Optional[str]:
    """Geocode a merchant name with OSM Nominatim and return its country code."""
    if not merchant or len(merchant.strip()) < 3 or not settings.CURRENCY_GEOCODE_ENABLED:
        return None
    try:
        async with httpx.AsyncClient(timeout=3.0) as client:
            r = await client.get(
                settings.NOMINATIM_URL,
                params={"format": "json", "q": merchant.strip(), "limit": 1, "addressdetails": 1},
                headers={"User-Agent": "receipt-tracker/1.0"},
            )
        if r.status_code != 200:
            return None
        data = r.json()
        if not data:
            return None
        code = ((data[0].get("address") or {}).get("country_code") or "").upper()
        return code if len(code) == 2 else None
    except (httpx.HTTPError, ValueError) as e:
        logger.warning("[currency-detect] merchant lookup failed: %s", e)
        return None


async def detect_currency(
    merchant: Optional[str] = None,
    ocr_text: Optional[str] = None,
    ip_country: Optional[str] = None,
) -> CurrencyDetection:
    text = (ocr_text or "")[:5000]
    merchant = merchant or ""
    ip_country = ip_country.upper() if ip_country else None

    symbol = detect_currency_symbol(text)
    if symbol:
        # INR symbols are definitive so a stray "$" elsewhere cannot override them
        return CurrencyDetection(
            currency=symbol,
            confidence=0.99 if symbol == "INR" else 0.95,
            signals=[f"symbol:{symbol}"],
        )

    if text:
        india = _has_hint(text, INDIA_HINTS)
        if india:
            return CurrencyDetection(currency="INR", confidence=0.9, signals=["ocr:india-patterns"])
        if _has_hint(text, USD_HINTS):
            return CurrencyDetection(currency="USD", confidence=0.85, signals=["ocr:usd-patterns"])
        if _has_hint(text, EUR_HINTS):
            return CurrencyDetection(currency="EUR", confidence=0.85, signals=["ocr:eur-patterns"])
        if _has_hint(text, GBP_HINTS):
            return CurrencyDetection(currency="GBP", confidence=0.85, signals=["ocr:gbp-patterns"])

    if merchant:
        for pattern, currency, signal, confidence in MERCHANT_PATTERNS:
            if pattern.search(merchant):
                return CurrencyDetection(currency=currency, confidence=confidence, signals=[signal])

    country = await lookup_merchant_country(merchant)
    if country and country in COUNTRY_CURRENCY_MAP:
        currency = COUNTRY_CURRENCY_MAP[country]
        return CurrencyDetection(
            currency=currency,
            confidence=0.8 if currency == "INR" else 0.7,
            signals=[f"geo:{country}->{currency}"],
        )

    # The user might be travelling, so the IP country ranks low
    if ip_country and ip_country in COUNTRY_CURRENCY_MAP:
        currency = COUNTRY_CURRENCY_MAP[ip_country]
        return CurrencyDetection(currency=currency, confidence=0.6, signals=[f"ip:{ip_country}->{currency}"])

    return CurrencyDetection(currency="INR", confidence=0.5, signals=["default:inr"])


# ---------------------------------------------------------------------------
# Conversion

FALLBACK_RATES: Dict[str, float] = {
    "USD": 83.5,
    "EUR": 91.0,
    "GBP": 106.0,
    "JPY": 0.56,
    "CAD": 61.0,
    "AUD": 55.0,
    "CHF": 94.0,
    "SGD": 62.0,
    "HKD": 10.7,
    "MYR": 17.8,
    "THB": 2.35,
    "PKR": 0.3,
    "BDT": 0.79,
    "LKR": 0.25,
    "AED": 22.7,
    "SAR": 22.3,
    "MXN": 4.8,
    "BRL": 16.8,
}

CURRENCY_DISPLAY_SYMBOLS: Dict[str, str] = {
    "INR": "₹",
    "USD": "$",
    "EUR": "€",
    "GBP": "£",
    "JPY": "¥",
    "CHF": "CHF",
    "CAD": "C$",
    "AUD": "A$",
    "NZD": "NZ$",
    "SGD": "S$",
}

# "USD->INR" -> (rate, fetched_at)
_rate_cache: Dict[str, Tuple[float, float]] = {}


async def _fetch_rate_from_api(base: str) -> float:
    async with httpx.AsyncClient(timeout=5.0) as client:
        r = await client.get(f"{settings.EXCHANGE_RATE_API_URL}/{base}")
    if r.status_code != 200:
        raise ValueError(f"HTTP {r.status_code}")
    rate = (r.json().get("rates") or {}).get("INR")
    if not isinstance(rate, (int, float)) or isinstance(rate, bool) or rate <= 0:
        raise ValueError(f"Invalid exchange rate: {rate!r}")
    return float(rate)


async def fetch_exchange_rate(from_currency: str) -> float:
    """Rate to multiply an amount in ``from_currency`` by to get INR."""
    base = from_currency.upper()
    if base == "INR":
        return 1.0

    cache_key = f"{base}->INR"
    now = time.time()
    cached = _rate_cache.get(cache_key)
    if cached and now - cached[1] < settings.EXCHANGE_RATE_CACHE_TTL:
        return cached[0]

    try:
        rate = await _fetch_rate_from_api(base)
    except (httpx.HTTPError, ValueError) as e:
        fallback = FALLBACK_RATES.get(base, 1.0)
        logger.warning("[currency-convert] rate fetch for %s failed (%s); using fallback %s", base, e, fallback)
        return fallback

    _rate_cache[cache_key] = (rate, now)
    logger.info("[currency-convert] cached rate %s: %s", cache_key, rate)
    return rate


async def convert_to_inr(amount: float, from_currency: Optional[str]) -> ConversionResult:
    if not from_currency or amount < 0:
        return ConversionResult(inr=0, rate=1)
    if amount == 0:
        return ConversionResult(inr=0, rate=1)
    rate = await fetch_exchange_rate(from_currency)
    return ConversionResult(inr=round(amount * rate, 2), rate=rate)


async def convert_many_to_inr(amounts: List[Tuple[float, str]]) -> List[Dict[str, float | str]]:
    """Convert several ``(amount, currency)`` pairs, fetching each rate once."""
    unique = list(dict.fromkeys(currency for _, currency in amounts))
    rates = await asyncio.gather(*(fetch_exchange_rate(c) for c in unique))
    rate_map = dict(zip(unique, rates))
    out: List[Dict[str, float | str]] = []
    for amount, currency in amounts:
        rate = rate_map.get(currency, 1.0)
        out.append({"original": amount, "currency": currency, "inr": round(amount * rate, 2), "rate": rate})
    return out


async def get_exchange_rate(from_currency: str) -> float:
    return await fetch_exchange_rate(from_currency)


def clear_exchange_rate_cache() -> None:
    _rate_cache.clear()


def get_cached_rates() -> Dict[str, float]:
    return {key: rate for key, (rate, _) in _rate_cache.items()}


def format_currency(amount: float, currency: str = "INR") -> str:
    symbol = CURRENCY_DISPLAY_SYMBOLS.get(currency, currency)
    return f"{symbol} {amount:.2f}"
