"""UPI / bank SMS parsing and import.

Indian banks and payment apps send a debit SMS for every UPI payment.
Each known format is a regular expression capturing the amount and the
payee; the first one that matches wins, with a generic pattern last.
Parsed transactions are stored as ordinary receipts with ``source`` set
to ``"sms"`` so every analysis treats them like scanned receipts.
"""

from __future__ import annotations

import datetime as dt
import logging
import re
import uuid
from typing import Any, Dict, List, Mapping, Optional, Tuple

from app.core.database import receipts_col
from app.models.enums import CategoryMethod, ReceiptSource, ReceiptStatus
from app.utils.helpers import new_receipt_id, utcnow

logger = logging.getLogger(__name__)

# Checked in order
UPI_PATTERNS: List[Tuple[str, re.Pattern]] = [
    ("sbi", re.compile(r"Rs\.?\s?([\d,]+\.?\d*)\s+debited.*?(?:to\s+UPI\/|for\s+)(.+?)(?:\s+on|\.|$)", re.IGNORECASE)),
    ("hdfc", re.compile(r"INR\s+([\d,]+\.?\d*)\s+debited.*?UPI[:\-\s](.+?)(?:\s+on|\.|$)", re.IGNORECASE)),
    ("icici", re.compile(r"Rs\.?\s?([\d,]+)\s+debited.*?(?:UPI\/|to\s+)(.+?)(?:\s+on|\.|$)", re.IGNORECASE)),
    ("paytm", re.compile(r"Rs\.?\s?([\d,]+)\s+paid to\s+(.+?)\s+via\s+Paytm", re.IGNORECASE)),
    ("phonepe", re.compile(r"(?:paid|sent)\s+Rs\.?\s?([\d,]+)\s+to\s+(.+?)\s+(?:via\s+PhonePe|using)", re.IGNORECASE)),
    ("gpay", re.compile(r"sent Rs\.?\s?([\d,]+)\s+to\s+(.+?)(?:\s+on|\.|$)", re.IGNORECASE)),
    ("generic", re.compile(r"(?:debited|paid|sent).*?Rs\.?\s?([\d,]+).*?(?:to|for)\s+(.+?)(?:\s+on|\.|$)", re.IGNORECASE)),
]

SMS_CATEGORY_PATTERNS: List[Tuple[str, re.Pattern]] = [
    ("Food & Beverage", re.compile(r"swiggy|zomato|uber\s*eats|domino|pizza|mcdonald|kfc|subway|burger|starbucks|cafe|restaurant|food|dining")),
    ("Transportation", re.compile(r"uber|ola|rapido|metro|irctc|bus|taxi|cab|fuel|petrol|diesel")),
    ("Shopping", re.compile(r"amazon|flipkart|myntra|ajio|meesho|nykaa|fashion|shopping|store")),
    ("Groceries", re.compile(r"bigbasket|grofers|dunzo|blinkit|zepto|jiomart|dmart|supermarket|grocery")),
    ("Entertainment", re.compile(r"netflix|spotify|prime|hotstar|disney|youtube|bookmyshow|movie|ticket|subscription")),
    ("Utilities", re.compile(r"electricity|water|gas|bill|recharge|broadband|wifi|internet|mobile")),
    ("Healthcare", re.compile(r"pharma|medicine|doctor|hospital|clinic|apollo|medplus|1mg|healthcare")),
    ("Education", re.compile(r"course|udemy|coursera|byju|unacademy|coaching|tuition|book|education")),
    ("Personal Care", re.compile(r"salon|spa|gym|fitness|beauty|grooming|healthcare")),
]

TRANSACTION_ID_PATTERNS = [
    re.compile(r"(?:ref|utr|trans|txn|transaction)[\s#:]*([A-Z0-9]{8,})", re.IGNORECASE),
    re.compile(r"(?:id|no)[\s#:]*([A-Z0-9]{8,})", re.IGNORECASE),
]

TRANSACTION_KEYWORDS = (
    "debited", "credited", "paid", "sent", "received", "upi", "imps", "neft", "transaction", "a/c",
)
_AMOUNT_RE = re.compile(r"Rs\.?\s?[\d,]+|INR\s?[\d,]+")

BANK_SENDER_IDS = [
    "HDFCBK", "SBIINB", "ICICIB", "KOTAKB", "AXISBK", "PNBSMS", "BOISMS", "CBSSBI",
    "PAYTM", "PHONEPE", "GPAY", "AMAZONP", "BHARTP",
    "VM-", "VK-", "JD-",
]


def clean_merchant_name(merchant: str) -> str:
    """Turn a raw payee (often a VPA like ``swiggy@icici``) into a display name."""
    name = merchant.split("@")[0]
    name = re.sub(r"^(UPI\/|VPA\/)", "", name, flags=re.IGNORECASE)
    name = re.sub(r"[.,;:!?\s]+$", "", name)
    name = " ".join(w[:1].upper() + w[1:].lower() for w in name.split(" "))
    return name.strip()


def infer_sms_category(merchant: str) -> str:
    lower = merchant.lower()
    for category, pattern in SMS_CATEGORY_PATTERNS:
        if pattern.search(lower):
            return category
    return "Other"


def extract_transaction_id(sms: str) -> Optional[str]:
    for pattern in TRANSACTION_ID_PATTERNS:
        match = pattern.search(sms)
        if match:
            return match.group(1)
    return None


def is_transaction_sms(sms: str) -> bool:
    lower = sms.lower()
    has_keyword = any(k in lower for k in TRANSACTION_KEYWORDS)
    return has_keyword and bool(_AMOUNT_RE.search(sms))


def get_bank_sender_ids() -> List[str]:
    return list(BANK_SENDER_IDS)


def parse_transaction_sms(sms: str, timestamp: Optional[dt.datetime] = None) -> Optional[Dict[str, Any]]:
    """Parse a debit SMS into a transaction dict, or ``None`` when no format matches."""
    timestamp = timestamp or utcnow()
    for bank, pattern in UPI_PATTERNS:
        match = pattern.search(sms)
        if not match:
            continue
        amount = float(match.group(1).replace(",", ""))
        merchant = clean_merchant_name(match.group(2).strip())
        return {
            "merchant": merchant,
            "amount": amount,
            "date": timestamp.date().isoformat(),
            "bank": bank,
            "transactionId": extract_transaction_id(sms) or f"sms_{uuid.uuid4().hex[:8]}",
            "category": infer_sms_category(merchant),
            "type": "debit",
            "rawMessage": sms,
        }
    return None


def sms_to_receipt(transaction: Mapping[str, Any], user_id: str, receipt_id: str) -> Dict[str, Any]:
    """Receipt document for a parsed SMS transaction; amounts are already INR."""
    now = utcnow()
    merchant = transaction["merchant"]
    return {
        "_id": receipt_id,
        "userId": user_id,
        "fileKey": f"sms/{transaction['transactionId']}",
        "originalName": f"SMS-{merchant}-{transaction['date']}.txt",
        "ocrText": transaction["rawMessage"],
        "merchant": merchant,
        "date": transaction["date"],
        "total": transaction["amount"],
        "totalINR": transaction["amount"],
        "currency": "INR",
        "currencyConfidence": 1.0,
        "fxRateToINR": 1.0,
        "category": transaction.get("category") or "Other",
        "categoryConfidence": 0.85,
        "categoryMethod": CategoryMethod.HEURISTIC.value,
        "paymentMethod": "UPI",
        "status": ReceiptStatus.COMPLETED.value,
        "confidence": 0.95,
        "lineItems": [],
        "source": ReceiptSource.SMS.value,
        "transactionId": transaction["transactionId"],
        "rawSMS": transaction["rawMessage"],
        "qaScore": 95,
        "qaFlags": [],
        "isDuplicate": False,
        "createdAt": now,
        "updatedAt": now,
    }


def is_duplicate_transaction(first: Mapping[str, Any], second: Mapping[str, Any]) -> bool:
    return (
        first.get("merchant") == second.get("merchant")
        and first.get("total") == second.get("total")
        and first.get("date") == second.get("date")
        and first.get("source") == ReceiptSource.SMS.value
        and second.get("source") == ReceiptSource.SMS.value
    )


async def import_sms_transaction(
    db,
    user_id: str,
    body: str,
    timestamp: Optional[dt.datetime] = None,
) -> Dict[str, Any]:
    """Parse and store one SMS.

    Returns a dict whose ``status`` is ``"imported"``, ``"duplicate"`` (with
    ``existingId``) or ``"unparsed"``.
    """
    transaction = parse_transaction_sms(body, timestamp)
    if transaction is None:
        return {"status": "unparsed"}

    existing = await receipts_col(db).find_one({
        "userId": user_id,
        "merchant": transaction["merchant"],
        "total": transaction["amount"],
        "date": transaction["date"],
        "source": ReceiptSource.SMS.value,
    })
    if existing:
        return {"status": "duplicate", "existingId": existing["_id"], "transaction": transaction}

    receipt_id = new_receipt_id()
    await receipts_col(db).insert_one(sms_to_receipt(transaction, user_id, receipt_id))
    logger.info("[sms] imported %s %.2f from %s", transaction["merchant"], transaction["amount"], transaction["bank"])
    return {"status": "imported", "receiptId": receipt_id, "transaction": transaction}


async def sync_sms_messages(db, user_id: str, messages: List[Mapping[str, Any]]) -> Dict[str, Any]:
    """Import a batch of ``{body, date}`` messages; per-message failures are counted, not raised."""
    results: Dict[str, Any] = {
        "total": len(messages),
        "imported": 0,
        "duplicates": 0,
        "failed": 0,
        "errors": [],
    }
    for message in messages:
        body = message.get("body") or ""
        try:
            outcome = await import_sms_transaction(db, user_id, body, message.get("date"))
        except Exception as e:  # noqa: BLE001
            logger.warning("[sms] failed to import message: %s", e)
            results["failed"] += 1
            results["errors"].append(f"Error: {e}")
            continue
        if outcome["status"] == "imported":
            results["imported"] += 1
        elif outcome["status"] == "duplicate":
            results["duplicates"] += 1
        else:
            results["failed"] += 1
            results["errors"].append(f"Could not parse: {body[:50]}...")
    logger.info(
        "[sms] sync for %s: %d imported, %d duplicates, %d failed",
        user_id, results["imported"], results["duplicates"], results["failed"],
    )
    return results
