"""Receipt quality checks, duplicate detection and review suggestions.

Each parsed receipt is scored from 100 downwards: 25 points per critical
issue, 10 per warning and 5 per informational note.  A receipt needs
review when the score drops below 70, when any critical issue is found,
or when the total is missing or was read with low confidence; it passes
when it scores 80 or more and needs no review.
"""

from __future__ import annotations

import datetime as dt
from typing import Any, Dict, Iterable, List, Mapping, Optional

from app.models.enums import QAIssueType, QASeverity
from app.models.schemas import DuplicateCheck, QAIssue, QAResult
from app.utils.helpers import as_datetime, to_number

SEVERITY_PENALTY = {
    QASeverity.CRITICAL: 25,
    QASeverity.WARNING: 10,
    QASeverity.INFO: 5,
}


def _confidences(confidence: Any) -> Dict[str, float]:
    if isinstance(confidence, (int, float)) and not isinstance(confidence, bool):
        conf: Mapping[str, Any] = {"overall": confidence}
    elif isinstance(confidence, Mapping):
        conf = confidence
    else:
        conf = {}
    overall = conf.get("overall") or 0
    return {
        field: float(conf.get(field) or overall or 0)
        for field in ("merchant", "total", "date")
    }


def _issue(kind: QAIssueType, severity: QASeverity, field: str, message: str, suggestion: str) -> QAIssue:
    return QAIssue(type=kind, severity=severity, field=field, message=message, suggestion=suggestion)


def run_receipt_qa(receipt: Mapping[str, Any], today: Optional[dt.date] = None) -> QAResult:
    """Run every quality check against a parsed receipt."""
    issues: List[QAIssue] = []
    flags: List[str] = []
    conf = _confidences(receipt.get("confidence"))
    merchant = receipt.get("merchant")
    total = receipt.get("total")
    tax = receipt.get("tax")
    date = receipt.get("date")
    line_items = receipt.get("lineItems") or []

    # Extraction confidence
    if conf["merchant"] < 0.5:
        issues.append(_issue(
            QAIssueType.LOW_CONFIDENCE, QASeverity.WARNING, "merchant",
            f"Merchant name has low confidence ({conf['merchant'] * 100:.0f}%)",
            "Please verify the merchant name is correct",
        ))
        flags.append("low_confidence_merchant")
    if conf["total"] < 0.6:
        issues.append(_issue(
            QAIssueType.LOW_CONFIDENCE, QASeverity.CRITICAL, "total",
            f"Total amount has low confidence ({conf['total'] * 100:.0f}%)",
            "Please verify the total amount",
        ))
        flags.append("low_confidence_total")
    if conf["date"] < 0.5:
        issues.append(_issue(
            QAIssueType.LOW_CONFIDENCE, QASeverity.INFO, "date",
            f"Date has low confidence ({conf['date'] * 100:.0f}%)",
            "Please verify the date is correct",
        ))
        flags.append("low_confidence_date")

    # Missing data
    if not merchant or merchant == "Unknown Merchant":
        issues.append(_issue(
            QAIssueType.MISSING_DATA, QASeverity.WARNING, "merchant",
            "Merchant name is missing or could not be extracted",
            "Please enter the merchant name manually",
        ))
        flags.append("missing_merchant")
    if not total:
        issues.append(_issue(
            QAIssueType.MISSING_DATA, QASeverity.CRITICAL, "total",
            "Total amount is missing or zero",
            "Please enter the total amount manually",
        ))
        flags.append("missing_total")
    if not date:
        issues.append(_issue(
            QAIssueType.MISSING_DATA, QASeverity.INFO, "date",
            "Receipt date is missing",
            "Please enter the date",
        ))
        flags.append("missing_date")

    # Suspicious amounts
    if total and total > 10000:
        issues.append(_issue(
            QAIssueType.SUSPICIOUS_AMOUNT, QASeverity.WARNING, "total",
            f"Unusually large amount: ${total:.2f}",
            "Please verify this amount is correct",
        ))
        flags.append("large_amount")
    if total and total < 0:
        issues.append(_issue(
            QAIssueType.SUSPICIOUS_AMOUNT, QASeverity.CRITICAL, "total",
            "Negative total amount detected",
            "Please check the receipt image",
        ))
        flags.append("negative_amount")

    # Date sanity
    receipt_date = as_datetime(date) if date else None
    if receipt_date is not None:
        today = today or dt.date.today()
        if receipt_date.date() > today + dt.timedelta(days=1):
            issues.append(_issue(
                QAIssueType.DATE_MISMATCH, QASeverity.WARNING, "date",
                "Receipt date is in the future",
                "Please verify the date",
            ))
            flags.append("future_date")
        try:
            past_limit = today.replace(year=today.year - 10)
        except ValueError:  # Feb 29
            past_limit = today.replace(year=today.year - 10, day=28)
        if receipt_date.date() < past_limit:
            issues.append(_issue(
                QAIssueType.DATE_MISMATCH, QASeverity.INFO, "date",
                "Receipt is more than 10 years old",
                "Please verify the date",
            ))
            flags.append("very_old")

    # Line item arithmetic
    if line_items:
        items_sum = 0.0
        calculation_errors = False
        invalid = 0
        for item in line_items:
            quantity = to_number(item.get("quantity"))
            unit_price = to_number(item.get("unitPrice"))
            item_total = to_number(item.get("total"))
            description = item.get("description") or ""
            # 2 cent rounding tolerance
            if abs(quantity * unit_price - item_total) > 0.02:
                issues.append(_issue(
                    QAIssueType.CALCULATION_ERROR, QASeverity.WARNING, "lineItems",
                    f'Line item "{description}": {quantity:g} x ${unit_price:.2f} != ${item_total:.2f}',
                    "Check for rounding or calculation errors",
                ))
                calculation_errors = True
            items_sum += item_total
            if len(description) < 2 or quantity <= 0 or unit_price < 0:
                invalid += 1

        if calculation_errors:
            flags.append("calculation_error")

        # 50 cents covers rounding, tips and small fees
        if total and tax is not None:
            if abs(items_sum + tax - total) > 0.50:
                issues.append(_issue(
                    QAIssueType.CALCULATION_ERROR, QASeverity.WARNING, "total",
                    f"Subtotal (${items_sum:.2f}) + Tax (${tax:.2f}) != Total (${total:.2f})",
                    "There may be additional fees or discounts not captured",
                ))
                flags.append("total_mismatch")

        if invalid:
            issues.append(_issue(
                QAIssueType.MISSING_DATA, QASeverity.INFO, "lineItems",
                f"{invalid} invalid line item(s) detected",
                "Some items may need manual correction",
            ))
            flags.append("invalid_items")

    score = max(0, 100 - sum(SEVERITY_PENALTY[i.severity] for i in issues))
    needs_review = (
        score < 70
        or any(i.severity == QASeverity.CRITICAL for i in issues)
        or "low_confidence_total" in flags
        or "missing_total" in flags
    )
    return QAResult(
        passed=score >= 80 and not needs_review,
        score=score,
        issues=issues,
        needsReview=needs_review,
        flags=flags,
    )


def check_duplicate_receipt(receipt: Mapping[str, Any], existing: Iterable[Mapping[str, Any]]) -> DuplicateCheck:
    """Compare a receipt against a user's other receipts.

    Merchant containment scores 40, the same date 30, and a total within
    ten cents 30 (within a dollar 15).  Anything scoring 70 or more is a
    likely duplicate.  Existing receipts are identified by ``receiptId``
    or their ``_id``.
    """
    merchant, date, total = receipt.get("merchant"), receipt.get("date"), receipt.get("total")
    if not merchant or not date or not total:
        return DuplicateCheck(isDuplicate=False)

    matches: List[tuple[str, int]] = []
    for other in existing:
        o_merchant, o_date, o_total = other.get("merchant"), other.get("date"), other.get("total")
        if not o_merchant or not o_date or not o_total:
            continue
        similarity = 0
        a, b = o_merchant.lower(), merchant.lower()
        if b in a or a in b:
            similarity += 40
        if o_date == date:
            similarity += 30
        diff = abs(o_total - total)
        if diff < 0.10:
            similarity += 30
        elif diff < 1.00:
            similarity += 15
        if similarity >= 70:
            matches.append((str(other.get("receiptId") or other.get("_id")), similarity))

    matches.sort(key=lambda m: m[1], reverse=True)
    return DuplicateCheck(
        isDuplicate=bool(matches),
        matchedReceipts=[m[0] for m in matches],
        similarity=matches[0][1] if matches else 0,
    )


def generate_qa_suggestions(result: QAResult) -> List[str]:
    suggestions: List[str] = []
    if result.needsReview:
        suggestions.append("This receipt needs manual review before processing")
    if "low_confidence_total" in result.flags:
        suggestions.append("Try re-uploading with better lighting or higher resolution")
    if "missing_merchant" in result.flags:
        suggestions.append("Add the merchant name from the receipt image")
    if "calculation_error" in result.flags:
        suggestions.append("Verify the line item totals and tax calculations")
    if "large_amount" in result.flags:
        suggestions.append("Double-check this unusually large amount")
    if result.score < 50:
        suggestions.append("Consider re-uploading a clearer image of the receipt")
    return suggestions
