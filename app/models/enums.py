"""Enumeration types used throughout the LedgerMind API.

Enumerations constrain the values stored on receipt documents and
passed through the API.  Because documents are plain MongoDB records,
these enums are the only place the allowed values are written down;
update any consumers when adding a member.
"""

from enum import Enum


class ReceiptStatus(str, Enum):
    """Processing states for a receipt."""

    UPLOADED = "uploaded"
    PROCESSING = "processing"
    COMPLETED = "completed"
    NEEDS_REVIEW = "needs_review"
    FAILED = "failed"


class CategoryMethod(str, Enum):
    """How a receipt's category was decided."""

    LEARNED = "learned"
    HEURISTIC = "heuristic"
    LLM = "llm"


class QASeverity(str, Enum):
    CRITICAL = "critical"
    WARNING = "warning"
    INFO = "info"


class QAIssueType(str, Enum):
    LOW_CONFIDENCE = "low_confidence"
    MISSING_DATA = "missing_data"
    SUSPICIOUS_AMOUNT = "suspicious_amount"
    DATE_MISMATCH = "date_mismatch"
    CALCULATION_ERROR = "calculation_error"
    DUPLICATE = "duplicate"


class QueryType(str, Enum):
    """Intent detected for a natural-language question."""

    SPENDING = "spending"
    MERCHANT = "merchant"
    CATEGORY = "category"
    DATE = "date"
    ITEM = "item"
    GENERAL = "general"


class AnalysisPeriod(str, Enum):
    WEEK = "week"
    MONTH = "month"
    YEAR = "year"


class ReceiptSource(str, Enum):
    UPLOAD = "upload"
    SMS = "sms"
