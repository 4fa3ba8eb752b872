"""Pydantic schemas for domain objects and request/response models.

Receipts are stored as plain MongoDB documents, so these models are the
application-level contract for what a document looks like.  Field names
use the camelCase spelling stored in the database and returned to the
frontend.  Services generally work on ``dict`` documents and use these
models at the edges: validating LLM output, shaping QA results and
parsing request bodies.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .enums import CategoryMethod, QAIssueType, QASeverity, ReceiptStatus


# ---------------------------------------------------------------------------
# Domain schemas


class LineItem(BaseModel):
    """Individual line item on a receipt."""

    model_config = ConfigDict(extra="ignore")

    description: str = ""
    quantity: float = 1
    unitPrice: float = 0
    total: float = 0
    confidence: Optional[float] = None


class FieldConfidence(BaseModel):
    merchant: Optional[float] = None
    date: Optional[float] = None
    total: Optional[float] = None
    category: Optional[float] = None


class ParsedReceipt(BaseModel):
    """Structured fields extracted from OCR text."""

    model_config = ConfigDict(extra="allow")

    merchant: Optional[str] = None
    date: Optional[str] = None
    total: Optional[float] = None
    tax: Optional[float] = None
    currency: Optional[str] = None
    category: Optional[str] = None
    paymentMethod: Optional[str] = None
    lineItems: List[LineItem] = Field(default_factory=list)
    confidence: FieldConfidence = Field(default_factory=FieldConfidence)
    source: Optional[str] = None

    @field_validator("total", "tax", mode="before")
    @classmethod
    def _coerce_amount(cls, v: Any) -> Any:
        # LLMs occasionally answer "12.50" or "$12.50"
        if isinstance(v, str):
            cleaned = v.replace("$", "").replace(",", "").strip()
            try:
                return float(cleaned)
            except ValueError:
                return None
        return v

    @field_validator("lineItems", mode="before")
    @classmethod
    def _none_items(cls, v: Any) -> Any:
        return v or []


class QAIssue(BaseModel):
    type: QAIssueType
    severity: QASeverity
    field: Optional[str] = None
    message: str
    suggestion: Optional[str] = None


class QAResult(BaseModel):
    """Outcome of the receipt quality checks (score is 0-100)."""

    passed: bool
    score: int
    issues: List[QAIssue] = Field(default_factory=list)
    needsReview: bool
    flags: List[str] = Field(default_factory=list)


class DuplicateCheck(BaseModel):
    isDuplicate: bool
    matchedReceipts: List[str] = Field(default_factory=list)
    similarity: int = 0


class CategorizationResult(BaseModel):
    category: str
    confidence: float
    method: CategoryMethod
    suggestion: Optional[str] = None


class CurrencyDetection(BaseModel):
    currency: str
    confidence: float
    signals: List[str] = Field(default_factory=list)


class ConversionResult(BaseModel):
    inr: float
    rate: float


class Chunk(BaseModel):
    id: str
    receiptId: str
    userId: str
    page: int = 1
    text: str
    metadata: Dict[str, Any] = Field(default_factory=dict)
    embedding: List[float] = Field(default_factory=list)


class RankedChunk(Chunk):
    score: float


class ReceiptDoc(BaseModel):
    """Shape of a stored receipt document."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    id: str = Field(alias="_id")
    userId: str
    fileKey: Optional[str] = None
    originalName: Optional[str] = None
    ocrText: Optional[str] = None
    merchant: Optional[str] = None
    date: Optional[str] = None
    total: Optional[float] = None
    tax: Optional[float] = None
    currency: Optional[str] = None
    totalINR: Optional[float] = None
    fxRateToINR: Optional[float] = None
    currencyConfidence: Optional[float] = None
    currencySignals: List[str] = Field(default_factory=list)
    category: Optional[str] = None
    categoryConfidence: Optional[float] = None
    categoryMethod: Optional[CategoryMethod] = None
    categorySuggestion: Optional[str] = None
    paymentMethod: Optional[str] = None
    status: ReceiptStatus = ReceiptStatus.UPLOADED
    lineItems: List[LineItem] = Field(default_factory=list)
    confidence: Union[float, FieldConfidence, None] = None
    qaScore: Optional[int] = None
    qaIssues: List[QAIssue] = Field(default_factory=list)
    qaFlags: List[str] = Field(default_factory=list)
    isDuplicate: bool = False
    duplicateOf: List[str] = Field(default_factory=list)
    source: Optional[str] = None
    transactionId: Optional[str] = None
    createdAt: Optional[datetime] = None
    updatedAt: Optional[datetime] = None


# ---------------------------------------------------------------------------
# API request schemas


class ReceiptUpdate(BaseModel):
    """Partial update for user-edited receipt fields."""

    merchant: Optional[str] = None
    date: Optional[str] = None
    total: Optional[float] = None
    category: Optional[str] = None
    lineItems: Optional[List[LineItem]] = None


class CategoryUpdate(BaseModel):
    userId: Optional[str] = None
    category: Optional[str] = None


class RagQueryRequest(BaseModel):
    query: Optional[str] = None
    userId: Optional[str] = None
    k: int = Field(default=5, ge=1, le=50)


class ChatRequest(BaseModel):
    query: Optional[str] = None
    userId: Optional[str] = None


class PredictContext(BaseModel):
    dayOfWeek: Optional[int] = Field(default=None, ge=0, le=6)
    hourOfDay: Optional[int] = Field(default=None, ge=0, le=23)
    category: Optional[str] = None


class PredictRequest(BaseModel):
    userId: Optional[str] = None
    context: Optional[PredictContext] = None


class RegretCheckRequest(BaseModel):
    merchant: Optional[str] = None
    category: Optional[str] = None
    total: Optional[float] = None


class SmsTransactionRequest(BaseModel):
    smsBody: Optional[str] = None
    timestamp: Optional[datetime] = None


class SmsMessage(BaseModel):
    body: str = ""
    date: Optional[datetime] = None
    sender: Optional[str] = None


class SmsSyncRequest(BaseModel):
    messages: Optional[List[SmsMessage]] = None


class CurrencyDetectRequest(BaseModel):
    merchant: Optional[str] = None
    ocrText: Optional[str] = None
    ipCountry: Optional[str] = None
