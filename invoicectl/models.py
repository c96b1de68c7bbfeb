import json
import mimetypes
import os
from dataclasses import dataclass, field, asdict
from typing import Any, Dict, List, Mapping, Optional

from .errors import ExtractionError, InvalidTransition

# Queue item states
PENDING = "pending"
PROCESSING = "processing"
COMPLETED = "completed"
FAILED = "failed"

ITEM_STATES = (PENDING, PROCESSING, COMPLETED, FAILED)

# PROCESSING -> PROCESSING is the bounded rate-limit retry loop.
TRANSITIONS = {
    PENDING: {PROCESSING},
    PROCESSING: {PROCESSING, COMPLETED, FAILED},
    FAILED: {PROCESSING, PENDING},
    COMPLETED: set(),
}

# Record kinds
INVOICE = "invoice"
RECEIPT = "receipt"
KINDS = (INVOICE, RECEIPT)

# Record workflow statuses
DRAFT = "Draft"
AWAITING = "Pending"
APPROVED = "Approved"
REJECTED = "Rejected"
RECORD_STATUSES = (DRAFT, AWAITING, APPROVED, REJECTED)


@dataclass
class LineItem:
    description: str = ""
    quantity: float = 1.0
    unit_price: float = 0.0
    total: float = 0.0
    cost_code: str = ""
    is_tax_line: bool = False


@dataclass
class Record:
    """
    A structured document pulled out of a scan.

    `counterparty`, `date` and `total` are shared by every kind and drive
    duplicate detection together with `invoice_number` for invoices.
    Everything kind-specific that is not an identity field lives in `details`.
    """
    kind: str
    counterparty: str = ""
    date: str = ""
    total: float = 0.0
    invoice_number: str = ""
    line_items: List[LineItem] = field(default_factory=list)
    details: Dict[str, Any] = field(default_factory=dict)
    id: Optional[str] = None
    status: str = DRAFT
    file_name: str = ""
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    preview: Optional[bytes] = None
    media_type: Optional[str] = None

    def __post_init__(self):
        if self.kind not in KINDS:
            raise ValueError(f"Unknown record kind {self.kind!r}; expected one of {', '.join(KINDS)}")
        if self.status not in RECORD_STATUSES:
            raise ValueError(f"Unknown record status {self.status!r}")
        self.line_items = [li if isinstance(li, LineItem) else LineItem(**li) for li in self.line_items]

    def data_json(self) -> str:
        return json.dumps({
            "counterparty": self.counterparty,
            "date": self.date,
            "total": self.total,
            "invoice_number": self.invoice_number,
            "line_items": [asdict(li) for li in self.line_items],
            "details": self.details,
        })

    @classmethod
    def from_row(cls, row) -> "Record":
        data = json.loads(row["data"])
        return cls(
            kind=row["kind"],
            id=row["id"],
            status=row["status"],
            file_name=row["file_name"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
            preview=row["preview"],
            media_type=row["media_type"],
            **data,
        )

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any], kind: Optional[str] = None) -> "Record":
        """
        Build a record from the service's JSON shape (camelCase keys,
        `vendorName`/`merchantName` etc). Raises ExtractionError when the
        response does not carry the fields a record needs.
        """
        kind = kind or payload.get("type")
        if kind not in KINDS:
            raise ExtractionError(f"Schema mismatch: unknown document type {kind!r}")

        if kind == INVOICE:
            required = ("vendorName", "invoiceNumber", "invoiceDate", "grandTotal")
            name_key, date_key, total_key = "vendorName", "invoiceDate", "grandTotal"
        else:
            required = ("merchantName", "date", "totalAmount")
            name_key, date_key, total_key = "merchantName", "date", "totalAmount"

        missing = [k for k in required if payload.get(k) in (None, "")]
        if missing:
            raise ExtractionError(f"Schema mismatch: missing {', '.join(missing)}")

        try:
            total = float(payload[total_key])
            items = [
                LineItem(
                    description=li.get("description", ""),
                    quantity=float(li.get("quantity") or 1),
                    unit_price=float(li.get("unitPrice") or li.get("total") or 0),
                    total=float(li.get("total") or 0),
                    cost_code=li.get("costCode") or "",
                    is_tax_line=bool(li.get("isTaxLine", False)),
                )
                for li in payload.get("lineItems") or []
            ]
        except (TypeError, ValueError, AttributeError) as e:
            raise ExtractionError(f"Schema mismatch: {e}")

        skip = set(required) | {"type", "id", "lineItems"}
        details = {k: v for k, v in payload.items() if k not in skip}
        return cls(
            kind=kind,
            id=payload.get("id"),
            counterparty=str(payload[name_key]),
            date=str(payload[date_key]),
            total=total,
            invoice_number=str(payload.get("invoiceNumber") or ""),
            line_items=items,
            details=details,
        )


@dataclass
class Document:
    name: str
    content: bytes
    media_type: str = "application/octet-stream"

    @classmethod
    def from_path(cls, path: str) -> "Document":
        media_type, _ = mimetypes.guess_type(path)
        with open(path, "rb") as fh:
            content = fh.read()
        return cls(os.path.basename(path), content, media_type or "application/octet-stream")


@dataclass(frozen=True)
class ItemStatus:
    id: str
    name: str
    state: str
    attempt: int
    last_error: Optional[str]
    rate_limited: bool
    duplicate: bool
    record_id: Optional[str]


@dataclass
class QueueItem:
    id: str
    document: Document
    state: str = PENDING
    attempt: int = 0
    last_error: Optional[str] = None
    rate_limited: bool = False
    duplicate: bool = False
    record_id: Optional[str] = None

    def transition(self, new_state: str):
        if new_state not in TRANSITIONS.get(self.state, ()):
            raise InvalidTransition(f"Item {self.id}: {self.state} -> {new_state} is not allowed")
        self.state = new_state

    @property
    def eligible(self) -> bool:
        return self.state == PENDING or (self.state == FAILED and self.rate_limited)

    def snapshot(self) -> ItemStatus:
        return ItemStatus(
            id=self.id,
            name=self.document.name,
            state=self.state,
            attempt=self.attempt,
            last_error=self.last_error,
            rate_limited=self.rate_limited,
            duplicate=self.duplicate,
            record_id=self.record_id,
        )
