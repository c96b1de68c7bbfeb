import pytest

from invoicectl.errors import ExtractionError, InvalidTransition
from invoicectl.models import (
    Document, QueueItem, Record,
    PENDING, PROCESSING, COMPLETED, FAILED, INVOICE, RECEIPT,
)


def make_item():
    return QueueItem(id="q1", document=Document("a.pdf", b"x"))


class TestQueueItem:

    def test_happy_path(self):
        item = make_item()
        item.transition(PROCESSING)
        item.transition(PROCESSING)  # rate-limit retry
        item.transition(COMPLETED)
        assert item.state == COMPLETED

    @pytest.mark.parametrize("start,target", [
        (PENDING, COMPLETED),
        (PENDING, FAILED),
        (COMPLETED, PROCESSING),
    ])
    def test_invalid_transitions(self, start, target):
        item = make_item()
        item.state = start
        with pytest.raises(InvalidTransition):
            item.transition(target)

    def test_eligibility(self):
        item = make_item()
        assert item.eligible
        item.state = FAILED
        assert not item.eligible
        item.rate_limited = True
        assert item.eligible

    def test_snapshot_is_frozen(self):
        snap = make_item().snapshot()
        with pytest.raises(Exception):
            snap.state = COMPLETED


class TestRecordFromPayload:

    def test_invoice(self):
        rec = Record.from_payload({
            "type": "invoice",
            "vendorName": "Acme Marine",
            "invoiceNumber": "INV-7",
            "invoiceDate": "2025-05-01",
            "grandTotal": "1200.50",
            "poNumber": "PO-1",
            "lineItems": [{"description": "Hull paint", "quantity": 3, "unitPrice": 100, "total": 300,
                           "costCode": "MATERIALS"}],
        })
        assert rec.kind == INVOICE
        assert rec.counterparty == "Acme Marine"
        assert rec.invoice_number == "INV-7"
        assert rec.total == 1200.50
        assert rec.details == {"poNumber": "PO-1"}
        assert rec.line_items[0].unit_price == 100

    def test_receipt_line_defaults(self):
        rec = Record.from_payload({
            "merchantName": "Harbour Fuel", "date": "2025-05-02", "totalAmount": 42.5,
            "lineItems": [{"description": "Diesel", "total": 42.5}],
        }, kind=RECEIPT)
        assert rec.kind == RECEIPT
        assert rec.line_items[0].quantity == 1
        assert rec.line_items[0].unit_price == 42.5

    def test_missing_fields_is_schema_error(self):
        with pytest.raises(ExtractionError, match="missing vendorName"):
            Record.from_payload({"type": "invoice", "invoiceNumber": "1", "invoiceDate": "x", "grandTotal": 1})

    def test_unknown_kind(self):
        with pytest.raises(ExtractionError):
            Record.from_payload({"type": "contract"})

    def test_bad_kind_on_construction(self):
        with pytest.raises(ValueError):
            Record(kind="contract")
