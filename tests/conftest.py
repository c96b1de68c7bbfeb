from datetime import datetime, timedelta, timezone

import pytest

from invoicectl.models import Record, Document, INVOICE, RECEIPT
from invoicectl.store import RecordStore


class FakeClient:
    """Replays scripted outcomes per payload; the last outcome repeats."""

    def __init__(self, script=None):
        self.script = {k: list(v) for k, v in (script or {}).items()}
        self.calls = []

    def extract(self, payload, media_type, timeout=None):
        self.calls.append((payload, media_type, timeout))
        outcomes = self.script.get(payload)
        if not outcomes:
            return invoice(vendor=payload.decode(), number=payload.decode())
        outcome = outcomes.pop(0) if len(outcomes) > 1 else outcomes[0]
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


class SleepRecorder:
    def __init__(self, on_sleep=None):
        self.calls = []
        self.on_sleep = on_sleep

    def __call__(self, seconds):
        self.calls.append(seconds)
        if self.on_sleep:
            self.on_sleep(seconds)


class FakeClock:
    def __init__(self, now=None):
        self.now = now or datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


def invoice(vendor="Acme Marine", number="INV-1", total=100.0, **kw):
    return Record(kind=INVOICE, counterparty=vendor, invoice_number=number,
                  date="2025-05-01", total=total, **kw)


def receipt(merchant="Harbour Fuel", date="2025-05-02", total=42.5, **kw):
    return Record(kind=RECEIPT, counterparty=merchant, date=date, total=total, **kw)


def doc(name, content=None, media_type="application/pdf"):
    return Document(name, content if content is not None else name.encode(), media_type)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def db_path(tmp_path):
    return str(tmp_path / "invoices.db")


@pytest.fixture
def store(db_path, clock):
    s = RecordStore(db_path, retention_days=30, clock=clock)
    yield s
    s.close()
