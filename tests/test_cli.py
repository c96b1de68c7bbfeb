import json

import pytest
from click.testing import CliRunner

from invoicectl.cli import cli
from invoicectl.errors import RateLimitError
from invoicectl.store import RecordStore

from conftest import FakeClient, invoice


def make_client():
    return FakeClient({b"limited": [RateLimitError()]})


@pytest.fixture
def run(db_path):
    runner = CliRunner()

    def _run(*args, **kw):
        return runner.invoke(cli, ["--db", db_path, *args], **kw)
    return _run


@pytest.fixture
def scans(tmp_path):
    paths = []
    for name, body in (("one.pdf", b"one"), ("two.png", b"two"), ("three.pdf", b"limited")):
        p = tmp_path / name
        p.write_bytes(body)
        paths.append(str(p))
    return paths


def test_batch_runs_and_reports(run, scans, db_path):
    result = run("batch", *scans, "--client", "test_cli:make_client",
                 "--delay", "0s", "--backoff-base", "0s", "--max-retries", "1")

    assert result.exit_code == 0, result.output
    assert "COMPLETED" in result.output
    assert "Failed: Rate limit exceeded" in result.output
    summary = json.loads(result.output[result.output.index("{"):])
    assert summary["completed"] == 2
    assert summary["failed"] == 1

    store = RecordStore(db_path)
    try:
        names = sorted(r.file_name for r in store.list())
    finally:
        store.close()
    assert names == ["one.pdf", "two.png"]


def test_batch_bad_client(run, scans):
    result = run("batch", *scans, "--client", "nowhere")
    assert result.exit_code == 1
    assert "Error:" in result.output


def test_records_workflow(run, db_path):
    store = RecordStore(db_path)
    try:
        a = store.save(invoice(number="1"), "a.pdf")
        b = store.save(invoice(number="2"), "b.pdf")
    finally:
        store.close()

    listed = run("records", "list")
    assert a in listed.output and b in listed.output

    assert run("records", "status", a, "Pending").exit_code == 0
    result = run("records", "approve", a, b)
    assert "2/2 record(s) set to Approved." in result.output

    shown = json.loads(run("records", "show", a).output)
    assert shown["status"] == "Approved"
    assert shown["invoice_number"] == "1"

    assert run("records", "list", "--status", "Rejected").output.strip() == "No records."
    assert run("records", "reject", "missing").exit_code == 1
    assert run("records", "show", "missing").exit_code == 1

    assert "Deleted 2 record(s)." in run("records", "clear", "--yes").output
    assert "Evicted 0 expired record(s)." in run("records", "purge").output


def test_config_get_set(run):
    assert json.loads(run("config", "get").output)["backoff_base"] == "20"

    result = run("config", "set", "inter_item_delay", "1m")
    assert result.exit_code == 0
    assert json.loads(run("config", "get").output)["inter_item_delay"] == "60"

    assert run("config", "set", "nope", "1").exit_code == 1
    result = run("config", "set", "--", "max_retries", "-1")
    assert result.exit_code == 1
    assert "must be a non-negative number" in result.output
