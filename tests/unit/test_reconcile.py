import pytest
from kombu.exceptions import OperationalError

import tasks.media as media_tasks
from media.errors import UploadError
from media.reconcile import OrphanLedger


@pytest.fixture
def ledger_calls(monkeypatch):
    calls = {"attempt": [], "resolved": [], "deleted": []}
    monkeypatch.setattr(media_tasks, "is_pending", lambda asset_id: True)
    monkeypatch.setattr(media_tasks, "mark_attempt", calls["attempt"].append)
    monkeypatch.setattr(media_tasks, "mark_resolved", calls["resolved"].append)
    return calls


def test_reconcile_deletes_and_resolves(monkeypatch, ledger_calls):
    async def delete(asset_id):
        ledger_calls["deleted"].append(asset_id)

    monkeypatch.setattr(media_tasks, "delete_remote_asset", delete)

    assert media_tasks.reconcile_orphan("file_1") is True
    assert ledger_calls["deleted"] == ["file_1"]
    assert ledger_calls["resolved"] == ["file_1"]


def test_reconcile_skips_resolved(monkeypatch, ledger_calls):
    monkeypatch.setattr(media_tasks, "is_pending", lambda asset_id: False)

    assert media_tasks.reconcile_orphan("file_1") is False
    assert ledger_calls["resolved"] == []


def test_reconcile_failure_counts_an_attempt(monkeypatch, ledger_calls):
    async def delete(asset_id):
        raise UploadError("Failed to delete from CDN", "CDN_DELETE_ERROR")

    monkeypatch.setattr(media_tasks, "delete_remote_asset", delete)

    with pytest.raises(UploadError):
        media_tasks.reconcile_orphan("file_1")
    assert ledger_calls["attempt"] == ["file_1"]
    assert ledger_calls["resolved"] == []


def test_sweep_queues_every_unresolved(monkeypatch):
    queued = []
    monkeypatch.setattr(media_tasks, "unresolved_asset_ids", lambda limit: ["a", "b"])
    monkeypatch.setattr(media_tasks.reconcile_orphan, "delay", queued.append)

    assert media_tasks.sweep_orphans(limit=10) == 2
    assert queued == ["a", "b"]


def test_enqueue_reports_broker_outage(monkeypatch):
    def down(asset_id):
        raise OperationalError("broker unreachable")

    monkeypatch.setattr(media_tasks.reconcile_orphan, "delay", down)

    assert OrphanLedger(db=None).enqueue("file_1") is False


def test_enqueue(monkeypatch):
    queued = []
    monkeypatch.setattr(media_tasks.reconcile_orphan, "delay", queued.append)

    assert OrphanLedger(db=None).enqueue("file_1") is True
    assert queued == ["file_1"]
