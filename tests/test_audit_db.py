from datetime import datetime, timedelta, timezone

import pytest

from mongo_changes.audit.db import SqliteAuditStore
from mongo_changes.audit.models import AuditRecord, ChangeQuery
from mongo_changes.errors import AuditStoreError

URI = "mongodb://localhost:27017"
BASE = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def db_path(tmp_path):
    return str(tmp_path / "audit.db")


@pytest.fixture
def store(db_path):
    sqlite_store = SqliteAuditStore(db_path)
    yield sqlite_store
    sqlite_store.close()


def _record(change_id="chg-20240501-00000001", status="applied", minutes=0, uri=URI):
    return AuditRecord(
        change_id=change_id,
        uri=uri,
        database="app",
        operation={"type": "createIndex", "collection": "users", "spec": {"email": 1}},
        metadata={"pipeline": "deploy-42"},
        status=status,
        message="index created",
        revert_plan={"type": "dropIndex", "collection": "users", "name": "ix_email"},
        created_at=BASE + timedelta(minutes=minutes),
    )


def test_insert_and_latest_roundtrip(store):
    stored = store.insert(_record())

    loaded = store.latest("chg-20240501-00000001", URI)

    assert stored.record_id
    assert loaded == stored
    assert loaded.created_at == BASE
    assert loaded.metadata == {"pipeline": "deploy-42"}


def test_latest_prefers_newest_attempt(store):
    store.insert(_record(status="failed", minutes=0))
    store.insert(_record(status="applied", minutes=5))

    assert store.latest("chg-20240501-00000001", URI).status == "applied"


def test_latest_breaks_timestamp_ties_by_insertion(store):
    store.insert(_record(status="failed"))
    store.insert(_record(status="skipped"))

    assert store.latest("chg-20240501-00000001", URI).status == "skipped"


def test_latest_is_scoped_to_uri(store):
    store.insert(_record(uri="mongodb://other:27017"))

    assert store.latest("chg-20240501-00000001", URI) is None


def test_list_excludes_reverted_by_default(store):
    store.insert(_record("chg-20240501-00000001", minutes=0))
    reverted = store.insert(_record("chg-20240501-00000002", minutes=1))
    store.insert(_record("chg-20240501-00000003", status="failed", minutes=2))
    store.mark_reverted(reverted, BASE + timedelta(hours=1), "index dropped")

    listing = store.list(URI, ChangeQuery())

    assert listing.total == 2
    assert [item.change_id for item in listing.items] == [
        "chg-20240501-00000003",
        "chg-20240501-00000001",
    ]


def test_list_status_filter_and_paging(store):
    for minute in range(5):
        store.insert(_record(f"chg-20240501-0000000{minute}", minutes=minute))
    store.insert(_record("chg-20240501-000000ff", status="failed", minutes=10))

    listing = store.list(URI, ChangeQuery(statuses=("applied",), limit=2, skip=1))

    assert listing.total == 5
    assert [item.change_id for item in listing.items] == [
        "chg-20240501-00000003",
        "chg-20240501-00000002",
    ]


def test_list_since_filter(store):
    store.insert(_record("chg-20240501-00000001", minutes=0))
    store.insert(_record("chg-20240501-00000002", minutes=30))

    listing = store.list(URI, ChangeQuery(since=BASE + timedelta(minutes=10)))

    assert [item.change_id for item in listing.items] == ["chg-20240501-00000002"]


def test_mark_reverted_updates_record(store):
    stored = store.insert(_record())
    reverted_at = BASE + timedelta(hours=2)

    updated = store.mark_reverted(stored, reverted_at, "index dropped")

    loaded = store.latest(stored.change_id, URI)
    assert updated.status == "reverted"
    assert loaded.status == "reverted"
    assert loaded.reverted_at == reverted_at
    assert loaded.revert_message == "index dropped"


def test_mark_reverted_unknown_record(store):
    with pytest.raises(AuditStoreError):
        store.mark_reverted(_record().with_id("missing"), BASE, "index dropped")


def test_mark_reverted_requires_id(store):
    with pytest.raises(AuditStoreError):
        store.mark_reverted(_record(), BASE, "index dropped")


def test_closed_store_raises_audit_error(db_path):
    store = SqliteAuditStore(db_path)
    store.close()
    store.close()

    with pytest.raises(AuditStoreError):
        store.latest("chg-20240501-00000001", URI)


def test_wal_mode_enabled(store):
    row = store.fetch_one("PRAGMA journal_mode", ())
    assert row[0] == "wal"
