# tests/test_database.py
import pytest

from speedsnapshot.database import (
    LocalSqliteDatabase,
    MAX_QUERY_LIMIT,
    _build_query,
    get_db_client,
)


@pytest.fixture
def test_db(tmp_path):
    """Pytest fixture to set up and tear down a test database."""
    db = LocalSqliteDatabase(db_url=f"sqlite:///{tmp_path / 'test_reports.db'}")
    yield db
    db.close()


def _row(**overrides):
    row = {
        "group_id": "1760691900000",
        "case_id": "261017090512",
        "url": "https://example.com/",
        "device": "mobile",
        "perf_with": 92,
        "perf_without": 61,
        "fcp_with_s": 1.2,
        "fcp_without_s": 2.1,
        "lcp_with_s": 2.4,
        "lcp_without_s": 3.9,
        "tbt_with_ms": 120,
        "tbt_without_ms": 480,
        "cls_with": 0.01,
        "cls_without": 0.12,
    }
    row.update(overrides)
    return row


def test_save_and_get_by_id(test_db):
    report_id = test_db.save_report(_row())

    rows = test_db.query_reports(id=report_id)

    assert len(rows) == 1
    assert rows[0]["url"] == "https://example.com/"
    assert rows[0]["perf_with"] == 92
    assert rows[0]["tbt_without_ms"] == 480.0
    assert rows[0]["created_at"] is not None


def test_save_is_idempotent_per_group_and_device(test_db):
    first = test_db.save_report(_row())
    second = test_db.save_report(_row(perf_with=10))

    assert first == second
    rows = test_db.query_reports(group_id="1760691900000")
    assert len(rows) == 1
    assert rows[0]["perf_with"] == 92


def test_group_lookup_returns_all_devices(test_db):
    test_db.save_report(_row(device="mobile"))
    test_db.save_report(_row(device="desktop"))
    test_db.save_report(_row(group_id="other"))

    rows = test_db.query_reports(group_id="1760691900000")

    assert [r["device"] for r in rows] == ["desktop", "mobile"]


def test_lookup_by_case_id_and_url(test_db):
    test_db.save_report(_row(group_id="a", case_id="CASE-1"))
    test_db.save_report(_row(group_id="b", case_id="CASE-2", url="https://other.example/"))

    assert [r["group_id"] for r in test_db.query_reports(case_id="CASE-2")] == ["b"]
    assert [r["group_id"] for r in test_db.query_reports(url="https://example.com/")] == ["a"]
    assert test_db.query_reports(case_id="missing") == []


def test_latest_reports_newest_first(test_db):
    for i in range(3):
        test_db.save_report(_row(group_id=f"g{i}"))

    rows = test_db.query_reports(limit=2)

    assert [r["group_id"] for r in rows] == ["g2", "g1"]
    assert "fcp_with_s" not in rows[0]


def test_missing_required_field(test_db):
    with pytest.raises(ValueError, match="Missing field: device"):
        test_db.save_report(_row(device=""))


def test_blank_case_id_stored_as_null(test_db):
    report_id = test_db.save_report(_row(case_id=""))
    assert test_db.query_reports(id=report_id)[0]["case_id"] is None


def test_build_query_precedence_and_limit():
    sql, params = _build_query(id=3, url="https://example.com/", group_id="g")
    assert "group_id = ?" in sql and params == ["g"]

    sql, params = _build_query(id=3, url="https://example.com/")
    assert "id = ?" in sql and params == [3]

    sql, _ = _build_query(limit=10_000)
    assert sql.endswith(f"LIMIT {MAX_QUERY_LIMIT}")


def test_get_db_client_unknown_backend():
    with pytest.raises(ValueError, match="Unknown database backend"):
        get_db_client("postgres")


def test_get_db_client_local(tmp_path):
    db = get_db_client("local", db_url=f"sqlite:///{tmp_path / 'factory.db'}")
    try:
        assert isinstance(db, LocalSqliteDatabase)
    finally:
        db.close()
