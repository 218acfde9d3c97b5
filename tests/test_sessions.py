import pytest
from sqlalchemy import text

from exams_cli.academic_sessions import (
    SessionRegistry,
    create_session,
    get_current_session,
    get_session,
    list_sessions,
)
from exams_cli.cache import TTLCache
from exams_cli.errors import NotFoundError, ValidationError


@pytest.fixture
def officers(make, department):
    return [make.lecturer(department=department, surname=name) for name in ("Dean", "Head", "Officer")]


@pytest.fixture
def registry():
    return SessionRegistry()


def _open(db, officers, title, registry):
    dean, hod, eo = (o.staff_no for o in officers)
    return create_session(db, title, "2023-10-02", dean, hod, eo, registry=registry)


def test_create_session_snapshots_officers(db, officers, registry):
    row = _open(db, officers, "2023/2024", registry)

    assert row.status == "active"
    assert row.is_current
    assert row.session_year == 2023
    assert row.principal_officers["dean"]["staff_no"] == officers[0].staff_no
    assert row.principal_officers["exam_officer"]["name"].startswith("Dr. Officer")
    assert row.promotion_stats["promoted"] == 0
    assert row.promotion_stats["promoted_breakdown"]["100_to_200"] == 0


def test_only_newest_session_is_current(db, officers, registry):
    first = _open(db, officers, "2023/2024", registry)
    second = _open(db, officers, "2024/2025", registry)

    db.refresh(first)
    assert not first.is_current
    assert second.is_current
    assert get_current_session(db, registry).id == second.id


def test_missing_officers_are_listed(db, officers, registry):
    with pytest.raises(NotFoundError) as exc:
        create_session(db, "2023/2024", None, "SP9998", officers[1].staff_no, "SP9999", registry=registry)
    assert "SP9998" in str(exc.value)
    assert "SP9999" in str(exc.value)


def test_title_must_be_a_session(db, officers, registry):
    with pytest.raises(ValidationError):
        _open(db, officers, "2023-2024", registry)
    with pytest.raises(ValidationError):
        _open(db, officers, "2023/2025", registry)


def test_reads_are_cached_until_invalidated(db, officers, registry):
    _open(db, officers, "2023/2024", registry)
    assert [s.title for s in list_sessions(db, registry)] == ["2023/2024"]

    db.execute(text("UPDATE academic_sessions SET title = 'edited'"))
    db.commit()
    assert [s.title for s in list_sessions(db, registry)] == ["2023/2024"]

    _open(db, officers, "2024/2025", registry)
    assert [s.title for s in list_sessions(db, registry)] == ["2024/2025", "edited"]


def test_get_session_by_id_or_title(db, officers, registry):
    row = _open(db, officers, "2023/2024", registry)

    assert get_session(db, row.id).id == row.id
    assert get_session(db, str(row.id)).id == row.id
    assert get_session(db, "2023/2024").id == row.id
    with pytest.raises(NotFoundError):
        get_session(db, "2030/2031")


def test_ttl_cache_expiry_and_invalidation():
    now = [100.0]
    cache = TTLCache(ttl_seconds=10, max_entries=2, clock=lambda: now[0])

    cache.set("a", 1)
    cache.set("b", 2, ttl_seconds=30)
    assert cache.get("a") == 1

    now[0] += 11
    assert cache.get("a") is None
    assert cache.get("b") == 2

    cache.invalidate("b")
    assert "b" not in cache

    cache.set("c", 3)
    cache.set("d", 4)
    cache.set("e", 5)
    assert len(cache) == 2
    assert cache.get_or_load("f", lambda: 6) == 6


class _ExpiresOnRead(TTLCache):
    """Reports every key as present, then finds it expired on read."""

    def __contains__(self, key):
        return True

    def get(self, key, default=None):
        return default


def test_current_session_survives_expiry_during_lookup(db, officers, registry):
    row = _open(db, officers, "2023/2024", registry)
    registry._cache = _ExpiresOnRead(60)

    current = get_current_session(db, registry)

    assert current is not None
    assert current.id == row.id
