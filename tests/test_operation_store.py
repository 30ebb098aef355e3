"""Tests for the operation store state machine."""

import pytest

from advance_weekly.db.operation_store import OperationStore, clamp_progress
from advance_weekly.errors import OperationStateError
from advance_weekly.schemas.operations import OperationStatus, OperationType


@pytest.fixture
def store(session_factory):
    db = session_factory()
    yield OperationStore(db)
    db.close()


@pytest.fixture
def queued(store, make_user):
    return store.create(make_user(), OperationType.WEEKLY_ANALYSIS, {"week": 30}).id


def _reload(store, operation_id):
    store.db.expire_all()
    return store.get(operation_id)


def test_create_is_queued(store, queued):
    operation = store.get(queued)
    assert operation.status == OperationStatus.QUEUED.value
    assert operation.progress == 0
    assert operation.input_data == {"week": 30}
    assert operation.started_at is None


def test_claim_only_once(store, queued):
    assert store.claim(queued) is True
    assert store.claim(queued) is False

    operation = _reload(store, queued)
    assert operation.status == OperationStatus.RUNNING.value
    assert operation.started_at is not None


def test_progress_requires_running(store, queued):
    assert store.update_progress(queued, 10) is False
    assert _reload(store, queued).progress == 0


def test_progress_is_clamped_and_monotonic(store, queued):
    store.claim(queued)

    assert store.update_progress(queued, 40, "halfway-ish") is True
    assert store.update_progress(queued, 20, "going back") is False
    operation = _reload(store, queued)
    assert operation.progress == 40
    assert operation.current_step == "halfway-ish"

    store.update_progress(queued, 250)
    assert _reload(store, queued).progress == 100


def test_complete_sets_result(store, queued):
    store.claim(queued)
    store.complete(queued, {"ok": True})

    operation = _reload(store, queued)
    assert operation.status == OperationStatus.COMPLETED.value
    assert operation.result_data == {"ok": True}
    assert operation.error_message is None
    assert operation.progress == 100
    assert operation.completed_at is not None


def test_fail_sets_message(store, queued):
    store.claim(queued)
    store.fail(queued, "boom")

    operation = _reload(store, queued)
    assert operation.status == OperationStatus.FAILED.value
    assert operation.error_message == "boom"
    assert operation.result_data is None


def test_terminal_transitions_require_running(store, queued):
    with pytest.raises(OperationStateError):
        store.complete(queued, {})

    store.claim(queued)
    store.fail(queued, "first")
    with pytest.raises(OperationStateError):
        store.complete(queued, {})
    assert _reload(store, queued).status == OperationStatus.FAILED.value


def test_find_open_ignores_failed(store, make_user):
    owner = make_user()
    failed = store.create(owner, OperationType.WEEKLY_REFLECTION, idempotency_key="k")
    store.claim(failed.id)
    store.fail(failed.id, "nope")

    assert store.find_open(owner, OperationType.WEEKLY_REFLECTION, "k") is None

    retry = store.create(owner, OperationType.WEEKLY_REFLECTION, idempotency_key="k")
    assert store.find_open(owner, OperationType.WEEKLY_REFLECTION, "k").id == retry.id


def test_list_queued_oldest_first(store, make_user):
    owner = make_user()
    ids = [store.create(owner, OperationType.WEEKLY_ANALYSIS).id for _ in range(3)]
    store.claim(ids[1])

    assert [operation.id for operation in store.list_queued()] == [ids[0], ids[2]]


def test_list_running(store, queued):
    assert store.list_running() == []
    store.claim(queued)
    assert [operation.id for operation in store.list_running()] == [queued]


@pytest.mark.parametrize("value,expected", [(-5, 0), (0, 0), (55.7, 55), (100, 100), (101, 100)])
def test_clamp_progress(value, expected):
    assert clamp_progress(value) == expected
