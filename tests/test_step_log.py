import pytest

from stratlens.models.domain import StepLog


def test_slots_move_forward_only():
    log = StepLog().started("validate_inputs", "t0")
    log = log.finished("validate_inputs", "t1")

    with pytest.raises(ValueError):
        log.started("validate_inputs", "t2")
    with pytest.raises(ValueError):
        log.finished("validate_inputs", "t2")
    with pytest.raises(ValueError):
        log.failed("collect_evidence", "t2", {"code": "X"})
    with pytest.raises(ValueError):
        log.started("not_a_step", "t2")


def test_entries_follow_pipeline_order():
    log = StepLog()
    log = log.started("collect_evidence", "t1")
    log = log.started("validate_inputs", "t0")
    assert [e.name for e in log.entries()] == ["validate_inputs", "collect_evidence"]


def test_round_trip_through_list():
    log = StepLog().started("validate_inputs", "t0").finished("validate_inputs", "t1")
    log = log.started("collect_evidence", "t1").failed("collect_evidence", "t2", {"code": "INSUFFICIENT_EVIDENCE"})
    log = StepLog.from_list(log.to_list())

    assert log.get("validate_inputs").status == "done"
    failed = log.get("collect_evidence")
    assert failed.status == "failed"
    assert failed.error == {"code": "INSUFFICIENT_EVIDENCE"}
    assert log.done_count() == 1


def test_skipped_flag_is_recorded():
    log = StepLog().started("competitor_profiles", "t0").finished("competitor_profiles", "t1", skipped=True)
    assert log.to_list() == [
        {"name": "competitor_profiles", "status": "done", "started_at": "t0", "finished_at": "t1", "skipped": True}
    ]
