import pytest

from src.core.logging import (
    LogContext,
    add_app_context,
    batch_id_var,
    filename_var,
    stage_var,
    with_logging,
)


def test_log_context_binds_and_restores():
    with LogContext(batch_id="b-1", stage="batch"):
        with LogContext(filename="shoe.jpg"):
            event = add_app_context(None, "info", {"event": "item_processed"})
            assert event["batch_id"] == "b-1"
            assert event["stage"] == "batch"
            assert event["filename"] == "shoe.jpg"
        assert filename_var.get() is None

    assert batch_id_var.get() is None
    assert stage_var.get() is None


def test_explicit_fields_win_over_context():
    with LogContext(filename="ctx.png"):
        event = add_app_context(None, "warning", {"event": "item_skipped", "filename": "explicit.png"})

    assert event["filename"] == "explicit.png"


def test_with_logging_sets_stage_and_resets_on_failure():
    seen = []

    @with_logging("encode")
    def stage():
        seen.append(stage_var.get())
        raise ValueError("bad pixels")

    with pytest.raises(ValueError):
        stage()

    assert seen == ["encode"]
    assert stage_var.get() is None
