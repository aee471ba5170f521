"""
Tests for job_store.py - state machine, append-only log and set-once result.
"""
import pytest

from kyb.models.kyb_job import JobStatus, PipelineStage
from kyb.schemas.log_entries import ActionRequiredEntry, CompletedEntry, DataEntry, ErrorEntry, Step
from kyb.services.job_store import (
    MAX_ERROR_MESSAGE_LEN,
    InvalidTransitionError,
    JobNotFoundError,
    ResultAlreadySetError,
    percent_complete,
    safe_payload,
)


# ---------------------------------------------------------------------------
# Creation & reads
# ---------------------------------------------------------------------------

class TestCreate:
    """Tests for JobStore.create and reads."""

    def test_new_job_is_pending_with_original_request(self, store):
        """A new job starts pending and its first log entry records the request."""
        job = store.create("Alpha Muscle Gym")

        assert job.status == JobStatus.PENDING
        assert job.current_stage == PipelineStage.IDENTITY_RESOLUTION
        assert job.business_name == job.active_name == "Alpha Muscle Gym"
        assert len(job.id) == 32

        entries = store.entries(job.id)
        assert len(entries) == 1
        assert isinstance(entries[0], DataEntry)
        assert entries[0].step == Step.ORIGINAL_REQUEST
        assert entries[0].data == {"business_name": "Alpha Muscle Gym"}

    def test_unknown_job(self, store):
        assert store.get("missing") is None
        with pytest.raises(JobNotFoundError):
            store.require("missing")
        with pytest.raises(JobNotFoundError):
            store.append_log("missing", Step.ERROR, "error", error="x")

    def test_list_recent(self, store):
        ids = {store.create(name).id for name in ("A Ltd", "B Ltd", "C Ltd")}
        recent = store.list_recent(limit=2)
        assert len(recent) == 2
        assert {job.id for job in recent} <= ids
        assert len(store.list_recent(limit=10, offset=2)) == 1

    def test_log_order_is_append_order(self, store):
        job = store.create("Alpha Muscle Gym")
        recorder = store.recorder(job.id)
        recorder.message(Step.CRN_FALLBACK, "first")
        recorder.error(Step.AI_ERROR, "second")
        recorder.data(Step.CRN_SEARCH_RESULT, {"crn": "12345678"})

        steps = [e.step for e in store.entries(job.id)]
        assert steps == [Step.ORIGINAL_REQUEST, Step.CRN_FALLBACK, Step.AI_ERROR, Step.CRN_SEARCH_RESULT]
        assert store.count_entries(job.id) == 4


# ---------------------------------------------------------------------------
# State machine
# ---------------------------------------------------------------------------

class TestTransitions:
    """Tests for status transitions."""

    def test_pause_and_resume(self, store):
        """processing -> action_required -> processing clears the required fields."""
        job = store.create("Alpha Muscle Gym")
        store.start(job.id)
        store.require_action(job.id, Step.ACTION_REQUIRED, "Need a CRN", {"crn": "Company Registration Number"})

        paused = store.require(job.id)
        assert paused.status == JobStatus.ACTION_REQUIRED
        assert paused.required_fields == {"crn": "Company Registration Number"}
        action = store.entries(job.id)[-1]
        assert isinstance(action, ActionRequiredEntry)
        assert action.message == "Need a CRN"

        store.resume(job.id, {"crn": "12345678"})
        resumed = store.require(job.id)
        assert resumed.status == JobStatus.PROCESSING
        assert resumed.required_fields is None
        last = store.entries(job.id)[-1]
        assert last.step == Step.ADDITIONAL_INFORMATION
        assert last.data == {"crn": "12345678"}

    def test_awaiting_confirmation_follows_last_pause(self, store):
        """Only a pause that asks for confirm_company can be confirmed, and resume keeps it."""
        job = store.create("Northern Lights")
        store.start(job.id)
        store.require_action(
            job.id, Step.CONFIRMATION_REQUIRED, "Confirm", {"confirm_company": "yes", "crn": "or a CRN"}
        )
        assert store.require(job.id).awaiting_confirmation is True

        store.resume(job.id, {"confirm_company": "yes"})
        assert store.require(job.id).awaiting_confirmation is True

        store.require_action(job.id, Step.WRONG_COMPANY, "Wrong company", {"crn": "Correct CRN"})
        assert store.require(job.id).awaiting_confirmation is False

    def test_cannot_resume_a_running_job(self, store):
        job = store.create("Alpha Muscle Gym")
        store.start(job.id)
        with pytest.raises(InvalidTransitionError):
            store.resume(job.id, {"crn": "12345678"})

    def test_cannot_skip_processing(self, store):
        job = store.create("Alpha Muscle Gym")
        with pytest.raises(InvalidTransitionError):
            store.set_result(job.id, {"verification_status": "verified"})

    def test_terminal_states_are_final(self, store):
        job = store.create("Alpha Muscle Gym")
        store.start(job.id)
        store.fail(job.id, "boom")
        with pytest.raises(InvalidTransitionError):
            store.start(job.id)

    def test_require_action_needs_fields(self, store):
        """A pause without anything to ask for is rejected."""
        job = store.create("Alpha Muscle Gym")
        store.start(job.id)
        with pytest.raises(ValueError):
            store.require_action(job.id, Step.ACTION_REQUIRED, "Need something", {})
        assert store.require(job.id).status == JobStatus.PROCESSING


class TestResult:
    """Tests for completion and failure."""

    def test_result_set_once(self, store):
        """The result is written together with the Completed entry, once."""
        job = store.create("Alpha Muscle Gym")
        store.start(job.id)
        store.set_result(job.id, {"verification_status": "verified"})

        done = store.require(job.id)
        assert done.status == JobStatus.COMPLETED
        assert done.current_stage == PipelineStage.DONE
        assert done.completed_at is not None
        completed = store.entries(job.id)[-1]
        assert isinstance(completed, CompletedEntry)
        assert completed.result == done.result == {"verification_status": "verified"}

        with pytest.raises(ResultAlreadySetError):
            store.set_result(job.id, {"verification_status": "warning: CRN mismatch"})

    def test_fail_truncates_message(self, store):
        job = store.create("Alpha Muscle Gym")
        store.start(job.id)
        store.fail(job.id, "x" * 2000)

        failed = store.require(job.id)
        assert failed.status == JobStatus.FAILED
        assert len(failed.error_message) == MAX_ERROR_MESSAGE_LEN
        last = store.entries(job.id)[-1]
        assert isinstance(last, ErrorEntry)
        assert last.step == Step.ERROR


class TestActiveName:
    """Tests for set_active_name."""

    def test_restart_clears_candidate(self, store):
        job = store.create("Alpha Gym")
        store.set_candidate(job.id, "12345678", "ai")
        store.set_active_name(job.id, "Alpha Muscle Gym")

        updated = store.require(job.id)
        assert updated.business_name == "Alpha Gym"
        assert updated.active_name == "Alpha Muscle Gym"
        assert updated.candidate_crn is None
        assert updated.awaiting_confirmation is False
        assert store.entries(job.id)[-1].step == Step.PROCESS_RESTARTED

    def test_relabel_keeps_candidate(self, store):
        job = store.create("Alpha Gym")
        store.set_candidate(job.id, "12345678", "user_provided")
        store.set_active_name(job.id, "Alpha Muscle Gym", restart=False)

        updated = store.require(job.id)
        assert updated.candidate_crn == "12345678"
        assert store.count_entries(job.id) == 1


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

class TestHelpers:
    """Tests for safe_payload and percent_complete."""

    def test_safe_payload_passes_json(self):
        assert safe_payload({"data": {"a": [1, 2]}}) == {"data": {"a": [1, 2]}}

    def test_safe_payload_sentinel(self):
        """Unserialisable payloads are replaced, never dropped."""
        payload = safe_payload({"data": object()})
        assert payload["serialization_error"] is True
        assert payload["message"] == "Log entry payload could not be serialized"

    @pytest.mark.parametrize("status,steps,expected", [
        (JobStatus.PENDING, 0, 0),
        (JobStatus.PROCESSING, 3, 30),
        (JobStatus.PROCESSING, 25, 90),
        (JobStatus.ACTION_REQUIRED, 4, 50),
        (JobStatus.COMPLETED, 12, 100),
        (JobStatus.FAILED, 2, 20),
    ])
    def test_percent_complete(self, status, steps, expected):
        assert percent_complete(status, steps) == expected
