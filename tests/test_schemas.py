"""Tests for chunkrun schemas.

Tests cover:
- FieldSpec parsing and RecordSchema validation
- Record immutability and field access
- StepState / JobExecution counts and serialization
- SkipPolicy, StepDef, JobDef validation
- RunIdIncrementer
"""

import json
from datetime import datetime, timedelta, timezone

import pytest

from chunkrun.errors import ConfigError
from chunkrun.schemas import (
    BatchStatus,
    FieldSpec,
    JobDef,
    JobExecution,
    Record,
    RecordSchema,
    RunIdIncrementer,
    SkipPolicy,
    StepDef,
    StepState,
)
from chunkrun.sinks import InMemorySink
from chunkrun.transforms import identity


class TestFieldSpec:

    def test_string_is_stripped(self):
        assert FieldSpec("name").parse("  Jill ") == "Jill"

    def test_integer(self):
        assert FieldSpec("age", type="integer").parse(" 42 ") == 42

    def test_number(self):
        assert FieldSpec("score", type="number").parse("1.5") == 1.5

    def test_boolean(self):
        spec = FieldSpec("active", type="boolean")
        assert spec.parse("yes") is True
        assert spec.parse("F") is False
        with pytest.raises(ValueError):
            spec.parse("maybe")

    def test_bad_integer_raises(self):
        with pytest.raises(ValueError):
            FieldSpec("age", type="integer").parse("forty")

    def test_nullable_empty_is_none(self):
        assert FieldSpec("age", type="integer", nullable=True).parse("") is None

    def test_non_nullable_empty_integer_raises(self):
        with pytest.raises(ValueError):
            FieldSpec("age", type="integer").parse("")

    def test_unknown_type_rejected(self):
        with pytest.raises(ValueError, match="unknown type"):
            FieldSpec("born", type="date")

    def test_from_config(self):
        assert FieldSpec.from_config("name") == FieldSpec("name")
        assert FieldSpec.from_config({"name": "age", "type": "integer"}) == FieldSpec("age", "integer")


class TestRecordSchema:

    def test_names_in_order(self):
        schema = RecordSchema.of("first_name", {"name": "age", "type": "integer"})
        assert schema.names == ("first_name", "age")
        assert len(schema) == 2

    def test_empty_rejected(self):
        with pytest.raises(ValueError):
            RecordSchema.of()

    def test_duplicate_names_rejected(self):
        with pytest.raises(ValueError, match="duplicate"):
            RecordSchema.of("a", "a")


class TestRecord:

    @pytest.fixture
    def record(self):
        return Record(("first_name", "last_name"), ("Jill", "Doe"), line_number=1)

    def test_field_access(self, record):
        assert record["first_name"] == "Jill"
        assert record.get("missing") is None
        assert record.get("missing", "x") == "x"
        assert "last_name" in record
        with pytest.raises(KeyError):
            record["missing"]

    def test_is_immutable(self, record):
        with pytest.raises(AttributeError):
            record.values = ("Joe", "Doe")

    def test_replace_returns_new_record(self, record):
        updated = record.replace(first_name="JILL")
        assert updated.as_dict() == {"first_name": "JILL", "last_name": "Doe"}
        assert updated.line_number == 1
        assert record["first_name"] == "Jill"

    def test_replace_unknown_field_raises(self, record):
        with pytest.raises(KeyError):
            record.replace(middle_name="X")

    def test_equality_ignores_line_number(self, record):
        assert record == Record.from_dict({"first_name": "Jill", "last_name": "Doe"})

    def test_mismatched_lengths_rejected(self):
        with pytest.raises(ValueError):
            Record(("a", "b"), ("only one",))


class TestStepState:

    def test_defaults(self):
        state = StepState(name="load")
        assert state.status == BatchStatus.STARTING
        assert state.read_count == 0
        assert state.commit_offset == 0

    def test_policy_skip_count_excludes_filtered_and_rejected(self):
        state = StepState(name="load", skip_count=5, filter_count=2, reject_count=1)
        assert state.policy_skip_count == 2

    def test_finish_records_error(self):
        state = StepState(name="load")
        state.mark_started()
        state.finish(BatchStatus.FAILED, RuntimeError("boom"))
        assert state.status.is_terminal
        assert state.error == {"type": "RuntimeError", "message": "boom"}
        assert state.duration_ms is not None

    def test_resume_from_carries_committed_progress(self):
        prior = StepState(
            name="load", status=BatchStatus.FAILED, read_count=20, write_count=18,
            skip_count=2, commit_count=2, rollback_count=1, commit_offset=20,
        )
        state = StepState.resume_from(prior)
        assert state.status == BatchStatus.STARTING
        assert state.read_count == 20
        assert state.write_count == 18
        assert state.commit_offset == 20
        assert state.rollback_count == 0
        assert state.error is None

    def test_serialization_is_json_safe(self):
        state = StepState(name="load", status=BatchStatus.COMPLETED, read_count=3, write_count=2, skip_count=1)
        state.started_at = datetime(2026, 1, 1, tzinfo=timezone.utc)
        state.completed_at = state.started_at + timedelta(seconds=2)
        data = json.loads(json.dumps(state.to_dict()))
        assert data["status"] == "completed"
        restored = StepState.from_dict(data)
        assert restored == state
        assert restored.duration_ms == 2000


class TestJobExecution:

    def test_totals_sum_steps(self):
        execution = JobExecution(
            execution_id="01ABC",
            job_name="import_people",
            instance_key="key",
            steps=[
                StepState(name="a", read_count=3, write_count=2, skip_count=1),
                StepState(name="b", read_count=4, write_count=4),
            ],
        )
        assert execution.read_count == 7
        assert execution.write_count == 6
        assert execution.skip_count == 1
        assert execution.get_step("b").read_count == 4
        assert execution.get_step("c") is None

    def test_exit_code(self):
        execution = JobExecution(execution_id="01ABC", job_name="j", instance_key="k")
        assert execution.exit_code == 1
        execution.status = BatchStatus.COMPLETED
        assert execution.exit_code == 0

    def test_failed_steps(self):
        execution = JobExecution(
            execution_id="01ABC", job_name="j", instance_key="k",
            steps=[StepState(name="a", status=BatchStatus.COMPLETED), StepState(name="b", status=BatchStatus.FAILED)],
        )
        assert [s.name for s in execution.get_failed_steps()] == ["b"]

    def test_serialization(self):
        execution = JobExecution(
            execution_id="01ABC",
            job_name="import_people",
            instance_key="key",
            parameters={"run.id": 1},
            status=BatchStatus.FAILED,
            steps=[StepState(name="load", status=BatchStatus.FAILED)],
            restart_of="01PRIOR",
            errors=["PersistenceError: boom"],
        )
        restored = JobExecution.from_dict(json.loads(json.dumps(execution.to_dict())))
        assert restored == execution


class TestSkipPolicy:

    def test_defaults_abort_on_malformed(self):
        policy = SkipPolicy()
        assert policy.skip_malformed is False
        assert policy.skip_limit is None
        assert policy.retry_limit == 0

    @pytest.mark.parametrize("kwargs", [
        {"skip_limit": -1},
        {"retry_limit": -1},
        {"retry_backoff_s": -0.5},
    ])
    def test_negative_values_rejected(self, kwargs):
        with pytest.raises(ConfigError):
            SkipPolicy(**kwargs)

    @pytest.mark.parametrize("data, message", [
        ({"skip_limit": "3"}, "skip_limit must be an integer"),
        ({"retry_limit": 1.5}, "retry_limit must be an integer"),
        ({"retry_backoff_s": "1s"}, "retry_backoff_s must be a number"),
        ({"skip_malformed": "yes"}, "skip_malformed must be true or false"),
        ({"skip_limit": True}, "skip_limit must be an integer"),
    ])
    def test_wrong_types_rejected(self, data, message):
        with pytest.raises(ConfigError, match=message):
            SkipPolicy.from_dict(data)

    def test_from_dict(self):
        policy = SkipPolicy.from_dict({"skip_malformed": True, "skip_limit": 3})
        assert policy == SkipPolicy(skip_malformed=True, skip_limit=3)
        assert SkipPolicy.from_dict(None) == SkipPolicy()


def _step(name="load", **kwargs):
    return StepDef(name=name, source=None, transformer=identity(), sink=InMemorySink(), **kwargs)


class TestStepDef:

    def test_chunk_size_must_be_positive(self):
        with pytest.raises(ConfigError, match="chunk_size"):
            _step(chunk_size=0)

    def test_timeout_must_be_positive(self):
        with pytest.raises(ConfigError, match="chunk_timeout_s"):
            _step(chunk_timeout_s=0)

    @pytest.mark.parametrize("kwargs", [{"chunk_size": "10"}, {"chunk_timeout_s": "5"}])
    def test_wrong_types_rejected(self, kwargs):
        with pytest.raises(ConfigError, match=next(iter(kwargs))):
            _step(**kwargs)

    def test_name_required(self):
        with pytest.raises(ConfigError):
            _step(name="")


class TestJobDef:

    def test_requires_steps(self):
        with pytest.raises(ConfigError, match="no steps"):
            JobDef(name="import_people", steps=())

    def test_duplicate_step_names_rejected(self):
        with pytest.raises(ConfigError, match="duplicate"):
            JobDef(name="import_people", steps=(_step("load"), _step("load")))

    def test_get_step(self):
        job = JobDef(name="import_people", steps=(_step("load"), _step("report")))
        assert job.get_step("report").name == "report"
        assert job.get_step("missing") is None


class TestRunIdIncrementer:

    def test_first_run(self):
        assert RunIdIncrementer().next_parameters({"date": "x"}, None) == {"date": "x", "run.id": 1}

    def test_increments_last_run_id(self):
        assert RunIdIncrementer().next_parameters({}, {"run.id": 4}) == {"run.id": 5}

    def test_previous_without_run_id(self):
        assert RunIdIncrementer().next_parameters({}, {"date": "x"}) == {"run.id": 1}
