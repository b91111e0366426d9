"""Tests for RunStore implementations."""

from datetime import datetime, timedelta, timezone

import pytest

from chunkrun.run_store import FileRunStore, InMemoryRunStore, generate_ulid
from chunkrun.schemas import BatchStatus, JobExecution, StepState

BASE_TIME = datetime(2026, 1, 1, tzinfo=timezone.utc)


def make_execution(job_name="import_people", instance_key="key-1", offset_s=0, **kwargs):
    return JobExecution(
        execution_id=generate_ulid(),
        job_name=job_name,
        instance_key=instance_key,
        started_at=BASE_TIME + timedelta(seconds=offset_s),
        **kwargs,
    )


class TestGenerateUlid:

    def test_format(self):
        ulid = generate_ulid()
        assert len(ulid) == 26
        assert set(ulid) <= set("0123456789ABCDEFGHJKMNPQRSTVWXYZ")

    def test_unique(self):
        assert len({generate_ulid() for _ in range(100)}) == 100


@pytest.fixture(params=["memory", "file"])
def store(request, tmp_path):
    if request.param == "memory":
        return InMemoryRunStore()
    return FileRunStore(tmp_path / "runs")


class TestRunStore:

    def test_save_and_get(self, store):
        execution = make_execution(parameters={"run.id": 1})
        store.save_execution(execution)

        loaded = store.get_execution(execution.execution_id)
        assert loaded == execution

    def test_get_missing(self, store):
        assert store.get_execution("01MISSING") is None

    def test_save_overwrites(self, store):
        execution = make_execution()
        store.save_execution(execution)
        execution.status = BatchStatus.COMPLETED
        execution.steps.append(StepState(name="load", status=BatchStatus.COMPLETED, write_count=3))
        store.save_execution(execution)

        loaded = store.get_execution(execution.execution_id)
        assert loaded.status == BatchStatus.COMPLETED
        assert loaded.get_step("load").write_count == 3
        assert len(store.list_executions()) == 1

    def test_saved_snapshot_not_affected_by_later_mutation(self, store):
        execution = make_execution()
        store.save_execution(execution)
        execution.status = BatchStatus.FAILED

        assert store.get_execution(execution.execution_id).status == BatchStatus.STARTING

    def test_list_ordered_by_start_time(self, store):
        later = make_execution(offset_s=10)
        earlier = make_execution(offset_s=0)
        other_job = make_execution(job_name="other", offset_s=5)
        for execution in (later, earlier, other_job):
            store.save_execution(execution)

        assert [e.execution_id for e in store.list_executions("import_people")] == [
            earlier.execution_id,
            later.execution_id,
        ]
        assert len(store.list_executions()) == 3
        assert store.list_executions("unknown") == []

    def test_find_executions_by_instance(self, store):
        first = make_execution(instance_key="a", offset_s=0)
        second = make_execution(instance_key="b", offset_s=1)
        third = make_execution(instance_key="a", offset_s=2)
        for execution in (first, second, third):
            store.save_execution(execution)

        assert [e.execution_id for e in store.find_executions("import_people", "a")] == [
            first.execution_id,
            third.execution_id,
        ]

    def test_get_last_execution(self, store):
        assert store.get_last_execution("import_people") is None
        store.save_execution(make_execution(offset_s=0))
        latest = make_execution(offset_s=30)
        store.save_execution(latest)

        assert store.get_last_execution("import_people").execution_id == latest.execution_id


class TestFileRunStore:

    def test_layout(self, tmp_path):
        store = FileRunStore(tmp_path / "runs")
        execution = make_execution()
        store.save_execution(execution)

        path = tmp_path / "runs" / "executions" / "import_people" / f"{execution.execution_id}.json"
        assert path.exists()
        assert not path.with_suffix(".json.tmp").exists()
        assert store.store_dir == tmp_path / "runs"

    def test_survives_new_instance(self, tmp_path):
        execution = make_execution()
        FileRunStore(tmp_path / "runs").save_execution(execution)

        assert FileRunStore(tmp_path / "runs").get_execution(execution.execution_id) == execution


class TestInMemoryRunStore:

    def test_clear(self):
        store = InMemoryRunStore()
        store.save_execution(make_execution())
        store.clear()
        assert store.list_executions() == []
