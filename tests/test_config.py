from pathlib import Path

import pytest
import yaml

from chunkrun.config import JobConfig, load_config
from chunkrun.errors import ConfigError


def job_data(**overrides):
    data = {
        "job": {"name": "import_people", "incrementer": "run_id"},
        "steps": [
            {
                "name": "load_people",
                "chunk_size": 5,
                "source": {"type": "csv", "path": "in/people.csv", "fields": ["first_name", "last_name"]},
                "transform": {"type": "uppercase", "fields": ["first_name"]},
                "sink": {"type": "sqlite", "database": "people.db", "sql": "INSERT INTO people VALUES (:first_name)"},
                "skip_policy": {"skip_malformed": True, "skip_limit": 3},
            }
        ],
    }
    data.update(overrides)
    return data


@pytest.fixture
def write_config(tmp_path):
    def _write(data, name="job.yaml"):
        path = tmp_path / name
        path.write_text(data if isinstance(data, str) else yaml.dump(data))
        return path
    return _write


def test_load_config_valid(write_config, tmp_path):
    cfg = load_config(write_config(job_data()))

    assert isinstance(cfg, JobConfig)
    assert cfg.name == "import_people"
    assert cfg.incrementer == "run_id"
    assert cfg.restartable is True

    step = cfg.get_step("load_people")
    assert step.chunk_size == 5
    assert step.skip_policy == {"skip_malformed": True, "skip_limit": 3}
    assert cfg.get_step("missing") is None


def test_relative_paths_resolved_against_config_dir(write_config, tmp_path):
    cfg = load_config(write_config(job_data()))
    step = cfg.steps[0]

    assert step.source["path"] == str(tmp_path.resolve() / "in" / "people.csv")
    assert step.sink["database"] == str(tmp_path.resolve() / "people.db")


def test_absolute_and_memory_paths_untouched(write_config, tmp_path):
    data = job_data()
    data["steps"][0]["source"]["path"] = "/data/people.csv"
    data["steps"][0]["sink"]["database"] = ":memory:"

    step = load_config(write_config(data)).steps[0]

    assert step.source["path"] == "/data/people.csv"
    assert step.sink["database"] == ":memory:"


def test_defaults(write_config, tmp_path):
    data = job_data()
    del data["steps"][0]["transform"]
    del data["steps"][0]["chunk_size"]

    cfg = load_config(write_config(data))

    assert cfg.steps[0].transform == {"type": "identity"}
    assert cfg.steps[0].chunk_size == 10
    assert cfg.get_store_path() == tmp_path.resolve() / ".chunkrun" / "runs"
    assert cfg.get_log_file_path() is None
    assert cfg.get_log_level() == "INFO"
    assert cfg.get_log_format() == "pretty"
    assert cfg.should_log_to_console() is True


def test_logging_section(write_config, tmp_path):
    data = job_data(logging={"level": "debug", "format": "structured", "output": "logs/run-{date}.log", "console": False})
    cfg = load_config(write_config(data))

    log_path = cfg.get_log_file_path()
    assert log_path.parent == tmp_path.resolve() / "logs"
    assert log_path.name.startswith("run-20")
    assert "{date}" not in log_path.name
    assert cfg.get_log_level() == "DEBUG"
    assert cfg.get_log_format() == "structured"
    assert cfg.should_log_to_console() is False


def test_store_path(write_config, tmp_path):
    cfg = load_config(write_config(job_data(store={"path": "/var/chunkrun"})))
    assert cfg.get_store_path() == Path("/var/chunkrun")


def test_load_config_missing_file(tmp_path):
    with pytest.raises(ConfigError, match="not found"):
        load_config(tmp_path / "nope.yaml")


@pytest.mark.parametrize("content, message", [
    ("job: [unclosed", "Invalid YAML"),
    ("", "empty"),
    ("- a\n- b\n", "mapping"),
])
def test_load_config_bad_file(write_config, content, message):
    with pytest.raises(ConfigError, match=message):
        load_config(write_config(content))


def test_missing_job_name(write_config):
    with pytest.raises(ConfigError, match="job.name"):
        load_config(write_config(job_data(job={})))


def test_unknown_incrementer(write_config):
    with pytest.raises(ConfigError, match="incrementer"):
        load_config(write_config(job_data(job={"name": "j", "incrementer": "timestamp"})))


def test_no_steps(write_config):
    with pytest.raises(ConfigError, match="no steps"):
        load_config(write_config(job_data(steps=[])))


def test_duplicate_step_names(write_config):
    data = job_data()
    data["steps"].append(dict(data["steps"][0]))
    with pytest.raises(ConfigError, match="duplicate step names"):
        load_config(write_config(data))


@pytest.mark.parametrize("change, message", [
    ({"chunk_size": 0}, "chunk_size"),
    ({"chunk_size": "ten"}, "chunk_size"),
    ({"source": None}, "missing 'source'"),
    ({"sink": {"database": "x.db"}}, "sink is missing 'type'"),
    ({"name": None}, "missing 'name'"),
    ({"chunk_timeout_s": "5"}, "chunk_timeout_s must be a positive number"),
    ({"chunk_timeout_s": 0}, "chunk_timeout_s"),
    ({"skip_policy": ["skip_malformed"]}, "skip_policy must be a mapping"),
    ({"skip_policy": {"skip_limit": "3"}}, "skip_limit must be an integer"),
    ({"skip_policy": {"skip_write_failures": "no"}}, "skip_write_failures must be true or false"),
])
def test_invalid_step(write_config, change, message):
    data = job_data()
    data["steps"][0].update(change)
    with pytest.raises(ConfigError, match=message):
        load_config(write_config(data))


def test_unknown_log_format(write_config):
    with pytest.raises(ConfigError, match="log format"):
        load_config(write_config(job_data(logging={"format": "xml"})))
