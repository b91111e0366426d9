import pytest

from chunkrun.schemas import RecordSchema
from chunkrun.sources import DelimitedFileSource


@pytest.fixture
def people_schema():
    return RecordSchema.of("first_name", "last_name")


@pytest.fixture
def write_csv(tmp_path):
    """Write lines to a CSV file under tmp_path and return its path."""
    def _write(lines, name="input.csv"):
        path = tmp_path / name
        path.write_text("".join(f"{line}\n" for line in lines))
        return path
    return _write


@pytest.fixture
def people_source(write_csv, people_schema):
    """Build a DelimitedFileSource over the given lines."""
    def _source(lines):
        return DelimitedFileSource(write_csv(lines), people_schema)
    return _source
