import tomllib
from pathlib import Path

from mediagen_service.orchestrator import new_job_record
from mediagen_service.version import SERVICE_VERSION, __version__


def test_version_matches_pyproject():
    pyproject = Path(__file__).resolve().parents[1] / "pyproject.toml"
    declared = tomllib.loads(pyproject.read_text(encoding="utf-8"))["project"]["version"]

    assert __version__ == declared
    assert SERVICE_VERSION == declared


def test_records_carry_build_version():
    record = new_job_record("u", prompt="p", now=1)
    assert record["metadata"]["version"] == __version__
