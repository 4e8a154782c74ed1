import os

import pytest

from rollguard import cli
from rollguard.engine import RollIntegrityEngine

ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))


@pytest.fixture
def engine(context, monkeypatch):
    engine = RollIntegrityEngine(context)
    monkeypatch.setattr(cli, "build_engine", lambda: engine)
    return engine


def test_console_script_points_into_package():
    with open(os.path.join(ROOT, "pyproject.toml"), encoding="utf-8") as f:
        pyproject = f.read()

    assert 'rollguard = "rollguard.cli:main"' in pyproject
    assert "py-modules" not in pyproject
    assert 'readme = "README.md"' in pyproject
    assert os.path.exists(os.path.join(ROOT, "README.md"))


def test_main_runs_subcommand(engine, store):
    assert cli.main(["--actor", "ero.mumbai", "verify-chain"]) == 0
    assert cli.main(["commit", "no-such-batch"]) == 1


def test_parser_requires_a_command():
    with pytest.raises(SystemExit):
        cli.build_parser().parse_args([])
