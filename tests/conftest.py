"""Shared fixtures for apiman tests."""

import json

import pytest
from click.testing import CliRunner

from apiman import core
from apiman.core import Workspace
from apiman.executor import RequestResult


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture(autouse=True)
def global_apiman_dir(tmp_path, monkeypatch):
    """Override the global ~/.apiman directory to a temp location."""
    fake_global = tmp_path / "fake_home" / ".apiman"
    fake_global.mkdir(parents=True)
    monkeypatch.setattr(core, "GLOBAL_DIR", fake_global)
    monkeypatch.setattr(core, "GLOBAL_CONFIG", fake_global / "config.yaml")
    return fake_global


@pytest.fixture
def tmp_project(tmp_path, monkeypatch):
    """Empty project directory used as CWD."""
    project = tmp_path / "project"
    project.mkdir()
    monkeypatch.chdir(project)
    return project


@pytest.fixture
def workspace(tmp_project):
    """Freshly seeded workspace in the project directory."""
    return Workspace(tmp_project)


def write_json(path, data):
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(data, indent=2))


def make_request_result(
    status_code=200,
    body=None,
    headers=None,
    elapsed_ms=42.0,
    reason="OK",
):
    """Factory for mock RequestResult objects."""
    r = RequestResult()
    r.status_code = status_code
    r.reason = reason
    r.headers = headers or {}
    r.elapsed_ms = elapsed_ms
    if isinstance(body, dict | list):
        r.text = json.dumps(body)
    else:
        r.text = body or ""
    r.content = r.text.encode()
    return r
