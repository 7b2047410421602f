"""Tests for the scoped working-directory override (workdir.py)."""
from __future__ import annotations

import os

import pytest

from kodrdriv_mcp.core import workdir
from kodrdriv_mcp.core.workdir import working_directory


def test_no_target_leaves_cwd(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    with working_directory(None) as scope:
        assert os.getcwd() == str(tmp_path)
        assert scope.directory == str(tmp_path)
    assert os.getcwd() == str(tmp_path)


def test_changes_and_restores(tmp_path, monkeypatch):
    target = tmp_path / "repo"
    target.mkdir()
    monkeypatch.chdir(tmp_path)
    with working_directory(str(target)) as scope:
        assert os.path.samefile(os.getcwd(), target)
        assert scope.directory == str(target)
    assert os.getcwd() == str(tmp_path)


def test_restores_on_error(tmp_path, monkeypatch):
    target = tmp_path / "repo"
    target.mkdir()
    monkeypatch.chdir(tmp_path)
    with pytest.raises(RuntimeError, match="boom"):
        with working_directory(str(target)):
            raise RuntimeError("boom")
    assert os.getcwd() == str(tmp_path)


def test_missing_target_raises_without_moving(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    with pytest.raises(FileNotFoundError):
        with working_directory(str(tmp_path / "nope")):
            pass
    assert os.getcwd() == str(tmp_path)


def test_restore_failure_does_not_mask_original_error(tmp_path, monkeypatch):
    target = tmp_path / "repo"
    target.mkdir()
    monkeypatch.chdir(tmp_path)
    real_chdir = os.chdir
    calls = []

    def flaky_chdir(path):
        calls.append(path)
        if len(calls) > 1:
            raise PermissionError("cannot go back")
        real_chdir(path)

    monkeypatch.setattr(workdir.os, "chdir", flaky_chdir)
    with pytest.raises(ValueError, match="original"):
        with working_directory(str(target)) as scope:
            raise ValueError("original")
    assert isinstance(scope.restore_error, PermissionError)


def test_restore_failure_on_clean_exit_raises(tmp_path, monkeypatch):
    target = tmp_path / "repo"
    target.mkdir()
    monkeypatch.chdir(tmp_path)
    real_chdir = os.chdir
    calls = []

    def flaky_chdir(path):
        calls.append(path)
        if len(calls) > 1:
            raise PermissionError("cannot go back")
        real_chdir(path)

    monkeypatch.setattr(workdir.os, "chdir", flaky_chdir)
    with pytest.raises(PermissionError):
        with working_directory(str(target)):
            pass
