"""
RepoGuard - workspace, clone and scanner helpers
"""

import shlex
import subprocess
import sys
from pathlib import Path

import pytest

from repoguard import tools
from repoguard.errors import AcquisitionError, ScanExecutionError
from repoguard.tools import (
    acquire_workspace,
    build_helpful_error_detail,
    clone_repository,
    release_workspace,
    run_scanner,
    scan_workspace,
)


def test_acquire_workspace_is_unique_and_under_temp_root():
    first = acquire_workspace()
    second = acquire_workspace()
    try:
        assert first.root != second.root
        assert first.root.is_dir()
        assert first.repo_dir == first.root / "repo"
        assert first.root.name.startswith("repoguard_")
    finally:
        release_workspace(first.root)
        release_workspace(second.root)
    assert not first.root.exists()
    assert not second.root.exists()


def test_scan_workspace_removed_on_exception():
    seen = []
    with pytest.raises(RuntimeError):
        with scan_workspace() as workspace:
            seen.append(workspace.root)
            workspace.repo_dir.mkdir()
            (workspace.repo_dir / "file.txt").write_text("x")
            raise RuntimeError("boom")
    assert seen and not seen[0].exists()


def test_release_workspace_logs_and_swallows_errors(monkeypatch, capsys, tmp_path):
    def _fail(path):
        raise PermissionError("read-only")

    monkeypatch.setattr(tools.shutil, "rmtree", _fail)
    release_workspace(tmp_path)
    assert "failed to clean temporary directory" in capsys.readouterr().out


def test_release_workspace_ignores_missing_and_empty(tmp_path):
    release_workspace(None)
    release_workspace(tmp_path / "never-created")


def test_workspace_creation_failure_is_scan_error(monkeypatch):
    def _no_space(prefix=None):
        raise OSError("No space left on device")

    monkeypatch.setattr(tools.tempfile, "mkdtemp", _no_space)
    with pytest.raises(ScanExecutionError) as exc_info:
        with scan_workspace():
            pass
    assert "No space left" in exc_info.value.details


def test_clone_repository_runs_shallow_clone(monkeypatch, tmp_path):
    calls = []

    def _run(cmd, **kwargs):
        calls.append((cmd, kwargs))
        return subprocess.CompletedProcess(cmd, 0, stdout="", stderr="")

    monkeypatch.setattr(tools.subprocess, "run", _run)
    clone_repository("https://github.com/octo/app", tmp_path / "repo", timeout=30)

    cmd, kwargs = calls[0]
    assert cmd == ["git", "clone", "--depth", "1", "https://github.com/octo/app", str(tmp_path / "repo")]
    assert kwargs["timeout"] == 30
    assert kwargs["env"]["GIT_TERMINAL_PROMPT"] == "0"


def test_clone_repository_failure_carries_stderr(monkeypatch, tmp_path):
    def _run(cmd, **kwargs):
        return subprocess.CompletedProcess(cmd, 128, stdout="", stderr="fatal: repository not found\n")

    monkeypatch.setattr(tools.subprocess, "run", _run)
    with pytest.raises(AcquisitionError) as exc_info:
        clone_repository("https://github.com/octo/missing", tmp_path / "repo")
    assert exc_info.value.details == "fatal: repository not found"
    assert exc_info.value.status_code == 400


def test_clone_repository_timeout(monkeypatch, tmp_path):
    def _run(cmd, **kwargs):
        raise subprocess.TimeoutExpired(cmd, kwargs["timeout"])

    monkeypatch.setattr(tools.subprocess, "run", _run)
    with pytest.raises(AcquisitionError, match="timed out"):
        clone_repository("https://github.com/octo/slow", tmp_path / "repo", timeout=5)


def test_run_scanner_returns_stdout(make_scanner, tmp_path):
    command = make_scanner('{"ok": true}')
    assert run_scanner(command, tmp_path) == '{"ok": true}'


def test_run_scanner_nonzero_exit_with_stdout_is_usable(make_scanner, tmp_path):
    command = make_scanner('{"ok": false, "vulnerabilities": []}', exit_code=1)
    assert run_scanner(command, tmp_path).startswith('{"ok": false')


def test_run_scanner_nonzero_exit_without_stdout_fails(make_scanner, tmp_path):
    command = make_scanner("", exit_code=2, stderr="something broke")
    with pytest.raises(ScanExecutionError) as exc_info:
        run_scanner(command, tmp_path)
    assert exc_info.value.details == "something broke"
    assert exc_info.value.status_code == 500


def test_run_scanner_auth_failure_gets_token_hint(make_scanner, tmp_path):
    command = make_scanner("", exit_code=2, stderr="`snyk` requires an authenticated account. Run `snyk auth`.")
    with pytest.raises(ScanExecutionError) as exc_info:
        run_scanner(command, tmp_path)
    assert "SNYK_TOKEN" in exc_info.value.details


def test_run_scanner_passes_environment(tmp_path):
    command = " ".join(
        shlex.quote(part)
        for part in (sys.executable, "-c", "import os; print(os.environ['SNYK_TOKEN'])")
    )
    assert run_scanner(command, tmp_path, env={"SNYK_TOKEN": "t0ken"}).strip() == "t0ken"


def test_run_scanner_missing_executable(tmp_path):
    with pytest.raises(ScanExecutionError, match="not found"):
        run_scanner("definitely-not-a-real-scanner --json", tmp_path)


def test_run_scanner_timeout(tmp_path):
    command = " ".join(shlex.quote(p) for p in (sys.executable, "-c", "import time; time.sleep(5)"))
    with pytest.raises(ScanExecutionError, match="timed out"):
        run_scanner(command, tmp_path, timeout=1)


def test_run_scanner_runs_in_working_directory(tmp_path):
    command = " ".join(shlex.quote(p) for p in (sys.executable, "-c", "import os; print(os.getcwd())"))
    assert Path(run_scanner(command, tmp_path).strip()).resolve() == tmp_path.resolve()


def test_build_helpful_error_detail():
    assert build_helpful_error_detail("network down") == "network down"
    assert build_helpful_error_detail(None) == ""
    hinted = build_helpful_error_detail("Authentication failed.")
    assert hinted.startswith("Authentication failed.")
    assert hinted.endswith("valid SNYK_TOKEN environment variable.")
