"""
RepoGuard - Workspace, clone and scanner helpers
Handles: request-scoped temp workspaces, shallow git clones, and running the
external scanner (Snyk CLI by default) inside the cloned repository.
"""

import os
import shlex
import shutil
import subprocess
import tempfile
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, Optional

from repoguard.errors import AcquisitionError, ScanExecutionError

SCAN_COMMAND  = os.getenv("SNYK_COMMAND", "npx snyk test --json")
SCAN_TIMEOUT  = int(os.getenv("SCAN_TIMEOUT", "900"))
CLONE_TIMEOUT = int(os.getenv("CLONE_TIMEOUT", "120"))

_AUTH_HINTS = ("snyk auth", "authentication")


@dataclass(frozen=True)
class Workspace:
    root: Path
    repo_dir: Path


# ── Workspace ─────────────────────────────────────────────────────────────────

def acquire_workspace() -> Workspace:
    """Create a fresh, uniquely named directory under the system temp root."""
    try:
        root = Path(tempfile.mkdtemp(prefix="repoguard_"))
    except OSError as exc:
        raise ScanExecutionError(f"Unable to create a scan workspace: {exc}") from exc
    return Workspace(root=root, repo_dir=root / "repo")


def release_workspace(root: Path | str | None) -> None:
    """Remove a workspace tree. Failures are logged, never raised."""
    if not root:
        return
    try:
        shutil.rmtree(root)
    except FileNotFoundError:
        pass
    except OSError as exc:
        print(f"[RepoGuard] WARNING: failed to clean temporary directory {root}: {exc}")


@contextmanager
def scan_workspace() -> Iterator[Workspace]:
    """Yield a workspace that is removed on every exit path."""
    workspace = acquire_workspace()
    try:
        yield workspace
    finally:
        release_workspace(workspace.root)


# ── Clone ─────────────────────────────────────────────────────────────────────

def clone_repository(location: str, destination: Path | str, timeout: int = CLONE_TIMEOUT) -> None:
    """Shallow-clone ``location`` into ``destination``. One attempt, no retry."""
    env = {**os.environ, "GIT_TERMINAL_PROMPT": "0"}
    try:
        result = subprocess.run(
            ["git", "clone", "--depth", "1", location, str(destination)],
            capture_output=True,
            text=True,
            timeout=timeout,
            env=env,
        )
    except FileNotFoundError as exc:
        raise AcquisitionError(f"git executable not found: {exc}") from exc
    except subprocess.TimeoutExpired:
        raise AcquisitionError(f"git clone timed out after {timeout}s")

    if result.returncode != 0:
        raise AcquisitionError(
            result.stderr.strip() or f"git clone exited with status {result.returncode}"
        )


# ── Scanner ───────────────────────────────────────────────────────────────────

def build_helpful_error_detail(details: Optional[str] = "") -> str:
    """Append a credentials hint when the scanner complains about auth."""
    text = str(details or "")
    lowered = text.lower()
    if any(hint in lowered for hint in _AUTH_HINTS):
        return f"{text} Ensure the backend process has a valid SNYK_TOKEN environment variable.".strip()
    return text


def run_scanner(
    command: str,
    cwd: Path | str,
    env: dict[str, str] | None = None,
    timeout: int = SCAN_TIMEOUT,
) -> str:
    """Run the scan command in ``cwd`` and return its stdout.

    Snyk exits non-zero when it *finds* vulnerabilities, so a non-zero exit is
    only a failure when stdout is blank.
    """
    run_env = dict(os.environ) if env is None else env
    try:
        result = subprocess.run(
            shlex.split(command),
            cwd=str(cwd),
            env=run_env,
            capture_output=True,
            text=True,
            timeout=timeout,
        )
    except FileNotFoundError as exc:
        raise ScanExecutionError(build_helpful_error_detail(f"Scanner executable not found: {exc}")) from exc
    except subprocess.TimeoutExpired:
        raise ScanExecutionError(f"Scanner timed out after {timeout}s: {command}")

    stdout = result.stdout or ""
    if result.returncode != 0 and not stdout.strip():
        stderr = (result.stderr or "").strip()
        raise ScanExecutionError(
            build_helpful_error_detail(stderr or f"Command failed with exit code {result.returncode}: {command}")
        )
    if result.returncode != 0:
        print(f"[RepoGuard] Scanner exited with status {result.returncode}; using its stdout.")
    return stdout
