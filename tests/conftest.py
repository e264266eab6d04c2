"""Shared test fixtures for RepoGuard tests."""

from __future__ import annotations

import json
import shlex
import sys
import textwrap
from pathlib import Path
from typing import Callable

import pytest

from repoguard.agents import ActionPlanAgent

_FAKE_SCANNER = textwrap.dedent(
    """
    import sys
    with open(sys.argv[1], encoding="utf-8") as fh:
        sys.stdout.write(fh.read())
    sys.stderr.write(sys.argv[2])
    sys.exit(int(sys.argv[3]))
    """
)


@pytest.fixture
def make_scanner(tmp_path: Path) -> Callable[..., str]:
    """Return a factory building a scan command that prints canned output."""
    script = tmp_path / "fake_scanner.py"
    script.write_text(_FAKE_SCANNER, encoding="utf-8")
    counter = {"n": 0}

    def _make(stdout: str = "", exit_code: int = 0, stderr: str = "") -> str:
        counter["n"] += 1
        out_file = tmp_path / f"scanner_out_{counter['n']}.txt"
        out_file.write_text(stdout, encoding="utf-8")
        return " ".join(
            shlex.quote(part)
            for part in (sys.executable, str(script), str(out_file), stderr, str(exit_code))
        )

    return _make


@pytest.fixture
def rules_planner() -> ActionPlanAgent:
    """Planner with the delegated path disabled."""
    return ActionPlanAgent(api_key="")


@pytest.fixture
def cloned(monkeypatch) -> list[Path]:
    """Replace git clone with a stub that creates the destination directory.

    The returned list collects every clone destination, so tests can check
    the workspace is gone afterwards.
    """
    destinations: list[Path] = []

    def _fake_clone(location, destination, timeout=None):
        destination = Path(destination)
        destination.mkdir(parents=True)
        (destination / "package.json").write_text("{}", encoding="utf-8")
        destinations.append(destination)

    monkeypatch.setattr("repoguard.pipeline.clone_repository", _fake_clone)
    return destinations


def snyk_issue(**overrides) -> dict:
    issue = {
        "id": "SNYK-JS-LODASH-567746",
        "title": "Prototype Pollution",
        "severity": "high",
        "packageName": "lodash",
        "version": "4.17.15",
        "from": ["my-app@1.0.0", "lodash@4.17.15"],
        "description": "## Overview\nlodash is vulnerable to Prototype Pollution.",
        "url": "https://security.snyk.io/vuln/SNYK-JS-LODASH-567746",
        "publicationTime": "2020-04-28T14:32:13Z",
        "upgradePath": [False, "lodash@4.17.16"],
        "isPatched": False,
    }
    issue.update(overrides)
    return issue


@pytest.fixture
def snyk_payload() -> dict:
    return {
        "ok": False,
        "projectName": "my-app",
        "packageManager": "npm",
        "dependencyCount": 42,
        "displayTargetFile": "package-lock.json",
        "targetFile": "package.json",
        "issues": {
            "vulnerabilities": [
                snyk_issue(),
                snyk_issue(
                    id="SNYK-JS-MINIMIST-559764",
                    severity="critical",
                    packageName="minimist",
                    upgradePath=[],
                    isPatched=True,
                ),
            ],
            "licenses": [
                {"id": "snyk:lic:npm:gpl:GPL-3.0", "title": "GPL-3.0 license", "severity": "medium", "packageName": "gpl-lib"},
            ],
        },
    }


@pytest.fixture
def snyk_output(snyk_payload) -> str:
    return json.dumps(snyk_payload)


@pytest.fixture
def make_issue() -> Callable[..., dict]:
    return snyk_issue
