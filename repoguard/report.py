"""
RepoGuard - Scan report normalization
Turns raw Snyk JSON (current ``issues.vulnerabilities`` shape or the legacy
top-level ``vulnerabilities`` shape) into one canonical report model.
"""

import json
from collections.abc import Mapping
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator
from pydantic.alias_generators import to_camel

from repoguard.errors import FormatError, ToolReportedError
from repoguard.tools import build_helpful_error_detail

SEVERITY_ORDER = ("critical", "high", "medium", "low")
UNKNOWN_PROJECT = "Unknown project"

Severity = Literal["critical", "high", "medium", "low"]


def _zero_counts() -> dict[str, int]:
    return {severity: 0 for severity in SEVERITY_ORDER}


class WireModel(BaseModel):
    """snake_case in Python, camelCase on the wire (the scanner's own casing)."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


# ── Findings ──────────────────────────────────────────────────────────────────
# Field defaults below are the mapping table: a missing scalar is None, a
# missing list is [], a missing patch flag is False.

class _Finding(WireModel):
    id: Optional[str] = None
    title: Optional[str] = None
    severity: Optional[Severity] = None
    package_name: Optional[str] = None
    version: Optional[str] = None
    dependency_path: list[str] = Field(default_factory=list, alias="from")
    description: Optional[str] = None
    url: Optional[str] = None
    publication_time: Optional[str] = None

    @model_validator(mode="before")
    @classmethod
    def _url_from_identifiers(cls, data: Any) -> Any:
        if not isinstance(data, Mapping) or data.get("url"):
            return data
        identifiers = data.get("identifiers")
        urls = identifiers.get("url") if isinstance(identifiers, Mapping) else None
        if isinstance(urls, list) and urls and urls[0]:
            return {**data, "url": urls[0]}
        return data

    @field_validator("id", "title", "package_name", "version", "description", "url", mode="before")
    @classmethod
    def _text(cls, value: Any) -> Optional[str]:
        if value is None or value == "":
            return None
        return value if isinstance(value, str) else str(value)

    @field_validator("publication_time", mode="before")
    @classmethod
    def _timestamp(cls, value: Any) -> Optional[str]:
        if not value:
            return None
        return value if isinstance(value, str) else str(value)

    @field_validator("severity", mode="before")
    @classmethod
    def _known_severity(cls, value: Any) -> Optional[str]:
        if isinstance(value, str) and value.strip().lower() in SEVERITY_ORDER:
            return value.strip().lower()
        return None

    @field_validator("dependency_path", mode="before")
    @classmethod
    def _path(cls, value: Any) -> list[str]:
        if not isinstance(value, list):
            return []
        return [str(item) for item in value if item is not None]


class CanonicalLicenseIssue(_Finding):
    """A license-policy finding."""


class CanonicalIssue(_Finding):
    """A security vulnerability finding."""

    upgrade_path: list[str | bool | None] = Field(default_factory=list)
    is_patched: bool = False

    @field_validator("upgrade_path", mode="before")
    @classmethod
    def _upgrade_path(cls, value: Any) -> list:
        if not isinstance(value, list):
            return []
        return [item if item is None or isinstance(item, (str, bool)) else str(item) for item in value]

    @field_validator("is_patched", mode="before")
    @classmethod
    def _patched(cls, value: Any) -> bool:
        return bool(value)


# ── Report ────────────────────────────────────────────────────────────────────

class CanonicalReport(WireModel):
    ok: bool = False
    project_name: str = UNKNOWN_PROJECT
    severity_counts: dict[str, int] = Field(default_factory=_zero_counts, alias="summary")
    issues: list[CanonicalIssue] = Field(default_factory=list)
    licenses: list[CanonicalLicenseIssue] = Field(default_factory=list)
    project_type: Optional[str] = None
    repository_url: Optional[str] = None
    repository_accessible: bool = True
    scan_target_files: list[str] = Field(default_factory=list)
    primary_target_file: Optional[str] = None
    scan_command: Optional[str] = Field(default=None, alias="snykCommand")
    dependency_count: Optional[int | float] = None
    raw: Any = None

    @field_validator("dependency_count", mode="before")
    @classmethod
    def _number(cls, value: Any) -> Optional[int | float]:
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            return None
        return value

    @model_validator(mode="after")
    def _recount(self) -> "CanonicalReport":
        # counts are always derived from the issue list
        self.severity_counts = count_severities(self.issues)
        return self


def count_severities(issues: list[CanonicalIssue]) -> dict[str, int]:
    counters = _zero_counts()
    for issue in issues:
        if issue.severity in counters:
            counters[issue.severity] += 1
    return counters


# ── Payload helpers ───────────────────────────────────────────────────────────

def derive_repo_name(repo_url: Optional[str]) -> str:
    """'https://github.com/owner/repo.git' -> 'owner/repo'."""
    if not isinstance(repo_url, str):
        return ""
    cleaned = repo_url.strip()
    if cleaned.endswith(".git"):
        cleaned = cleaned[: -len(".git")]
    parts = [part for part in cleaned.split("/") if part]
    return "/".join(parts[-2:])


def _decode_findings(payload: Mapping) -> tuple[list, list]:
    """Return (vulnerabilities, licenses) from either scanner schema."""
    issues = payload.get("issues")
    if isinstance(issues, Mapping):
        nested_vulns = issues.get("vulnerabilities")
        nested_licenses = issues.get("licenses")
    else:
        nested_vulns = nested_licenses = None

    if isinstance(nested_vulns, list):
        vulns = nested_vulns
    elif isinstance(payload.get("vulnerabilities"), list):
        vulns = payload["vulnerabilities"]
    else:
        vulns = []
    licenses = nested_licenses if isinstance(nested_licenses, list) else []
    return vulns, licenses


def resolve_project_name(payload: Mapping, repo_url: Optional[str] = None) -> str:
    names = payload.get("projectNames")
    candidates = (
        payload.get("projectName"),
        names[0] if isinstance(names, list) and names else None,
        payload.get("displayTargetFile"),
        derive_repo_name(repo_url),
    )
    for candidate in candidates:
        if isinstance(candidate, str) and candidate.strip():
            return candidate
    return UNKNOWN_PROJECT


def collect_target_files(payload: Mapping) -> list[str]:
    """Scanned manifest paths, deduplicated in first-seen order."""
    candidates = [payload.get("displayTargetFile"), payload.get("targetFile")]
    if isinstance(payload.get("targetFiles"), list):
        candidates.extend(payload["targetFiles"])

    targets: list[str] = []
    for value in candidates:
        if not isinstance(value, str):
            continue
        trimmed = value.strip()
        if trimmed and trimmed not in targets:
            targets.append(trimmed)
    return targets


def format_scan_payload(
    payload: Mapping,
    repo_url: Optional[str] = None,
    scan_command: Optional[str] = None,
) -> CanonicalReport:
    """Map a decoded scanner payload onto ``CanonicalReport``."""
    vulns, licenses = _decode_findings(payload)
    targets = collect_target_files(payload)

    dependency_count = payload.get("dependencyCount")
    summary = payload.get("summary")
    if dependency_count is None and isinstance(summary, Mapping):
        dependency_count = summary.get("dependencyCount")

    return CanonicalReport(
        ok=bool(payload.get("ok")),
        project_name=resolve_project_name(payload, repo_url),
        issues=[CanonicalIssue.model_validate(item) for item in vulns if isinstance(item, Mapping)],
        licenses=[CanonicalLicenseIssue.model_validate(item) for item in licenses if isinstance(item, Mapping)],
        project_type=payload.get("projectType") or payload.get("packageManager") or None,
        repository_url=repo_url or payload.get("projectUrl") or None,
        # only reached after a successful clone
        repository_accessible=True,
        scan_target_files=targets,
        primary_target_file=targets[0] if targets else None,
        scan_command=scan_command or None,
        dependency_count=dependency_count,
        raw=dict(payload),
    )


def normalize_scan_output(
    raw_text: str,
    repo_url: Optional[str] = None,
    scan_command: Optional[str] = None,
) -> CanonicalReport:
    """Parse scanner stdout into a ``CanonicalReport``.

    Raises ``FormatError`` for undecodable output and ``ToolReportedError``
    when the payload is the scanner reporting its own failure.
    """
    try:
        payload = json.loads(raw_text)
    except (TypeError, ValueError) as exc:
        raise FormatError(str(exc), raw_output=raw_text or "") from exc

    if not isinstance(payload, dict):
        raise FormatError(
            f"Expected a JSON object from the scanner, got {type(payload).__name__}.",
            raw_output=raw_text,
        )

    message = payload.get("userMessage") or payload.get("error")
    if message:
        raise ToolReportedError(build_helpful_error_detail(str(message)))

    try:
        return format_scan_payload(payload, repo_url=repo_url, scan_command=scan_command)
    except ValidationError as exc:
        raise FormatError(str(exc), raw_output=raw_text) from exc
