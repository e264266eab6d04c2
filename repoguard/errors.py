"""
RepoGuard - Error taxonomy
Every failure that ends a scan request is one of these. The HTTP layer turns
them into a structured JSON envelope; nothing else catches them.
"""

from typing import Any


class ScanPipelineError(Exception):
    """Base class: terminal failure of a single scan request."""

    status_code: int = 500
    code: str = "scan_error"
    message: str = "Scan failed."

    def __init__(self, details: str | None = None):
        super().__init__(details or self.message)
        self.details = details

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.message, "code": self.code, "details": self.details}


class InvalidInput(ScanPipelineError):
    status_code = 400
    code = "invalid_input"
    message = "A valid GitHub repository URL is required."


class AcquisitionError(ScanPipelineError):
    """git clone failed: network, auth, or the repository does not exist."""

    status_code = 400
    code = "acquisition_failed"
    message = "Failed to clone repository."


class ScanExecutionError(ScanPipelineError):
    """The scanner produced no usable stdout."""

    status_code = 500
    code = "scan_failed"
    message = "Snyk scan failed."


class ToolReportedError(ScanPipelineError):
    """The scanner ran but its JSON payload is an error, not a report."""

    status_code = 502
    code = "tool_reported_error"
    message = "Snyk scan reported an error."


class FormatError(ScanPipelineError):
    """Scanner stdout could not be decoded into a report."""

    status_code = 500
    code = "invalid_output"
    message = "Unable to parse Snyk output."

    def __init__(self, details: str | None = None, raw_output: str = ""):
        super().__init__(details)
        self.raw_output = raw_output

    def to_dict(self) -> dict[str, Any]:
        body = super().to_dict()
        body["rawOutput"] = self.raw_output
        return body
