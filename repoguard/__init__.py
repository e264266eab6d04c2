"""RepoGuard - Snyk-backed repository scans with remediation plans."""

__version__ = "1.0.0"
