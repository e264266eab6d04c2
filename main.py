"""
RepoGuard - FastAPI Server entrypoint

Run:
    uvicorn main:app --host 0.0.0.0 --port 4000
"""

from repoguard.main import app

__all__ = ["app"]
