"""
RepoGuard - local runner

Run:
    python -m repoguard
"""

import os

import uvicorn


def main() -> None:
    uvicorn.run("repoguard.main:app", host="0.0.0.0", port=int(os.getenv("PORT", "4000")))


if __name__ == "__main__":
    main()
