"""
RepoGuard - FastAPI Server
Clones a public repository, runs Snyk against it and returns a normalized
report with a prioritized remediation plan.

Run:
    uvicorn repoguard.main:app --host 0.0.0.0 --port 4000
"""

import asyncio
from contextlib import asynccontextmanager
from collections.abc import Mapping
from functools import lru_cache
from typing import Any

from dotenv import load_dotenv
from fastapi import Body, Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

load_dotenv()

from repoguard import __version__  # noqa: E402
from repoguard.agents import ActionPlanAgent  # noqa: E402
from repoguard.errors import InvalidInput, ScanPipelineError  # noqa: E402
from repoguard.pipeline import run_scan  # noqa: E402
from repoguard.tools import SCAN_COMMAND  # noqa: E402


@lru_cache(maxsize=1)
def get_action_plan_agent() -> ActionPlanAgent:
    """Process-wide planner; its LLM handle is created on first use."""
    return ActionPlanAgent()


def get_scan_command() -> str:
    return SCAN_COMMAND


@asynccontextmanager
async def lifespan(app: FastAPI):
    planner = get_action_plan_agent()
    state = f"enabled ({planner.model})" if planner.enabled else "disabled, using rule-based plans"
    print(f"[RepoGuard] Delegated planner {state}")
    yield


app = FastAPI(
    title="RepoGuard",
    description="Snyk dependency scans with prioritized remediation plans",
    version=__version__,
    lifespan=lifespan,
)
app.add_middleware(CORSMiddleware, allow_origins=["*"], allow_methods=["*"], allow_headers=["*"])


class ScanRequest(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    # validated by the pipeline so a bad value maps to a 400, not a 422
    repo_url: Any = None


@app.exception_handler(ScanPipelineError)
async def scan_error_handler(request: Request, exc: ScanPipelineError):
    print(f"[RepoGuard] {exc.code}: {exc.details or exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    # undecodable JSON bodies
    return await scan_error_handler(request, InvalidInput())


@app.post("/api/scan")
async def scan(
    payload: Any = Body(default=None),
    planner: ActionPlanAgent = Depends(get_action_plan_agent),
    scan_command: str = Depends(get_scan_command),
):
    """Scan a repository and return the canonical report plus an action plan."""
    repo_url = ScanRequest.model_validate(payload).repo_url if isinstance(payload, Mapping) else None
    report, plan = await asyncio.to_thread(run_scan, repo_url, planner, scan_command)
    return {
        **report.model_dump(by_alias=True, mode="json"),
        "actionPlan": plan.model_dump(by_alias=True, mode="json"),
    }


@app.get("/health")
async def health():
    """Liveness check."""
    return {"status": "ok"}
