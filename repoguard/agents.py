"""
RepoGuard - Remediation planning
Two paths: a CrewAI planner agent (optional, needs OPENAI_API_KEY) and a
deterministic rule-based planner that is always available. The agent path is
tried first and any failure there falls back to the rules.
"""

import json
import os
import re
import threading
from collections.abc import Mapping
from typing import Any, Literal, Optional

from crewai import LLM, Agent, Crew, Process, Task
from pydantic import BaseModel, ConfigDict, model_validator
from pydantic.alias_generators import to_camel

from repoguard.report import SEVERITY_ORDER, CanonicalReport

DEFAULT_AGENT_MODEL = "gpt-4.1-mini"
MAX_SUMMARIZED_PACKAGES = 5

RESTORE_ACCESS_STEP = "Restore repository access so automated scans can run."
AUTOMATION_STEP = "Add automated dependency updates (Dependabot, Renovate) and enforce Snyk scans in CI."
RERUN_STEP = "Re-run `snyk test` after applying fixes to confirm a clean report."
CLEAN_NOTE = "No vulnerabilities found. Keep running scheduled scans to catch newly disclosed advisories."

UPGRADE_HINT = "upgrade dependencies to secure versions"
PATCH_HINT = "apply available patches"

PLANNER_INSTRUCTIONS = (
    "You are a security engineer. Given a Snyk scan result JSON, output remediation guidance "
    'as JSON matching schema {"steps": string[], "no_action": boolean}. If fixes are required, '
    "order steps by impact and include concrete actions. If no remediation is needed, set "
    "no_action to true and steps to an empty array. Return JSON only."
)


class RemediationPlan(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    steps: list[str]
    no_action: bool
    source: Literal["delegated", "deterministic"]
    note: Optional[str] = None

    @model_validator(mode="after")
    def _no_action_matches_steps(self) -> "RemediationPlan":
        if self.no_action != (not self.steps):
            raise ValueError("no_action must be true exactly when there are no steps")
        return self


def summarize_packages(items: Any) -> Optional[str]:
    """First five distinct package names, with a trailing ellipsis if there are more."""
    if not isinstance(items, list):
        return None
    unique: list[str] = []
    for item in items:
        name = item.get("packageName") if isinstance(item, Mapping) else None
        if name and name not in unique:
            unique.append(str(name))
    if not unique:
        return None
    listed = ", ".join(unique[:MAX_SUMMARIZED_PACKAGES])
    return f"{listed}, …" if len(unique) > MAX_SUMMARIZED_PACKAGES else listed


def _as_payload(report: Any) -> Any:
    if isinstance(report, BaseModel):
        return report.model_dump(by_alias=True, mode="json")
    return report


def _strip_fences(text: str) -> str:
    text = re.sub(r"<think>.*?</think>", "", text, flags=re.DOTALL)
    text = re.sub(r"<think>.*$", "", text, flags=re.DOTALL)
    text = text.strip()
    text = re.sub(r"^\s*```(?:json)?\s*\n", "", text)
    text = re.sub(r"\n\s*```\s*$", "", text)
    return text.strip()


def extract_text(output: Any) -> str:
    """Pull the model's text out of a crew result or a content-block structure."""
    if output is None:
        return ""
    if isinstance(output, str):
        return output.strip()
    raw = getattr(output, "raw", None)
    if isinstance(raw, str) and raw.strip():
        return raw.strip()
    if isinstance(output, Mapping):
        for key in ("output_text", "text", "value"):
            value = output.get(key)
            if isinstance(value, str) and value.strip():
                return value.strip()
        for key in ("output", "content"):
            if key in output:
                return extract_text(output[key])
        return ""
    if isinstance(output, list):
        chunks = [extract_text(item) for item in output]
        return "\n".join(chunk for chunk in chunks if chunk).strip()
    return str(output).strip()


class ActionPlanAgent:
    """Builds remediation plans for canonical scan reports.

    One instance per process. The CrewAI LLM handle behind the delegated path
    is created lazily, at most once, and shared by concurrent requests. Each
    plan gets its own Agent, Task and Crew.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        timeout: Optional[int] = None,
    ):
        self.api_key = os.getenv("OPENAI_API_KEY", "") if api_key is None else api_key
        self.model = model or os.getenv("OPENAI_AGENT_MODEL", DEFAULT_AGENT_MODEL)
        self.timeout = timeout or int(os.getenv("PLANNER_TIMEOUT", "120"))
        self._llm: Optional[LLM] = None
        self._lock = threading.Lock()

    @property
    def enabled(self) -> bool:
        return bool(self.api_key)

    # ── Delegated path ────────────────────────────────────────────────────

    def _create_llm(self) -> LLM:
        return LLM(
            model=self.model,
            api_key=self.api_key,
            temperature=0.2,
            timeout=self.timeout,
            max_retries=1,
        )

    def ensure_llm(self) -> Optional[LLM]:
        if not self.enabled:
            return None
        if self._llm is not None:
            return self._llm
        with self._lock:
            if self._llm is None:
                try:
                    self._llm = self._create_llm()
                except Exception as exc:
                    print(f"[RepoGuard] Failed to create planner LLM: {exc}")
                    return None
        return self._llm

    def create_agent(self, llm: LLM) -> Agent:
        return Agent(
            role="Snyk Remediation Planner",
            goal="Turn a Snyk scan result into an ordered, concrete remediation plan.",
            backstory=PLANNER_INSTRUCTIONS,
            llm=llm,
            verbose=False,
            allow_delegation=False,
        )

    def _run_crew(self, llm: LLM, report_json: str) -> Any:
        # one Agent per plan; its executor holds per-task state
        agent = self.create_agent(llm)
        task = Task(
            description=(
                "Using this Snyk scan result JSON, produce a remediation action plan:\n\n"
                f"{report_json}"
            ),
            expected_output='JSON only: {"steps": ["..."], "no_action": false}',
            agent=agent,
        )
        crew = Crew(agents=[agent], tasks=[task], process=Process.sequential, verbose=False)
        return crew.kickoff()

    def generate_delegated(self, report: Any) -> Optional[RemediationPlan]:
        """Plan via the LLM agent. Returns None when unavailable or on any failure."""
        llm = self.ensure_llm()
        if llm is None:
            return None

        try:
            payload = _as_payload(report)
            if isinstance(payload, Mapping):
                # raw scanner payload stays out of the prompt
                payload = {key: value for key, value in payload.items() if key != "raw"}
            output = self._run_crew(llm, json.dumps(payload, indent=2, default=str))

            text = _strip_fences(extract_text(output))
            if not text:
                raise ValueError("No text output from agent")
            parsed = json.loads(text)
            if not isinstance(parsed, dict) or not isinstance(parsed.get("steps"), list):
                raise ValueError(f"Unexpected plan shape: {text[:200]}")

            steps = [step.strip() for step in parsed["steps"] if isinstance(step, str) and step.strip()]
            no_action = bool(parsed.get("no_action")) or not steps
            return RemediationPlan(steps=steps, no_action=no_action, source="delegated")
        except Exception as exc:
            print(f"[RepoGuard] Failed to generate action plan with planner agent: {exc}")
            return None

    # ── Deterministic path ────────────────────────────────────────────────

    def generate_fallback(self, report: Any) -> RemediationPlan:
        scan = _as_payload(report)
        if not scan or not isinstance(scan, Mapping):
            return RemediationPlan(steps=[], no_action=True, source="deterministic")

        if not scan.get("repositoryAccessible"):
            return RemediationPlan(steps=[RESTORE_ACCESS_STEP], no_action=False, source="deterministic")

        issues = scan.get("issues")
        if not isinstance(issues, list):
            return RemediationPlan(steps=[], no_action=True, source="deterministic")
        issues = [issue for issue in issues if isinstance(issue, Mapping)]

        steps: list[str] = []
        for severity in SEVERITY_ORDER:
            bucket = [issue for issue in issues if issue.get("severity") == severity]
            if not bucket:
                continue

            hints: list[str] = []
            if any(isinstance(i.get("upgradePath"), list) and any(i["upgradePath"]) for i in bucket):
                hints.append(UPGRADE_HINT)
            if any(i.get("isPatched") for i in bucket):
                hints.append(PATCH_HINT)

            packages = summarize_packages(bucket)
            package_text = f" ({packages})" if packages else ""
            hint_text = f" ({' or '.join(hints)})" if hints else ""
            steps.append(f"Resolve {severity.capitalize()} vulnerabilities first{package_text}{hint_text}.")

        licenses = scan.get("licenses")
        if isinstance(licenses, list) and licenses:
            license_packages = summarize_packages(licenses)
            target = f" for {license_packages}" if license_packages else ""
            steps.append(f"Review license findings{target} with legal/compliance teams.")

        if issues:
            steps.extend([AUTOMATION_STEP, RERUN_STEP])

        if not steps:
            return RemediationPlan(steps=[], no_action=True, source="deterministic", note=CLEAN_NOTE)
        return RemediationPlan(steps=steps, no_action=False, source="deterministic")

    def generate(self, report: CanonicalReport | Mapping) -> RemediationPlan:
        plan = self.generate_delegated(report)
        if plan is not None:
            return plan
        return self.generate_fallback(report)
