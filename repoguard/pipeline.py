"""
RepoGuard - Scan pipeline
workspace -> clone -> scan -> normalize -> plan, with the workspace removed
on every exit path.
"""

from typing import Optional

from repoguard.agents import ActionPlanAgent, RemediationPlan
from repoguard.errors import InvalidInput
from repoguard.report import CanonicalReport, normalize_scan_output
from repoguard.tools import SCAN_COMMAND, clone_repository, run_scanner, scan_workspace


def run_scan(
    repo_url: Optional[str],
    planner: Optional[ActionPlanAgent] = None,
    scan_command: str = SCAN_COMMAND,
) -> tuple[CanonicalReport, RemediationPlan]:
    """Synchronous full scan of one repository. Runs in a worker thread.

    Raises a ``ScanPipelineError`` subclass for any terminal failure; by the
    time it propagates the workspace has already been released.
    """
    if not isinstance(repo_url, str) or not repo_url.strip():
        raise InvalidInput()
    repo_url = repo_url.strip()
    if planner is None:
        planner = ActionPlanAgent(api_key="")

    with scan_workspace() as workspace:
        print(f"[RepoGuard] Cloning {repo_url} into {workspace.repo_dir}")
        clone_repository(repo_url, workspace.repo_dir)

        print(f"[RepoGuard] Running scanner: {scan_command}")
        output = run_scanner(scan_command, workspace.repo_dir)

        report = normalize_scan_output(output, repo_url=repo_url, scan_command=scan_command)
        print(
            f"[RepoGuard] {report.project_name}: {len(report.issues)} issues, "
            f"{len(report.licenses)} license findings"
        )

        plan = planner.generate(report)
        print(f"[RepoGuard] Action plan ready ({plan.source}, {len(plan.steps)} steps)")

    return report, plan
