"""
Workspace preparation (checkout) and artifact collection.
"""

import asyncio
import logging
import os
import shutil
import subprocess
import zipfile
from pathlib import Path
from typing import Iterable, List, Optional, Set

from conveyor_controller.src.config import get_settings
from conveyor_controller.src.models.pipeline import ArtifactRule
from conveyor_controller.src.models.run import Run
from conveyor_controller.src.services.executor import ExecutionError

logger = logging.getLogger(__name__)

WILDCARDS = ("*", "?", "[")

class CheckoutError(ExecutionError):
    """Raised when the working tree for a run cannot be prepared."""
    pass

def _git(args: List[str], cwd: Optional[str] = None, timeout: int = 60, check: bool = True):
    return subprocess.run(
        ["git", *args],
        cwd=cwd,
        check=check,
        capture_output=True,
        timeout=timeout,
    )

def clone_repository(clone_url: str, commit_sha: str, repo_path: str, timeout: int = 120) -> str:
    """
    Clone repository into repo_path and check out the commit.
    Returns path to cloned repo.
    """
    try:
        # Clone the repository
        _git(["clone", "--depth", "1", clone_url, repo_path], timeout=timeout)

        # Checkout specific commit if provided
        if commit_sha:
            _git(["fetch", "--depth", "1", "origin", commit_sha], cwd=repo_path, check=False)
            _git(["checkout", commit_sha], cwd=repo_path, timeout=30)

        return repo_path
    except subprocess.TimeoutExpired:
        raise CheckoutError("Repository clone timed out")
    except subprocess.CalledProcessError as e:
        raise CheckoutError(f"Failed to clone repository: {e.stderr.decode(errors='replace').strip()}")

def _rule_base(pattern: str) -> str:
    """Leading part of a glob before its first wildcard segment."""
    base = []
    for part in pattern.split("/"):
        if any(char in part for char in WILDCARDS):
            break
        base.append(part)
    return "/".join(base)

def _match_files(root: Path, pattern: str) -> List[Path]:
    pattern = pattern.lstrip("/")
    if pattern.endswith("**"):
        pattern = pattern + "/*"
    if not any(char in pattern for char in WILDCARDS):
        candidate = root / pattern
        if candidate.is_dir():
            return sorted(p for p in candidate.rglob("*") if p.is_file())
        return [candidate] if candidate.is_file() else []
    return sorted(p for p in root.glob(pattern) if p.is_file())

class Workspace:
    def __init__(self, workspace_root: Optional[str] = None, artifacts_root: Optional[str] = None):
        settings = get_settings()
        self.workspace_root = workspace_root or settings.workspace_root
        self.artifacts_root = artifacts_root or settings.artifacts_root
        self.clone_timeout = settings.clone_timeout
        self._discarding: Set[asyncio.Task] = set()

    async def checkout(self, run: Run) -> str:
        """Check out the run's commit into a fresh directory."""
        if not run.clone_url:
            raise CheckoutError(f"Run {run.id} has no clone URL")

        repo_path = os.path.join(self.workspace_root, run.id)
        # Left over from an earlier attempt with the same run id
        await asyncio.to_thread(self.cleanup, repo_path)
        os.makedirs(self.workspace_root, exist_ok=True)

        logger.info(f"Checking out {run.repository}@{run.commit_sha[:12]} into {repo_path}")
        clone = asyncio.ensure_future(asyncio.to_thread(
            clone_repository, run.clone_url, run.commit_sha, repo_path, self.clone_timeout
        ))
        try:
            return await asyncio.shield(clone)
        except asyncio.CancelledError:
            # git keeps writing until the thread ends; remove the tree after that
            logger.warning(f"Checkout of run {run.id} interrupted, discarding {repo_path}")
            task = asyncio.ensure_future(self._discard(clone, repo_path))
            self._discarding.add(task)
            task.add_done_callback(self._discarding.discard)
            raise

    async def _discard(self, clone: asyncio.Future, repo_path: str):
        await asyncio.gather(clone, return_exceptions=True)
        await asyncio.to_thread(self.cleanup, repo_path)

    async def drain(self):
        """Wait until interrupted checkouts have been removed."""
        while self._discarding:
            await asyncio.gather(*list(self._discarding), return_exceptions=True)

    def cleanup(self, repo_path: str):
        """Clean up a checked out working tree."""
        try:
            if repo_path and os.path.exists(repo_path):
                shutil.rmtree(repo_path)
        except OSError as e:
            logger.warning(f"Failed to remove workspace {repo_path}: {e}")

    def collect_artifacts(self, run_id: str, workdir: str, rules: Iterable[ArtifactRule]) -> List[str]:
        """
        Publish files matching the artifact rules under artifacts_root/<run id>.
        A rule matching no files is skipped. Returns the created paths.
        """
        root = Path(workdir)
        destination = Path(self.artifacts_root) / run_id
        created = []

        for rule in rules:
            files = _match_files(root, rule.source)
            if not files:
                logger.info(f"Artifact rule '{rule.source}' matched no files")
                continue

            base = root / _rule_base(rule.source.lstrip("/"))
            destination.mkdir(parents=True, exist_ok=True)

            if rule.is_archive:
                archive = destination / rule.target
                archive.parent.mkdir(parents=True, exist_ok=True)
                # Several rules may feed the same archive
                with zipfile.ZipFile(archive, "a", compression=zipfile.ZIP_DEFLATED) as zf:
                    for path in files:
                        zf.write(path, arcname=str(path.relative_to(base) if base != path else path.name))
                if str(archive) not in created:
                    created.append(str(archive))
                logger.info(f"Archived {len(files)} file(s) into {archive}")
                continue

            target_dir = destination / rule.target if rule.target else destination
            for path in files:
                relative = path.relative_to(base) if base != path else Path(path.name)
                if not rule.target:
                    relative = path.relative_to(root)
                target = target_dir / relative
                target.parent.mkdir(parents=True, exist_ok=True)
                shutil.copy2(path, target)
                created.append(str(target))
            logger.info(f"Copied {len(files)} file(s) for rule '{rule.source}'")

        return created
