"""
Incremental Scanning - find which files changed so only they are analyzed.

``IncrementalScanner`` shells out to ``git`` for the working tree, the
index, a commit range or a branch comparison, and turns the changed paths
into ``AnalysisTask`` objects.  Every query degrades to an empty result
when git is missing, times out, fails, or the directory is not a
repository; callers treat an empty change set as "scan everything".

Usage::

    scanner = IncrementalScanner("/path/to/repo")
    tasks = scanner.build_tasks(scanner.get_working_tree_changes(), "2021")
"""

from __future__ import annotations

import logging
import subprocess
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Union

from owasp_scanner.models import AnalysisTask

logger = logging.getLogger(__name__)

GIT_TIMEOUT_SECONDS = 30

DEFAULT_LANGUAGE_MAP: Dict[str, str] = {
    ".java": "java",
    ".xml": "xml",
}


class ChangeType(str, Enum):
    ADDED = "ADDED"
    MODIFIED = "MODIFIED"
    DELETED = "DELETED"
    RENAMED = "RENAMED"
    COPIED = "COPIED"
    UNMERGED = "UNMERGED"
    UNTRACKED = "UNTRACKED"
    UNKNOWN = "UNKNOWN"

    @classmethod
    def from_status(cls, code: str) -> "ChangeType":
        """Map a porcelain ``XY`` status code to a change type."""
        if code == "??":
            return cls.UNTRACKED
        if "U" in code or code in ("AA", "DD"):
            return cls.UNMERGED
        for letter in code:
            if letter in _STATUS_LETTERS:
                return _STATUS_LETTERS[letter]
        return cls.UNKNOWN


_STATUS_LETTERS = {
    "A": ChangeType.ADDED,
    "M": ChangeType.MODIFIED,
    "D": ChangeType.DELETED,
    "R": ChangeType.RENAMED,
    "C": ChangeType.COPIED,
}


@dataclass(frozen=True)
class FileChangeStatus:
    path: Path
    change_type: ChangeType
    status_code: str


@dataclass(frozen=True)
class FileChangeStats:
    path: Path
    added_lines: int = 0
    deleted_lines: int = 0

    @property
    def total_changed_lines(self) -> int:
        return self.added_lines + self.deleted_lines


class IncrementalScanner:
    """Detect changed files in a git repository.

    Parameters
    ----------
    repo_path : str | Path
        Directory git runs in.  It may be the repository root or any
        directory inside the working tree; reported paths are resolved
        against the working-tree root either way.
    """

    def __init__(self, repo_path: Union[str, Path]) -> None:
        self.repo_path = Path(repo_path).resolve()
        self._toplevel: Optional[Path] = None

    @property
    def toplevel(self) -> Path:
        """Root of the working tree, or ``repo_path`` when git cannot tell."""
        if self._toplevel is None:
            try:
                output = self._run_git(["rev-parse", "--show-toplevel"]).strip()
            except RuntimeError as e:
                logger.debug("Could not resolve working-tree root of %s: %s", self.repo_path, e)
                output = ""
            self._toplevel = Path(output).resolve() if output else self.repo_path
        return self._toplevel

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def is_git_repository(self) -> bool:
        try:
            return self._run_git(["rev-parse", "--is-inside-work-tree"]).strip() == "true"
        except RuntimeError:
            return False

    def get_working_tree_changes(self) -> List[Path]:
        """Files modified in the working tree relative to HEAD."""
        return self._changed_paths(["diff", "--name-only", "HEAD"])

    def get_staged_changes(self) -> List[Path]:
        return self._changed_paths(["diff", "--name-only", "--cached"])

    def get_changes_between(self, from_ref: str, to_ref: str) -> List[Path]:
        return self._changed_paths(["diff", "--name-only", from_ref, to_ref])

    def get_changes_against_branch(self, branch: str) -> List[Path]:
        """Files that differ between *branch* and HEAD."""
        return self._changed_paths(["diff", "--name-only", branch, "HEAD"])

    def get_changes_since(self, commit: str) -> List[Path]:
        return self._changed_paths(["diff", "--name-only", f"{commit}..HEAD"])

    def get_file_statuses(self) -> List[FileChangeStatus]:
        """Parse ``git status --porcelain``.

        Renames and copies (``old -> new``) report the new path.
        """
        try:
            output = self._run_git(["status", "--porcelain"])
        except RuntimeError as e:
            logger.warning("Could not read git status: %s", e)
            return []

        statuses: List[FileChangeStatus] = []
        for line in output.split("\n"):
            line = line.rstrip()
            if len(line) < 4:
                continue
            code = line[:2]
            path = line[3:]
            if " -> " in path:
                path = path.split(" -> ", 1)[1]
            statuses.append(
                FileChangeStatus(
                    path=self._absolute(path),
                    change_type=ChangeType.from_status(code),
                    status_code=code.strip(),
                )
            )
        return statuses

    def get_line_stats(self, path: Union[str, Path]) -> FileChangeStats:
        """Added/deleted line counts of *path* against HEAD.  Binary files count as 0."""
        target = Path(path)
        try:
            output = self._run_git(["diff", "--numstat", "HEAD", "--", str(target)])
        except RuntimeError as e:
            logger.warning("Could not read line stats for %s: %s", target, e)
            return FileChangeStats(target)

        for line in output.strip().splitlines():
            parts = line.split("\t")
            if len(parts) < 3:
                continue
            return FileChangeStats(target, _numstat_count(parts[0]), _numstat_count(parts[1]))
        return FileChangeStats(target)

    # ------------------------------------------------------------------
    # Task building
    # ------------------------------------------------------------------

    def build_tasks(
        self,
        paths: Iterable[Union[str, Path]],
        ruleset_version: str = "2021",
        language_map: Optional[Dict[str, str]] = None,
    ) -> List[AnalysisTask]:
        """Turn changed paths into analysis tasks.

        Deleted files and files whose extension is not in *language_map*
        are skipped.
        """
        languages = language_map or DEFAULT_LANGUAGE_MAP
        tasks: List[AnalysisTask] = []
        for path in paths:
            path = Path(path)
            language = languages.get(path.suffix.lower())
            if language is None:
                continue
            if not path.is_file():
                logger.debug("Skipping %s (deleted or not a file)", path)
                continue
            tasks.append(AnalysisTask(file_path=path, language=language, ruleset_version=ruleset_version))
        logger.info("Incremental scan: %d analyzable files", len(tasks))
        return tasks

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _absolute(self, relative: str) -> Path:
        return self.toplevel / relative.strip().strip('"')

    def _changed_paths(self, args: List[str]) -> List[Path]:
        try:
            output = self._run_git(args)
        except RuntimeError as e:
            logger.warning("Could not list changed files (git %s): %s", " ".join(args), e)
            return []
        return [self._absolute(line) for line in output.splitlines() if line.strip()]

    def _run_git(self, args: List[str]) -> str:
        """Run a git command in the repository and return stdout.

        Raises
        ------
        RuntimeError
            If git is not installed, times out, or exits with non-zero status.
        """
        cmd = ["git"] + args
        try:
            result = subprocess.run(
                cmd,
                cwd=self.repo_path,
                capture_output=True,
                text=True,
                timeout=GIT_TIMEOUT_SECONDS,
            )
        except FileNotFoundError:
            raise RuntimeError("git is not installed or not found in PATH")
        except NotADirectoryError:
            raise RuntimeError(f"not a directory: {self.repo_path}")
        except subprocess.TimeoutExpired:
            raise RuntimeError(f"git command timed out: {' '.join(cmd)}")

        if result.returncode != 0:
            raise RuntimeError(
                f"git command failed (exit {result.returncode}): {' '.join(cmd)}\n{result.stderr.strip()}"
            )
        return result.stdout


def _numstat_count(value: str) -> int:
    return int(value) if value.isdigit() else 0


__all__ = [
    "DEFAULT_LANGUAGE_MAP",
    "ChangeType",
    "FileChangeStatus",
    "FileChangeStats",
    "IncrementalScanner",
]
