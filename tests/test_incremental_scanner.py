"""
Tests for incremental_scanner.py.

Git is never invoked: ``_run_git`` or ``subprocess.run`` is patched so the
parsing and fallback behavior can be checked against canned output.
"""

from __future__ import annotations

import subprocess
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from owasp_scanner.incremental_scanner import ChangeType, FileChangeStats, IncrementalScanner


@pytest.fixture
def scanner(tmp_path) -> IncrementalScanner:
    scanner = IncrementalScanner(tmp_path)
    scanner._toplevel = scanner.repo_path
    return scanner


class TestChangeType:
    @pytest.mark.parametrize(
        "code, expected",
        [
            ("??", ChangeType.UNTRACKED),
            ("UU", ChangeType.UNMERGED),
            ("AA", ChangeType.UNMERGED),
            ("DD", ChangeType.UNMERGED),
            ("A ", ChangeType.ADDED),
            (" M", ChangeType.MODIFIED),
            ("MM", ChangeType.MODIFIED),
            (" D", ChangeType.DELETED),
            ("R ", ChangeType.RENAMED),
            ("C ", ChangeType.COPIED),
            ("!!", ChangeType.UNKNOWN),
        ],
    )
    def test_from_status(self, code, expected):
        assert ChangeType.from_status(code) is expected


class TestChangedPaths:
    def test_working_tree_changes(self, scanner):
        with patch.object(IncrementalScanner, "_run_git", return_value="src/A.java\nsrc/B.java\n\n") as git:
            paths = scanner.get_working_tree_changes()

        git.assert_called_once_with(["diff", "--name-only", "HEAD"])
        assert paths == [scanner.repo_path / "src/A.java", scanner.repo_path / "src/B.java"]

    @pytest.mark.parametrize(
        "method, args, expected",
        [
            ("get_staged_changes", (), ["diff", "--name-only", "--cached"]),
            ("get_changes_between", ("v1", "v2"), ["diff", "--name-only", "v1", "v2"]),
            ("get_changes_against_branch", ("main",), ["diff", "--name-only", "main", "HEAD"]),
            ("get_changes_since", ("abc123",), ["diff", "--name-only", "abc123..HEAD"]),
        ],
    )
    def test_git_arguments(self, scanner, method, args, expected):
        with patch.object(IncrementalScanner, "_run_git", return_value="") as git:
            assert getattr(scanner, method)(*args) == []
        git.assert_called_once_with(expected)

    def test_git_failure_gives_empty_list(self, scanner, caplog):
        with patch.object(IncrementalScanner, "_run_git", side_effect=RuntimeError("not a git repository")):
            assert scanner.get_working_tree_changes() == []
        assert "not a git repository" in caplog.text

    def test_is_git_repository(self, scanner):
        with patch.object(IncrementalScanner, "_run_git", return_value="true\n"):
            assert scanner.is_git_repository()
        with patch.object(IncrementalScanner, "_run_git", side_effect=RuntimeError("fatal")):
            assert not scanner.is_git_repository()


class TestToplevel:
    def test_subdirectory_paths_resolve_against_working_tree_root(self, tmp_path):
        repo = tmp_path / "repo"
        (repo / "src").mkdir(parents=True)
        responses = {
            ("diff", "--name-only", "HEAD"): "src/A.java\n",
            ("rev-parse", "--show-toplevel"): f"{repo}\n",
        }
        scanner = IncrementalScanner(repo / "src")

        with patch.object(IncrementalScanner, "_run_git", side_effect=lambda args: responses[tuple(args)]):
            paths = scanner.get_working_tree_changes()

        assert paths == [repo.resolve() / "src" / "A.java"]
        assert scanner.toplevel == repo.resolve()

    def test_falls_back_to_repo_path(self, tmp_path):
        scanner = IncrementalScanner(tmp_path)
        with patch.object(IncrementalScanner, "_run_git", side_effect=RuntimeError("fatal")) as git:
            assert scanner.toplevel == scanner.repo_path
            assert scanner.toplevel == scanner.repo_path
        git.assert_called_once_with(["rev-parse", "--show-toplevel"])

    def test_statuses_resolve_against_working_tree_root(self, tmp_path):
        repo = tmp_path / "repo"
        (repo / "src").mkdir(parents=True)
        responses = {
            ("status", "--porcelain"): " M src/A.java\n",
            ("rev-parse", "--show-toplevel"): f"{repo}\n",
        }
        scanner = IncrementalScanner(repo / "src")

        with patch.object(IncrementalScanner, "_run_git", side_effect=lambda args: responses[tuple(args)]):
            statuses = scanner.get_file_statuses()

        assert [s.path for s in statuses] == [repo.resolve() / "src" / "A.java"]


class TestFileStatuses:
    def test_porcelain_parsing(self, scanner):
        output = " M src/Modified.java\nA  src/Added.java\nR  src/Old.java -> src/New.java\n?? notes.txt\n\n"
        with patch.object(IncrementalScanner, "_run_git", return_value=output):
            statuses = scanner.get_file_statuses()

        assert [(s.path.name, s.change_type, s.status_code) for s in statuses] == [
            ("Modified.java", ChangeType.MODIFIED, "M"),
            ("Added.java", ChangeType.ADDED, "A"),
            ("New.java", ChangeType.RENAMED, "R"),
            ("notes.txt", ChangeType.UNTRACKED, "??"),
        ]
        assert statuses[2].path == scanner.repo_path / "src/New.java"

    def test_status_failure(self, scanner):
        with patch.object(IncrementalScanner, "_run_git", side_effect=RuntimeError("fatal")):
            assert scanner.get_file_statuses() == []


class TestLineStats:
    def test_numstat(self, scanner):
        with patch.object(IncrementalScanner, "_run_git", return_value="12\t3\tsrc/A.java\n") as git:
            stats = scanner.get_line_stats("src/A.java")

        git.assert_called_once_with(["diff", "--numstat", "HEAD", "--", "src/A.java"])
        assert stats == FileChangeStats(Path("src/A.java"), 12, 3)
        assert stats.total_changed_lines == 15

    def test_binary_file_counts_zero(self, scanner):
        with patch.object(IncrementalScanner, "_run_git", return_value="-\t-\tlogo.png\n"):
            assert scanner.get_line_stats("logo.png").total_changed_lines == 0

    def test_no_diff_or_failure(self, scanner):
        with patch.object(IncrementalScanner, "_run_git", return_value=""):
            assert scanner.get_line_stats("A.java") == FileChangeStats(Path("A.java"))
        with patch.object(IncrementalScanner, "_run_git", side_effect=RuntimeError("fatal")):
            assert scanner.get_line_stats("A.java") == FileChangeStats(Path("A.java"))


class TestBuildTasks:
    def test_filters_by_extension_and_existence(self, scanner, tmp_path):
        java = tmp_path / "A.java"
        pom = tmp_path / "pom.xml"
        readme = tmp_path / "README.md"
        for path in (java, pom, readme):
            path.write_text("x")
        deleted = tmp_path / "Deleted.java"

        tasks = scanner.build_tasks([java, pom, readme, deleted], "2017")

        assert [(t.file_path, t.language, t.ruleset_version) for t in tasks] == [
            (java, "java", "2017"),
            (pom, "xml", "2017"),
        ]

    def test_custom_language_map(self, scanner, tmp_path):
        script = tmp_path / "app.py"
        script.write_text("x")
        tasks = scanner.build_tasks([script], language_map={".py": "python"})
        assert [t.language for t in tasks] == ["python"]


class TestRunGit:
    def test_returns_stdout(self, scanner):
        completed = MagicMock(returncode=0, stdout="out", stderr="")
        with patch("owasp_scanner.incremental_scanner.subprocess.run", return_value=completed) as run:
            assert scanner._run_git(["status"]) == "out"
        assert run.call_args.args[0] == ["git", "status"]
        assert run.call_args.kwargs["cwd"] == scanner.repo_path

    def test_non_zero_exit(self, scanner):
        completed = MagicMock(returncode=128, stdout="", stderr="fatal: not a git repository")
        with patch("owasp_scanner.incremental_scanner.subprocess.run", return_value=completed):
            with pytest.raises(RuntimeError, match="exit 128"):
                scanner._run_git(["status"])

    def test_git_missing(self, scanner):
        with patch("owasp_scanner.incremental_scanner.subprocess.run", side_effect=FileNotFoundError):
            with pytest.raises(RuntimeError, match="not installed"):
                scanner._run_git(["status"])

    def test_timeout(self, scanner):
        error = subprocess.TimeoutExpired(cmd="git", timeout=30)
        with patch("owasp_scanner.incremental_scanner.subprocess.run", side_effect=error):
            with pytest.raises(RuntimeError, match="timed out"):
                scanner._run_git(["status"])
