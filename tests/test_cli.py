"""
Tests for the owasp-scanner command line.

Every test runs from an empty temporary directory with a cleared
environment, so no AI provider or user profile leaks in.
"""

from __future__ import annotations

import json
from unittest.mock import patch

import pytest

from owasp_scanner.cli import (
    EXIT_CONFIG_ERROR,
    EXIT_FINDINGS,
    EXIT_OK,
    build_parser,
    build_registry,
    build_tasks,
    collect_files,
    main,
)
from owasp_scanner.config_loader import get_default_config
from owasp_scanner.incremental_scanner import IncrementalScanner
from owasp_scanner.models import Severity

VULNERABLE_JAVA = (
    "public class UserDao {\n"
    "    public User find(HttpServletRequest request) throws SQLException {\n"
    "        ResultSet rs = stmt.executeQuery(\"SELECT * FROM users WHERE name = '\" + request.getParameter(\"name\") + \"'\");\n"
    "        return map(rs);\n"
    "    }\n"
    "}\n"
)
CLEAN_JAVA = "public class Greeter {\n    public String greet(String name) {\n        return \"Hello, \" + name;\n    }\n}\n"


@pytest.fixture(autouse=True)
def isolated(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    with patch.dict("os.environ", {"HOME": str(tmp_path)}, clear=True):
        yield


@pytest.fixture
def project(tmp_path):
    root = tmp_path / "project"
    (root / "src").mkdir(parents=True)
    (root / "target").mkdir()
    (root / "src" / "UserDao.java").write_text(VULNERABLE_JAVA)
    (root / "src" / "Greeter.java").write_text(CLEAN_JAVA)
    (root / "target" / "Generated.java").write_text(VULNERABLE_JAVA)
    (root / "README.md").write_text("# demo\n")
    return root


class TestParser:
    def test_command_required(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args([])

    def test_scan_options(self):
        args = build_parser().parse_args(
            ["scan", "src", "--owasp-version", "2017", "--max-parallel", "4", "--no-cache", "-v"]
        )
        assert args.command == "scan"
        assert args.owasp_version == "2017"
        assert args.max_parallel == 4
        assert args.no_cache is True
        assert args.verbose is True
        assert args.format == "text"

    def test_unsupported_version_rejected(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["scan", "src", "--owasp-version", "2013"])


class TestHelpers:
    def test_collect_files_skips_build_dirs(self, project):
        names = [p.name for p in collect_files(project)]
        assert names == ["Greeter.java", "UserDao.java"]

    def test_collect_single_file(self, project):
        java = project / "src" / "UserDao.java"
        assert collect_files(java) == [java]
        assert collect_files(project / "README.md") == []

    def test_incremental_outside_git_falls_back_to_full_scan(self, project):
        with patch.object(IncrementalScanner, "_run_git", side_effect=RuntimeError("not a git repository")):
            tasks = build_tasks(project, "2021", "staged")
        assert len(tasks) == 2

    def test_incremental_branch_mode(self, project):
        changed = [project / "src" / "UserDao.java", project / "docs" / "notes.md"]
        with patch.object(IncrementalScanner, "is_git_repository", return_value=True), patch.object(
            IncrementalScanner, "get_changes_against_branch", return_value=changed
        ) as against:
            tasks = build_tasks(project, "2017", "branch:main")

        against.assert_called_once_with("main")
        assert [(t.file_path.name, t.ruleset_version) for t in tasks] == [("UserDao.java", "2017")]

    def test_incremental_scan_of_subdirectory(self, project):
        (project / "lib").mkdir()
        (project / "lib" / "Other.java").write_text(CLEAN_JAVA)
        responses = {
            ("rev-parse", "--is-inside-work-tree"): "true\n",
            ("rev-parse", "--show-toplevel"): f"{project}\n",
            ("diff", "--name-only", "HEAD"): "src/UserDao.java\nlib/Other.java\nsrc/Removed.java\n",
        }
        with patch.object(IncrementalScanner, "_run_git", side_effect=lambda args: responses[tuple(args)]):
            tasks = build_tasks(project / "src", "2021", "working")

        assert [t.file_path for t in tasks] == [(project / "src" / "UserDao.java").resolve()]

    def test_incremental_without_changes_under_path_scans_everything(self, project):
        responses = {
            ("rev-parse", "--is-inside-work-tree"): "true\n",
            ("rev-parse", "--show-toplevel"): f"{project}\n",
            ("diff", "--name-only", "HEAD"): "target/Generated.java\nsrc/Removed.java\n",
        }
        with patch.object(IncrementalScanner, "_run_git", side_effect=lambda args: responses[tuple(args)]):
            tasks = build_tasks(project / "src", "2021", "working")

        assert sorted(t.file_path.name for t in tasks) == ["Greeter.java", "UserDao.java"]

    def test_registry_gets_bundled_2025_document(self):
        config = get_default_config()
        config["owasp_version"] = "2025"
        registry = build_registry(config)
        assert registry.get("owasp-2025-a01-001").severity is Severity.BLOCKER


class TestScanCommand:
    def test_findings_exit_code_and_text_report(self, project, capsys):
        assert main(["scan", str(project)]) == EXIT_FINDINGS

        out = capsys.readouterr().out
        assert out.startswith("=== OWASP Top 10 (2021) Scan Results ===")
        assert "Files: 2 (2 analyzed, 0 failed, 0 from cache)" in out
        assert "[BLOCKER] owasp-2021-a03-001 SQL Injection" in out
        assert "Generated.java" not in out

    def test_clean_code_exits_ok(self, project, capsys):
        assert main(["scan", str(project / "src" / "Greeter.java")]) == EXIT_OK
        assert "Violations: 0" in capsys.readouterr().out

    def test_json_output(self, project, capsys):
        assert main(["scan", str(project), "--format", "json", "--execution-mode", "parallel"]) == EXIT_FINDINGS

        data = json.loads(capsys.readouterr().out)
        assert data["summary"]["total_files"] == 2
        assert data["summary"]["by_severity"]["BLOCKER"] >= 1
        assert data["errors"] == []
        files = {r["file"].rsplit("/", 1)[-1] for r in data["results"]}
        assert files == {"UserDao.java", "Greeter.java"}

    def test_other_edition(self, project, capsys):
        main(["scan", str(project), "--owasp-version", "2017"])
        out = capsys.readouterr().out
        assert out.startswith("=== OWASP Top 10 (2017) Scan Results ===")
        assert "owasp-2021-" not in out

    def test_missing_path(self, tmp_path, capsys):
        assert main(["scan", str(tmp_path / "nowhere")]) == EXIT_CONFIG_ERROR
        assert "path not found" in capsys.readouterr().err

    def test_invalid_provider(self, project, capsys):
        assert main(["scan", str(project), "--provider", "watson"]) == EXIT_CONFIG_ERROR
        assert "Invalid ai_provider 'watson'" in capsys.readouterr().err

    def test_api_provider_without_key(self, project, capsys):
        assert main(["scan", str(project), "--provider", "openai"]) == EXIT_CONFIG_ERROR
        assert "no API key" in capsys.readouterr().err

    def test_missing_rule_config(self, project, tmp_path, capsys):
        assert main(["scan", str(project), "--rule-config", str(tmp_path / "rules.yml")]) == EXIT_CONFIG_ERROR

    def test_rule_config_disables_rule(self, project, tmp_path, capsys):
        rules = tmp_path / "rules.yml"
        rules.write_text("rules:\n  - rule_id: owasp-2021-a03-001\n    enabled: false\n")
        main(["scan", str(project), "--rule-config", str(rules)])
        assert "owasp-2021-a03-001" not in capsys.readouterr().out

    def test_repo_config_file_is_honored(self, project, capsys):
        (project / ".owasp-scanner.yml").write_text("scan:\n  owasp_version: '2017'\n")
        main(["scan", str(project)])
        assert "(2017) Scan Results" in capsys.readouterr().out


class TestEstimateCommand:
    def test_summary_printed(self, project, capsys):
        assert main(["estimate", str(project), "--owasp-version", "2025"]) == EXIT_OK
        captured = capsys.readouterr()
        assert captured.out.startswith("=== AI API Cost Estimate ===")
        assert "Files: 2" in captured.out
        assert "preview" in captured.err

    def test_model_option(self, project, capsys):
        main(["estimate", str(project), "--model", "openai-gpt-4o"])
        assert "Model: openai-gpt-4o" in capsys.readouterr().out


class TestRulesCommand:
    def test_lists_all_rules(self, capsys):
        assert main(["rules"]) == EXIT_OK
        lines = capsys.readouterr().out.strip().splitlines()
        assert lines[-1] == "22 rules"
        assert any(line.startswith("owasp-2025-a03-prompt-injection") and line.endswith("[AI]") for line in lines)

    def test_filter_by_edition(self, capsys):
        main(["rules", "--owasp-version", "2017"])
        out = capsys.readouterr().out
        assert out.strip().splitlines()[-1] == "10 rules"
        assert "owasp-2021-" not in out
