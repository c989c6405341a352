"""CLI entry point for the OWASP scanner.

Subcommands:
    scan      Analyze a file or directory (optionally only changed files)
    estimate  Project the AI API cost of scanning a path
    rules     List the registered rules
"""

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Dict, List, Optional

from owasp_scanner.cache import FileAnalysisCache
from owasp_scanner.config_loader import SUPPORTED_OWASP_VERSIONS, build_unified_config, validate_config
from owasp_scanner.cost_estimator import CostEstimator
from owasp_scanner.exceptions import ConfigurationError
from owasp_scanner.incremental_scanner import DEFAULT_LANGUAGE_MAP, IncrementalScanner
from owasp_scanner.models import AnalysisTask, Severity
from owasp_scanner.parallel_analyzer import BatchResult, ParallelFileAnalyzer
from owasp_scanner.providers.base import ProviderConfig
from owasp_scanner.providers.factory import ProviderSelection, select_provider
from owasp_scanner.rule_engine import ExecutionMode, RuleEngine
from owasp_scanner.rules.registry import RuleRegistry, create_default_registry
from owasp_scanner.rules.rule_config import BUNDLED_2025_CONFIG, apply_rule_config, load_rule_config

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FINDINGS = 1
EXIT_CONFIG_ERROR = 2

_SKIP_DIRS = {".git", ".hg", ".svn", "node_modules", "target", "build", ".gradle", ".idea"}
_FAILING_SEVERITIES = (Severity.BLOCKER, Severity.CRITICAL)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="owasp-scanner",
        description="OWASP Top 10 security scanner - pattern rules plus optional AI review",
    )
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    scan = sub.add_parser("scan", parents=[common], help="Scan a file or directory")
    scan.add_argument("path", help="File or directory to scan")
    scan.add_argument("--profile", help="Configuration profile (default, fast, deep, or a custom one)")
    scan.add_argument("--owasp-version", choices=SUPPORTED_OWASP_VERSIONS, help="OWASP Top 10 edition")
    scan.add_argument("--provider", help="AI provider (openai, anthropic, gemini-api, claude-cli, gemini-cli, copilot-cli)")
    scan.add_argument("--model", help="AI model name")
    scan.add_argument("--cli-path", help="Path to the AI CLI executable")
    scan.add_argument(
        "--incremental",
        metavar="MODE",
        help="Scan only changed files: working, staged, or branch:<name>",
    )
    scan.add_argument("--max-parallel", type=int, help="Number of files analyzed concurrently")
    scan.add_argument("--timeout", type=int, help="Per-file analysis timeout in seconds")
    scan.add_argument("--no-cache", action="store_true", help="Disable the analysis cache")
    scan.add_argument("--rule-config", help="YAML rule configuration file")
    scan.add_argument("--execution-mode", choices=("sequential", "parallel"), help="Rule execution mode")
    scan.add_argument("--fallback-provider", help="AI provider to try when the primary is unavailable")
    scan.add_argument("--fallback-model", help="Model for the fallback provider (default: its own default)")
    scan.add_argument("--format", choices=("text", "json"), default="text", help="Output format (default: text)")

    estimate = sub.add_parser("estimate", parents=[common], help="Estimate AI API cost for a path")
    estimate.add_argument("path", help="File or directory to estimate")
    estimate.add_argument("--model", dest="cost_model", help="Pricing model (e.g. claude-3.5-sonnet, openai-gpt-4o)")
    estimate.add_argument("--owasp-version", choices=SUPPORTED_OWASP_VERSIONS, help="OWASP Top 10 edition")
    estimate.add_argument("--profile", help="Configuration profile")

    rules = sub.add_parser("rules", parents=[common], help="List registered rules")
    rules.add_argument("--owasp-version", choices=SUPPORTED_OWASP_VERSIONS, help="Only this edition")

    return parser


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def collect_files(root: Path, language_map: Optional[Dict[str, str]] = None) -> List[Path]:
    """Every analyzable file under *root* (or *root* itself if it is a file)."""
    languages = language_map or DEFAULT_LANGUAGE_MAP
    if root.is_file():
        return [root] if root.suffix.lower() in languages else []
    files = []
    for path in sorted(root.rglob("*")):
        if any(part in _SKIP_DIRS for part in path.relative_to(root).parts):
            continue
        if path.is_file() and path.suffix.lower() in languages:
            files.append(path)
    return files


def _changed_files(root: Path, mode: str) -> List[Path]:
    scanner = IncrementalScanner(root)
    if not scanner.is_git_repository():
        logger.info("%s is not a git repository; scanning everything", root)
        return []
    if mode == "staged":
        changed = scanner.get_staged_changes()
    elif mode.startswith("branch:"):
        changed = scanner.get_changes_against_branch(mode.split(":", 1)[1])
    else:
        changed = scanner.get_working_tree_changes()
    return [p for p in changed if p.suffix.lower() in DEFAULT_LANGUAGE_MAP]


def _within(path: Path, root: Path) -> bool:
    try:
        path.resolve().relative_to(root.resolve())
    except ValueError:
        return False
    return True


def build_tasks(root: Path, version: str, incremental_mode: Optional[str]) -> List[AnalysisTask]:
    paths: List[Path] = []
    if incremental_mode:
        changed = _changed_files(root if root.is_dir() else root.parent, incremental_mode)
        # Deleted files and changes outside the scanned path do not count.
        paths = [p for p in changed if p.is_file() and _within(p, root)]
        if not paths:
            logger.info("No changed files detected; falling back to a full scan")
    if not paths:
        paths = collect_files(root)
    return [
        AnalysisTask(file_path=p, language=DEFAULT_LANGUAGE_MAP[p.suffix.lower()], ruleset_version=version)
        for p in paths
        if p.is_file()
    ]


def build_registry(config: dict) -> RuleRegistry:
    """Default registry with the configured rule document applied.

    Raises ConfigurationError if the rule document is missing or malformed.
    """
    registry = create_default_registry()
    rule_config_path = config.get("rule_config_path")
    if not rule_config_path and config.get("owasp_version") == "2025":
        rule_config_path = BUNDLED_2025_CONFIG
    if rule_config_path:
        apply_rule_config(registry, load_rule_config(rule_config_path))
    return registry


def build_provider(config: dict) -> Optional[ProviderSelection]:
    """Provider selection for *config*, or ``None`` when AI review is off."""
    if not config.get("ai_provider"):
        return None
    primary = ProviderConfig.from_config(config)
    fallback = None
    if config.get("fallback_provider"):
        fallback = ProviderConfig.from_config(config, provider_key="fallback_provider")
    return select_provider(primary, fallback)


def _has_failing_findings(batch: BatchResult) -> bool:
    counts = batch.violations_by_severity()
    return any(counts.get(severity, 0) for severity in _FAILING_SEVERITIES)


def print_text_report(batch: BatchResult, version: str) -> None:
    print(f"=== OWASP Top 10 ({version}) Scan Results ===")
    print(
        f"Files: {batch.total_files} ({batch.completed_files} analyzed, "
        f"{batch.failed_files} failed, {batch.cache_hits} from cache)"
    )
    print(f"Violations: {batch.total_violations}")
    counts = batch.violations_by_severity()
    for severity in Severity:
        if counts.get(severity):
            print(f"  {severity.value}: {counts[severity]}")

    for result in batch.results:
        violations = sorted(result.all_violations, key=lambda v: (v.severity.rank, v.line_number))
        for violation in violations:
            print(
                f"{result.file_path}:{violation.line_number} [{violation.severity.value}] "
                f"{violation.rule_id} {violation.message}"
            )

    if batch.errors:
        print("Errors:")
        for error in batch.errors:
            print(f"  {error.file_path}: {error.error_type} - {error.message}")
    print(f"Completed in {batch.total_time_ms:.0f}ms")


# ---------------------------------------------------------------------------
# Subcommands
# ---------------------------------------------------------------------------

def _load_config(args: argparse.Namespace) -> Optional[dict]:
    root = Path(args.path)
    repo_path = root if root.is_dir() else root.parent
    config = build_unified_config(cli_args=args, repo_path=str(repo_path))
    issues = validate_config(config)
    for issue in issues:
        print(issue, file=sys.stderr)
    if any(issue.startswith("ERROR") for issue in issues):
        return None
    return config


def cmd_scan(args: argparse.Namespace) -> int:
    root = Path(args.path)
    if not root.exists():
        print(f"ERROR: path not found: {root}", file=sys.stderr)
        return EXIT_CONFIG_ERROR

    config = _load_config(args)
    if config is None:
        return EXIT_CONFIG_ERROR

    try:
        registry = build_registry(config)
        selection = build_provider(config)
    except ConfigurationError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return EXIT_CONFIG_ERROR

    ai_provider = None
    if selection is not None:
        if selection.provider is None:
            print(f"{selection.message}; continuing with pattern rules only", file=sys.stderr)
        else:
            ai_provider = selection.provider
            print(selection.message, file=sys.stderr)

    version = str(config["owasp_version"])
    incremental_mode = args.incremental or ("working" if config.get("incremental_enabled") else None)
    tasks = build_tasks(root, version, incremental_mode)
    logger.info("Scanning %d files for OWASP %s", len(tasks), version)

    engine = RuleEngine(
        registry,
        execution_mode=ExecutionMode.from_value(config.get("execution_mode", "sequential")),
    )
    cache = None
    if config.get("cache_enabled"):
        cache = FileAnalysisCache(
            ttl_seconds=config["cache_ttl_seconds"], max_size=config["cache_max_size"]
        )
    analyzer = ParallelFileAnalyzer(
        engine,
        max_workers=config["max_parallel_files"],
        timeout_seconds=float(config["file_timeout_seconds"]),
        cache=cache,
    )
    try:
        batch = analyzer.analyze_files(tasks, ai_provider=ai_provider)
    finally:
        if ai_provider is not None:
            ai_provider.close()

    if args.format == "json":
        print(json.dumps(batch.to_dict(), indent=2))
    else:
        print_text_report(batch, version)

    return EXIT_FINDINGS if _has_failing_findings(batch) else EXIT_OK


def cmd_estimate(args: argparse.Namespace) -> int:
    config = _load_config(args)
    if config is None:
        return EXIT_CONFIG_ERROR
    try:
        registry = build_registry(config)
    except ConfigurationError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return EXIT_CONFIG_ERROR

    version = str(config["owasp_version"])
    estimator = CostEstimator(
        registry,
        model=args.cost_model or config["cost_model"],
        multiplier=float(config["cost_multiplier"]),
    )
    batch = estimator.estimate_batch_cost(collect_files(Path(args.path)), version)
    print(estimator.generate_summary(batch))
    return EXIT_OK


def cmd_rules(args: argparse.Namespace) -> int:
    registry = create_default_registry()
    rules = registry.rules_by_version(args.owasp_version) if args.owasp_version else registry.all_rules()
    for rule in sorted(rules, key=lambda r: r.rule_id):
        ai_flag = " [AI]" if rule.requires_ai else ""
        print(f"{rule.rule_id:<36} {rule.severity.value:<9} {rule.name}{ai_flag}")
    print(f"{len(rules)} rules")
    return EXIT_OK


_COMMANDS = {
    "scan": cmd_scan,
    "estimate": cmd_estimate,
    "rules": cmd_rules,
}


def main(argv: Optional[List[str]] = None) -> int:
    """CLI entry point for the OWASP scanner"""
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s: %(message)s",
    )
    return _COMMANDS[args.command](args)


if __name__ == "__main__":
    sys.exit(main())
