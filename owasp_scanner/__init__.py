"""
OWASP Top 10 security scanner.

Pattern rules for the 2017, 2021 and 2025 editions, optionally augmented by
an AI review through a remote API or a locally installed CLI.

Key components:
- ``RuleEngine`` -- runs the enabled rules of one edition against a file
- ``ParallelFileAnalyzer`` -- many files at once with per-file timeouts
- ``FileAnalysisCache`` -- content-addressed result cache
- ``IncrementalScanner`` -- git-based changed-file detection
- ``CostEstimator`` -- AI spend projection
"""

__version__ = "1.0.0"

from .cache import FileAnalysisCache
from .cost_estimator import CostEstimator
from .exceptions import (
    AIProviderError,
    CliExecutionError,
    ConfigurationError,
    OwaspScannerError,
    RuleExecutionError,
)
from .incremental_scanner import IncrementalScanner
from .models import AnalysisResult, AnalysisTask, RuleResult, RuleType, Severity, Violation
from .parallel_analyzer import BatchResult, ParallelFileAnalyzer
from .rule_engine import ExecutionMode, RuleEngine
from .rules import RuleRegistry, create_default_registry

__all__ = [
    "__version__",
    # Models
    "AnalysisResult",
    "AnalysisTask",
    "RuleResult",
    "RuleType",
    "Severity",
    "Violation",
    # Engine
    "ExecutionMode",
    "RuleEngine",
    "RuleRegistry",
    "create_default_registry",
    # Batch analysis
    "BatchResult",
    "FileAnalysisCache",
    "IncrementalScanner",
    "ParallelFileAnalyzer",
    "CostEstimator",
    # Errors
    "OwaspScannerError",
    "ConfigurationError",
    "AIProviderError",
    "CliExecutionError",
    "RuleExecutionError",
]
