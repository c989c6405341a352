"""
Parallel File Analyzer - runs the rule engine over many files at once.

Cache hits are answered up front and never reach the pool.  A hit is
re-labelled with the requesting task's path, since identical files share
one cache entry.  Misses run on a fixed-size ``ThreadPoolExecutor``.  Each
file's timeout clock starts when a worker picks it up, so time spent queued
behind a slow file is not charged to the files waiting after it.  A file
that times out or fails becomes a ``FileAnalysisError`` record and the batch
carries on.

Python threads cannot be interrupted, so a timed-out analysis keeps running
in the background and holds its worker.  The batch has already recorded the
timeout; if the analysis later completes, its result still lands in the
cache.  Shutdown gives stragglers a short grace period and then abandons
them.
"""

from __future__ import annotations

import concurrent.futures
import logging
import os
import threading
import time
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

from owasp_scanner.cache import FileAnalysisCache
from owasp_scanner.models import AnalysisResult, AnalysisTask, Severity
from owasp_scanner.providers.base import AIProvider
from owasp_scanner.rule_engine import RuleEngine

logger = logging.getLogger(__name__)

ERROR_TIMEOUT = "TIMEOUT"
ERROR_EXECUTION = "EXECUTION_ERROR"
ERROR_IO = "IO_ERROR"


@dataclass(frozen=True)
class FileAnalysisError:
    file_path: str
    error_type: str
    message: str

    def to_dict(self) -> Dict[str, str]:
        return {"file": self.file_path, "error_type": self.error_type, "message": self.message}


@dataclass
class BatchResult:
    """Results and error records of one batch."""

    results: List[AnalysisResult] = field(default_factory=list)
    errors: List[FileAnalysisError] = field(default_factory=list)
    total_time_ms: float = 0.0
    cache_hits: int = 0

    @property
    def total_files(self) -> int:
        return len(self.results) + len(self.errors)

    @property
    def completed_files(self) -> int:
        return len(self.results)

    @property
    def failed_files(self) -> int:
        return len(self.errors)

    @property
    def total_violations(self) -> int:
        return sum(result.total_violations for result in self.results)

    def violations_by_severity(self) -> Dict[Severity, int]:
        counts: Dict[Severity, int] = {}
        for result in self.results:
            for severity, count in result.violations_by_severity().items():
                counts[severity] = counts.get(severity, 0) + count
        return counts

    def violations_by_category(self) -> Dict[str, int]:
        """Count violations by the category segment of their rule id (``a03``)."""
        counts: Dict[str, int] = {}
        for result in self.results:
            for violation in result.all_violations:
                category = _category_from_rule_id(violation.rule_id)
                counts[category] = counts.get(category, 0) + 1
        return counts

    def to_dict(self) -> Dict[str, Any]:
        return {
            "summary": {
                "total_files": self.total_files,
                "completed_files": self.completed_files,
                "failed_files": self.failed_files,
                "total_violations": self.total_violations,
                "cache_hits": self.cache_hits,
                "total_time_ms": round(self.total_time_ms, 2),
                "by_severity": {s.value: n for s, n in self.violations_by_severity().items()},
                "by_category": self.violations_by_category(),
            },
            "results": [result.to_dict() for result in self.results],
            "errors": [error.to_dict() for error in self.errors],
        }


def _category_from_rule_id(rule_id: str) -> str:
    parts = rule_id.split("-")
    return parts[2] if len(parts) >= 3 else "unknown"


def _for_task(cached: AnalysisResult, task: AnalysisTask) -> AnalysisResult:
    return replace(cached, file_path=str(task.file_path))


class ParallelFileAnalyzer:
    """Analyze files concurrently with per-file timeouts.

    Parameters
    ----------
    rule_engine : RuleEngine
        Shared, read-only engine used by every worker.
    max_workers : int, optional
        Pool size.  Defaults to the CPU count.
    timeout_seconds : float
        How long each file may run once a worker has picked it up.
    cache : FileAnalysisCache, optional
        Consulted before submission and filled after each completed analysis.
    shutdown_grace_seconds : float
        How long unfinished workers may keep running once the batch is done.
    """

    def __init__(
        self,
        rule_engine: RuleEngine,
        max_workers: Optional[int] = None,
        timeout_seconds: float = 60.0,
        cache: Optional[FileAnalysisCache] = None,
        shutdown_grace_seconds: float = 5.0,
    ):
        self.rule_engine = rule_engine
        self.max_workers = max(1, max_workers or os.cpu_count() or 1)
        self.timeout_seconds = timeout_seconds
        self.cache = cache
        self.shutdown_grace_seconds = shutdown_grace_seconds

    def analyze_file(self, task: AnalysisTask, ai_provider: Optional[AIProvider] = None) -> AnalysisResult:
        """Analyze one file synchronously, using the cache when present.

        Raises ``OSError`` if the file cannot be read.
        """
        data = Path(task.file_path).read_bytes()
        if self.cache is not None:
            cached = self.cache.get_by_content(data, task.ruleset_version)
            if cached is not None:
                return _for_task(cached, task)
        return self._analyze(task, data, ai_provider)

    def analyze_files(
        self, tasks: Iterable[AnalysisTask], ai_provider: Optional[AIProvider] = None
    ) -> BatchResult:
        start = time.perf_counter()
        batch = BatchResult()
        pending: List[Tuple[AnalysisTask, Optional[bytes]]] = []

        for task in tasks:
            if self.cache is None:
                pending.append((task, None))
                continue
            try:
                data = Path(task.file_path).read_bytes()
            except OSError as e:
                batch.errors.append(self._io_error(task, e))
                continue
            cached = self.cache.get_by_content(data, task.ruleset_version)
            if cached is not None:
                batch.results.append(_for_task(cached, task))
                batch.cache_hits += 1
            else:
                pending.append((task, data))

        if pending:
            self._run_pool(pending, ai_provider, batch)

        batch.total_time_ms = (time.perf_counter() - start) * 1000
        logger.info(
            "Analyzed %d files: %d completed, %d failed, %d cache hits, %d violations (%.0fms)",
            batch.total_files,
            batch.completed_files,
            batch.failed_files,
            batch.cache_hits,
            batch.total_violations,
            batch.total_time_ms,
        )
        return batch

    def _run_pool(
        self,
        pending: List[Tuple[AnalysisTask, Optional[bytes]]],
        ai_provider: Optional[AIProvider],
        batch: BatchResult,
    ) -> None:
        executor = concurrent.futures.ThreadPoolExecutor(
            max_workers=min(self.max_workers, len(pending)),
            thread_name_prefix="owasp-analyzer",
        )
        futures: Dict[concurrent.futures.Future, Tuple[int, AnalysisTask]] = {}
        started: Dict[int, float] = {}
        lock = threading.Lock()
        outcomes: Dict[int, Union[AnalysisResult, FileAnalysisError]] = {}

        def run(index: int, task: AnalysisTask, data: Optional[bytes]) -> AnalysisResult:
            with lock:
                started[index] = time.monotonic()
            return self._analyze(task, data, ai_provider)

        try:
            for index, (task, data) in enumerate(pending):
                futures[executor.submit(run, index, task, data)] = (index, task)

            not_done = set(futures)
            while not_done:
                done, not_done = concurrent.futures.wait(
                    not_done,
                    timeout=self._next_deadline(not_done, futures, started, lock),
                    return_when=concurrent.futures.FIRST_COMPLETED,
                )
                for future in done:
                    index, task = futures[future]
                    outcomes[index] = self._collect(future, task)

                now = time.monotonic()
                with lock:
                    expired = [
                        f for f in not_done
                        if futures[f][0] in started and now - started[futures[f][0]] >= self.timeout_seconds
                    ]
                for future in expired:
                    not_done.discard(future)
                    index, task = futures[future]
                    outcomes[index] = self._timeout_error(task)
        finally:
            self._shutdown(executor, futures)

        for index in sorted(outcomes):
            outcome = outcomes[index]
            if isinstance(outcome, FileAnalysisError):
                batch.errors.append(outcome)
            else:
                batch.results.append(outcome)

    def _next_deadline(
        self,
        not_done: Iterable[concurrent.futures.Future],
        futures: Dict[concurrent.futures.Future, Tuple[int, AnalysisTask]],
        started: Dict[int, float],
        lock: threading.Lock,
    ) -> float:
        """Seconds until the earliest running task expires.

        With nothing running yet a full timeout is returned; a task that
        starts meanwhile is picked up on the next pass.
        """
        with lock:
            starts = [started[futures[f][0]] for f in not_done if futures[f][0] in started]
        if not starts:
            return self.timeout_seconds
        return max(0.0, min(starts) + self.timeout_seconds - time.monotonic())

    def _collect(
        self, future: concurrent.futures.Future, task: AnalysisTask
    ) -> Union[AnalysisResult, FileAnalysisError]:
        path = str(task.file_path)
        try:
            return future.result()
        except OSError as e:
            return self._io_error(task, e)
        except Exception as e:
            logger.error("File analysis failed: %s - %s", path, e)
            return FileAnalysisError(path, ERROR_EXECUTION, f"File analysis failed: {path} - {e}")

    def _timeout_error(self, task: AnalysisTask) -> FileAnalysisError:
        path = str(task.file_path)
        timeout_ms = int(self.timeout_seconds * 1000)
        logger.error("File analysis timed out after %dms: %s", timeout_ms, path)
        return FileAnalysisError(path, ERROR_TIMEOUT, f"File analysis timeout after {timeout_ms}ms: {path}")

    def _shutdown(self, executor: concurrent.futures.ThreadPoolExecutor, futures: Iterable[concurrent.futures.Future]) -> None:
        unfinished = [f for f in futures if not f.done()]
        if unfinished:
            logger.debug("Waiting up to %.1fs for %d unfinished analyses", self.shutdown_grace_seconds, len(unfinished))
            concurrent.futures.wait(unfinished, timeout=self.shutdown_grace_seconds)
        executor.shutdown(wait=False, cancel_futures=True)

    def _analyze(
        self, task: AnalysisTask, data: Optional[bytes], ai_provider: Optional[AIProvider]
    ) -> AnalysisResult:
        path = Path(task.file_path)
        if data is None:
            data = path.read_bytes()
        result = self.rule_engine.analyze(
            data.decode("utf-8", errors="replace"),
            task.language,
            task.ruleset_version,
            ai_provider=ai_provider,
            file_name=path.name,
            file_path=str(path),
        )
        if self.cache is not None:
            self.cache.put_by_content(data, task.ruleset_version, result)
        return result

    @staticmethod
    def _io_error(task: AnalysisTask, error: OSError) -> FileAnalysisError:
        path = str(task.file_path)
        logger.error("Cannot read %s: %s", path, error)
        return FileAnalysisError(path, ERROR_IO, f"Cannot read file: {path} - {error}")


__all__ = [
    "ERROR_TIMEOUT",
    "ERROR_EXECUTION",
    "ERROR_IO",
    "FileAnalysisError",
    "BatchResult",
    "ParallelFileAnalyzer",
]
