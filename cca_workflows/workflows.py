"""
GitHub Actions workflow validation and analysis.

Validation checks each workflow file's YAML structure plus a few security
and performance conventions, in parallel through the ParallelExecutor,
caching each file's result by content and mtime. Analysis summarizes run
history (via the GitHub API client) and the configuration patterns used
across the workflow directory.
"""

import json
import logging
import re
import threading
from collections import defaultdict
from dataclasses import asdict, dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Union

import yaml

from .cache import CacheStore, file_cache_key
from .errors import CacheIOError, InvalidInput, UpstreamError
from .executor import CancellationToken, ParallelExecutor, ProgressCallback
from .github_api import GitHubAPIClient
from .types import RunResult
from .utils.metrics import PERFORMANCE_ISSUES, WORKFLOWS_ANALYZED, MetricsCollector

logger = logging.getLogger(__name__)

VALIDATE_TASK = "validate_workflow"
VALIDATION_CONTEXT = "workflow-validation"

WORKFLOW_SUFFIXES = (".yml", ".yaml")

# Thresholds
SLOW_WORKFLOW_MINUTES = 15
MIN_SUCCESS_RATE = 90
MIN_CACHE_PERCENT = 50
MIN_PERMISSIONS_PERCENT = 50
COMPLEX_JOBS = 5
COMPLEX_STEPS = 20

RUN_LIST_FIELDS = "name,status,conclusion,createdAt,updatedAt,databaseId"

_UNPINNED_VALIDATE = re.compile(r"@(main|master|latest)\b")
_UNPINNED_ANALYZE = re.compile(r"@(main|master)\b")
_DEPENDENCY_INSTALL = re.compile(r"node_modules|npm install|yarn install")
_CACHING = re.compile(r"cache:|actions/cache")


@dataclass
class ValidationResult:
    """Findings for one workflow file."""
    path: str
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    cached: bool = False

    @property
    def ok(self) -> bool:
        return not self.errors

    def to_json(self) -> str:
        data = asdict(self)
        data.pop("cached")
        return json.dumps(data)

    @classmethod
    def from_json(cls, payload: str) -> "ValidationResult":
        data = json.loads(payload)
        return cls(
            path=data["path"],
            errors=list(data.get("errors", [])),
            warnings=list(data.get("warnings", [])),
            cached=True,
        )


@dataclass
class ValidationSummary:
    """Outcome of a parallel validation run."""
    results: List[ValidationResult]
    run: RunResult

    @property
    def total_errors(self) -> int:
        return sum(len(r.errors) for r in self.results)

    @property
    def total_warnings(self) -> int:
        return sum(len(r.warnings) for r in self.results)

    @property
    def failed_files(self) -> List[ValidationResult]:
        return [r for r in self.results if not r.ok]

    @property
    def exit_code(self) -> int:
        return self.run.exit_code


def discover_workflows(directory: Union[str, Path]) -> List[Path]:
    """
    Find workflow files (*.yml, *.yaml) under a directory, sorted by path.

    Returns an empty list if the directory does not exist.
    """
    root = Path(directory)
    if not root.is_dir():
        logger.warning(f"Workflow directory not found: {root}")
        return []
    return sorted(
        p for p in root.rglob("*")
        if p.is_file() and p.suffix in WORKFLOW_SUFFIXES
    )


def validate_workflow_file(path: Union[str, Path]) -> ValidationResult:
    """
    Validate one workflow file.

    Errors: unreadable file, YAML syntax, missing `on` or `jobs`, a job
    without `runs-on` or `steps` (reusable-workflow jobs are exempt).
    Warnings: missing `name`, unpinned actions, no `permissions`,
    dependency installs without caching.
    """
    path = Path(path)
    result = ValidationResult(path=str(path))
    filename = path.name

    try:
        text = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        result.errors.append(f"Cannot read {path}: {exc}")
        return result

    try:
        document = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        result.errors.append(f"YAML syntax error in {path}: {exc}")
        document = None
    else:
        if not isinstance(document, dict):
            result.errors.append(f"Workflow {filename} is not a YAML mapping")
        else:
            _check_structure(document, filename, result)

    if _UNPINNED_VALIDATE.search(text):
        result.warnings.append(
            f"Using unpinned action versions in: {filename} (consider using specific versions)"
        )
    if "permissions:" not in text:
        result.warnings.append(f"No explicit permissions defined in: {filename}")
    if _DEPENDENCY_INSTALL.search(text) and not _CACHING.search(text):
        result.warnings.append(f"Consider adding dependency caching in: {filename}")

    return result


def _check_structure(document: Dict[Any, Any], filename: str, result: ValidationResult) -> None:
    if "name" not in document:
        result.warnings.append(f"Missing 'name' field in: {filename}")
    # YAML 1.1 reads a bare `on:` key as boolean True
    if "on" not in document and True not in document:
        result.errors.append(f"Missing 'on' field in: {filename}")

    jobs = document.get("jobs")
    if jobs is None:
        result.errors.append(f"Missing 'jobs' field in: {filename}")
        return
    if not isinstance(jobs, dict):
        result.errors.append(f"'jobs' must be a mapping in: {filename}")
        return

    for job_id, job in jobs.items():
        if not isinstance(job, dict):
            result.errors.append(f"Job '{job_id}' is not a mapping in {filename}")
            continue
        if "uses" in job:
            continue
        if "runs-on" not in job:
            result.errors.append(f"Missing 'runs-on' in job '{job_id}' in {filename}")
        if "steps" not in job:
            result.errors.append(f"Missing 'steps' in job '{job_id}' in {filename}")


class WorkflowValidator:
    """
    Validates workflow files in parallel with a per-file result cache.

    Usage:
        validator = WorkflowValidator(executor, cache)
        summary = validator.validate(discover_workflows(".github/workflows"), "adaptive")
    """

    def __init__(self, executor: ParallelExecutor, cache: Optional[CacheStore] = None):
        self.executor = executor
        self.cache = cache
        self._results: Dict[str, ValidationResult] = {}
        self._lock = threading.Lock()
        executor.registry.register(VALIDATE_TASK, self._validate_task)

    def validate_file(self, path: Union[str, Path]) -> ValidationResult:
        """Validate one file, reading and filling the cache."""
        key = None
        if self.cache is not None:
            # resolved so relative paths such as ../repo/ci.yml are keyed by location
            key = file_cache_key(Path(path).resolve(), VALIDATION_CONTEXT)
            payload = self.cache.get(key)
            if payload is not None:
                try:
                    return ValidationResult.from_json(payload)
                except (ValueError, KeyError, TypeError):
                    logger.warning(f"Discarding corrupt cached validation for {path}")

        result = validate_workflow_file(path)
        if key is not None:
            try:
                self.cache.put(key, result.to_json())
            except CacheIOError as exc:
                logger.warning(f"Could not cache validation for {path}: {exc}")
        return result

    def validate(
        self,
        paths: Iterable[Union[str, Path]],
        max_jobs: Union[int, str, None] = None,
        token: Optional[CancellationToken] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> ValidationSummary:
        """
        Validate files in parallel.

        A file with errors counts as a failed item; a file whose
        validation raised, timed out or never ran gets a synthetic result
        carrying the reason.
        """
        items = [str(p) for p in paths]
        with self._lock:
            self._results = {}

        run = self.executor.run(VALIDATE_TASK, max_jobs, items, token=token, on_progress=on_progress)

        results = []
        with self._lock:
            collected = dict(self._results)
        for job in run.results:
            result = collected.get(job.item)
            if result is None:
                reason = job.error or "validation did not complete"
                result = ValidationResult(path=job.item, errors=[f"Validation failed for {job.item}: {reason}"])
            results.append(result)

        summary = ValidationSummary(results=results, run=run)
        logger.info(
            f"Validated {len(results)} workflow(s): "
            f"{summary.total_errors} error(s), {summary.total_warnings} warning(s)"
        )
        return summary

    def _validate_task(self, path: str) -> bool:
        result = self.validate_file(path)
        with self._lock:
            self._results[path] = result
        return result.ok


@dataclass
class WorkflowRuntime:
    """Aggregated run statistics for one workflow name."""
    name: str
    count: int
    avg_duration_minutes: float
    success_rate: float
    failure_rate: float


@dataclass
class RuntimeReport:
    workflows: List[WorkflowRuntime] = field(default_factory=list)
    slow: int = 0
    unreliable: int = 0

    @property
    def issues(self) -> int:
        return self.slow + self.unreliable


@dataclass
class EfficiencyReport:
    total: int = 0
    caching: int = 0
    conditionals: int = 0
    matrix: int = 0
    permissions: int = 0
    unpinned: int = 0
    recommendations: List[str] = field(default_factory=list)

    @property
    def issues(self) -> int:
        return len(self.recommendations)


@dataclass
class WorkflowComplexity:
    name: str
    jobs: int
    steps: int

    @property
    def complex(self) -> bool:
        return self.jobs > COMPLEX_JOBS or self.steps > COMPLEX_STEPS


@dataclass
class ComplexityReport:
    workflows: List[WorkflowComplexity] = field(default_factory=list)

    @property
    def average_jobs(self) -> int:
        if not self.workflows:
            return 0
        return sum(w.jobs for w in self.workflows) // len(self.workflows)

    @property
    def average_steps(self) -> int:
        if not self.workflows:
            return 0
        return sum(w.steps for w in self.workflows) // len(self.workflows)

    @property
    def complex_workflows(self) -> List[WorkflowComplexity]:
        return [w for w in self.workflows if w.complex]


class WorkflowAnalyzer:
    """
    Runtime, efficiency and complexity analysis for a repository's workflows.

    Counts analyzed workflows and detected issues on the shared collector.
    """

    def __init__(
        self,
        client: GitHubAPIClient,
        metrics: Optional[MetricsCollector] = None,
        workflow_dir: Union[str, Path, None] = None,
        limit: Optional[int] = None,
    ):
        self.client = client
        self.metrics = metrics or client.metrics_collector
        self.workflow_dir = Path(workflow_dir or client.config.workflow_dir)
        self.limit = limit or client.config.workflow_analysis_limit

    def analyze_runtime(self, limit: Optional[int] = None) -> RuntimeReport:
        """
        Group recent runs by workflow name.

        Raises:
            InvalidInput: limit is not a positive int
            UpstreamError: gh failed or returned malformed JSON
            RateLimited: quota exhausted
        """
        limit = self.limit if limit is None else limit
        if isinstance(limit, bool) or not isinstance(limit, int) or limit < 1:
            raise InvalidInput(f"Invalid run limit: {limit!r}")

        raw = self.client.run_list("--limit", str(limit), "--json", RUN_LIST_FIELDS)
        try:
            runs = json.loads(raw) if raw.strip() else []
        except ValueError as exc:
            raise UpstreamError(f"Malformed workflow run data: {exc}") from exc
        if not isinstance(runs, list):
            raise UpstreamError("Malformed workflow run data: expected a JSON array")

        report = RuntimeReport()
        if not runs:
            logger.warning("No workflow run data available")
            return report

        grouped: Dict[str, List[Dict[str, Any]]] = defaultdict(list)
        for run in runs:
            if not isinstance(run, dict):
                continue
            grouped[run.get("name") or "unknown"].append(run)

        for name, group in grouped.items():
            count = len(group)
            report.workflows.append(WorkflowRuntime(
                name=name,
                count=count,
                avg_duration_minutes=sum(_run_minutes(r) for r in group) / count,
                success_rate=sum(1 for r in group if r.get("conclusion") == "success") * 100 / count,
                failure_rate=sum(1 for r in group if r.get("conclusion") == "failure") * 100 / count,
            ))
        report.workflows.sort(key=lambda w: w.avg_duration_minutes, reverse=True)

        report.slow = sum(1 for w in report.workflows if w.avg_duration_minutes > SLOW_WORKFLOW_MINUTES)
        report.unreliable = sum(1 for w in report.workflows if w.success_rate < MIN_SUCCESS_RATE)
        if report.slow:
            logger.warning(f"Found {report.slow} workflow(s) with >{SLOW_WORKFLOW_MINUTES}min average runtime")
        if report.unreliable:
            logger.warning(f"Found {report.unreliable} workflow(s) with <{MIN_SUCCESS_RATE}% success rate")

        self.metrics.inc_counter(WORKFLOWS_ANALYZED, len(report.workflows))
        self.metrics.inc_counter(PERFORMANCE_ISSUES, report.issues)
        return report

    def analyze_efficiency(self, directory: Union[str, Path, None] = None) -> EfficiencyReport:
        """Count optimization patterns across workflow files."""
        report = EfficiencyReport()
        for path in discover_workflows(directory or self.workflow_dir):
            try:
                text = path.read_text(encoding="utf-8")
            except (OSError, UnicodeDecodeError) as exc:
                logger.warning(f"Skipping unreadable workflow {path}: {exc}")
                continue
            report.total += 1
            if _CACHING.search(text):
                report.caching += 1
            if "if:" in text:
                report.conditionals += 1
            if "strategy:" in text and "matrix:" in text:
                report.matrix += 1
            if "permissions:" in text:
                report.permissions += 1
            if _UNPINNED_ANALYZE.search(text):
                report.unpinned += 1

        if not report.total:
            logger.warning("No workflow files found")
            return report

        if report.caching < report.total * MIN_CACHE_PERCENT // 100:
            report.recommendations.append("Consider adding caching to more workflows for better performance")
        if report.permissions < report.total * MIN_PERMISSIONS_PERCENT // 100:
            report.recommendations.append("Consider adding explicit permissions to workflows for security")
        if report.unpinned:
            report.recommendations.append(
                f"Found {report.unpinned} workflow(s) using @main/@master - consider pinning to specific versions"
            )
        for recommendation in report.recommendations:
            logger.warning(recommendation)

        self.metrics.inc_counter(PERFORMANCE_ISSUES, report.issues)
        return report

    def analyze_complexity(self, directory: Union[str, Path, None] = None) -> ComplexityReport:
        """Count jobs and steps per workflow; unparseable files are skipped."""
        report = ComplexityReport()
        for path in discover_workflows(directory or self.workflow_dir):
            try:
                document = yaml.safe_load(path.read_text(encoding="utf-8"))
            except (OSError, UnicodeDecodeError, yaml.YAMLError) as exc:
                logger.warning(f"Skipping {path} in complexity analysis: {exc}")
                continue

            jobs = document.get("jobs") if isinstance(document, dict) else None
            jobs = jobs if isinstance(jobs, dict) else {}
            steps = sum(
                len(job["steps"])
                for job in jobs.values()
                if isinstance(job, dict) and isinstance(job.get("steps"), list)
            )
            entry = WorkflowComplexity(name=path.stem, jobs=len(jobs), steps=steps)
            report.workflows.append(entry)
            if entry.complex:
                logger.info(f"Complex workflow detected: {entry.name} ({entry.jobs} jobs, {entry.steps} steps)")

        if report.complex_workflows:
            logger.warning("Consider breaking down complex workflows into smaller, focused workflows")
        return report


def _run_minutes(run: Dict[str, Any]) -> int:
    created = _parse_timestamp(run.get("createdAt"))
    updated = _parse_timestamp(run.get("updatedAt"))
    if created is None or updated is None:
        return 0
    return int((updated - created).total_seconds() // 60)


def _parse_timestamp(value: Any) -> Optional[datetime]:
    if not isinstance(value, str) or not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
