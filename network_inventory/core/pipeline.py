"""
Pipeline runner for the Network Inventory Module.

This module provides the PipelineRunner class that owns the HostRegistry,
builds the configured probe steps in order and drives them one after the
other: each step is started with the target list its ``target_source`` asks
for, polled until it completes, and the runner then advances. A step that
fails outright is logged and the pipeline moves on.
"""

import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

from .host_registry import HostRegistry
from .data_models import Host, HostStatus
from ..config.config_loader import ConfigLoader, PipelineConfig
from ..steps.base_step import BaseStep, TargetSource
from ..steps.arp_table_step import ArpTableStep
from ..steps.ping_sweep_step import PingSweepStep
from ..steps.reverse_dns_step import ReverseDnsStep
from ..steps.mdns_step import MdnsStep
from ..steps.port_scan_step import PortScanStep
from ..steps.http_fingerprint_step import HttpFingerprintStep
from ..steps.netbios_step import NetBiosStep
from ..steps.msrpc_step import MsrpcStep
from ..steps.inference_step import InferenceStep
from ..utils.error_handler import ErrorHandler
from ..utils.logger import Logger, get_logger


@dataclass
class StepOutcome:
    """Summary of one step's run."""
    key: str
    name: str
    duration: float
    completed: bool
    final_message: str = ""


@dataclass
class PipelineResult:
    """
    Result of a complete pipeline run.

    Attributes:
        hosts: Snapshot of the registry after the last step
        steps: Per-step outcomes in execution order
        started_at: When the run began
        duration: Total run time in seconds
        error_statistics: Failure counts by error type
    """
    hosts: List[Host]
    steps: List[StepOutcome] = field(default_factory=list)
    started_at: Optional[datetime] = None
    duration: float = 0.0
    error_statistics: Dict[str, int] = field(default_factory=dict)

    @property
    def online_count(self) -> int:
        return sum(1 for host in self.hosts if host.status == HostStatus.ONLINE)


class PipelineRunner:
    """
    Sequences the probe steps over one shared registry.

    The runner can be driven synchronously with ``run`` or in the background
    with ``start``, in which case ``progress_percentage``, ``current_step``
    and ``is_completed`` are polled by the caller.
    """

    def __init__(
        self,
        registry: Optional[HostRegistry] = None,
        config_loader: Optional[ConfigLoader] = None,
        logger: Optional[Logger] = None,
        steps: Optional[Sequence[str]] = None,
    ):
        """
        Initialize the pipeline runner.

        Args:
            registry: Registry to populate, a new one when omitted
            config_loader: Source of the step configurations
            logger: Logger instance for console output
            steps: Step keys overriding the configured step list
        """
        self.logger = logger or get_logger(__name__)
        self.registry = registry or HostRegistry(self.logger)
        self.config_loader = config_loader or ConfigLoader(logger=self.logger)
        self.error_handler = ErrorHandler(self.logger)

        self.configurations: Dict[str, Any] = self.config_loader.load_all()
        self.pipeline_config: PipelineConfig = self.configurations["pipeline"]
        if steps:
            self.pipeline_config.steps = self.config_loader.validate_steps(list(steps))

        self.steps: List[BaseStep] = [self._build_step(key) for key in self.pipeline_config.steps]

        self._lock = threading.Lock()
        self._current_index = 0
        self._done = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._result: Optional[PipelineResult] = None

    def _build_step(self, key: str) -> BaseStep:
        common = dict(logger=self.logger, error_handler=self.error_handler)
        config = self.configurations

        if key == "arp":
            return ArpTableStep(self.registry, config["arp"], **common)
        if key == "ping":
            return PingSweepStep(self.registry, config["ping"], **common)
        if key == "dns":
            return ReverseDnsStep(self.registry, config["dns"], **common)
        if key == "mdns":
            return MdnsStep(self.registry, config["mdns"], **common)
        if key == "portscan":
            return PortScanStep(self.registry, config["portscan"], **common)
        if key == "http":
            return HttpFingerprintStep(self.registry, config["http"], **common)
        if key == "netbios":
            return NetBiosStep(self.registry, config["netbios"], **common)
        if key == "msrpc":
            return MsrpcStep(self.registry, config["msrpc"], **common)
        if key == "inference":
            return InferenceStep(self.registry, **common)
        raise ValueError(f"Unknown pipeline step: {key}")

    # ------------------------------------------------------------------
    # Polled state
    # ------------------------------------------------------------------

    @property
    def is_completed(self) -> bool:
        return self._done.is_set()

    @property
    def current_step(self) -> Optional[BaseStep]:
        with self._lock:
            if self._done.is_set() or self._current_index >= len(self.steps):
                return None
            return self.steps[self._current_index]

    @property
    def progress_percentage(self) -> float:
        """(finished steps + current step fraction) / step count."""
        if self._done.is_set() or not self.steps:
            return 1.0
        with self._lock:
            index = self._current_index
        current = self.steps[index].progress_percentage if index < len(self.steps) else 0.0
        return min((index + current) / len(self.steps), 1.0)

    @property
    def result(self) -> Optional[PipelineResult]:
        return self._result

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def start(self, targets: Sequence[str]) -> None:
        """Run the pipeline on a background thread and return immediately."""
        if self._thread is not None:
            self.logger.warning("Pipeline already started; ignoring second start")
            return
        self._thread = threading.Thread(
            target=self.run, args=(list(targets),), name="pipeline", daemon=True
        )
        self._thread.start()

    def wait(self, timeout: Optional[float] = None) -> bool:
        return self._done.wait(timeout)

    def run(self, targets: Sequence[str]) -> PipelineResult:
        """
        Execute every configured step in order and block until done.

        Args:
            targets: Caller's address list

        Returns:
            PipelineResult: Registry snapshot and per-step outcomes
        """
        targets = list(targets)
        started_at = datetime.now()
        outcomes: List[StepOutcome] = []

        self.logger.section("NETWORK INVENTORY")
        self.logger.info(f"Running {len(self.steps)} steps over {len(targets)} targets")

        try:
            for index, step in enumerate(self.steps):
                with self._lock:
                    self._current_index = index
                outcomes.append(self._run_step(step, targets, index))
        finally:
            with self._lock:
                self._current_index = len(self.steps)

            duration = (datetime.now() - started_at).total_seconds()
            self._result = PipelineResult(
                hosts=self.registry.snapshot(),
                steps=outcomes,
                started_at=started_at,
                duration=duration,
                error_statistics=self.error_handler.get_statistics(),
            )
            self._done.set()

        self.logger.success(
            f"Pipeline completed in {self._result.duration:.1f}s: {len(self._result.hosts)} hosts, "
            f"{self._result.online_count} online"
        )
        return self._result

    def _resolve_targets(self, step: BaseStep, targets: List[str]) -> List[str]:
        if step.target_source == TargetSource.ONLINE:
            return self.registry.online_addresses()
        if step.target_source == TargetSource.REGISTRY:
            return []
        return targets

    def _run_step(self, step: BaseStep, targets: List[str], index: int) -> StepOutcome:
        step_targets = self._resolve_targets(step, targets)
        self.logger.progress_start(f"[{index + 1}/{len(self.steps)}] {step.name}")

        try:
            step.start(step_targets)
        except Exception as e:
            self.logger.progress_end()
            self.logger.error(f"{step.name} could not be started: {e}", exception=e)
            return StepOutcome(step.key, step.name, 0.0, False, str(e))

        last_report = None
        while not step.wait(self.pipeline_config.poll_interval):
            report = f"{step.progress_percentage:.0%} {step.progress_message}"
            if report != last_report:
                self.logger.progress_update(report)
                last_report = report

        self.logger.progress_end(f"{step.name} completed in {step.duration:.1f}s")
        if step.progress_message:
            self.logger.debug(f"{step.name}: {step.progress_message}")

        return StepOutcome(
            key=step.key,
            name=step.name,
            duration=step.duration,
            completed=step.is_completed,
            final_message=step.progress_message,
        )
