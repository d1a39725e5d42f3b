"""
Base probe step interface for the Network Inventory Module.

This module defines the abstract base class every discovery stage implements.
A step is started once with a list of target addresses, runs its sweep on a
background worker thread using a bounded thread pool, writes its findings into
the shared HostRegistry and exposes progress that callers poll:

* ``progress_percentage``: monotonically non-decreasing, exactly 1.0 once
  the step has completed
* ``progress_message``: short status text, last write wins
* ``progress_log``: append-only trace of every target's outcome, newest last
* ``is_completed``: becomes true once every target has been accounted for

No exception escapes a step. Per-target failures are converted into log lines
by the ErrorHandler and the target still counts as processed.
"""

import threading
from abc import ABC, abstractmethod
from collections import deque
from concurrent.futures import ThreadPoolExecutor, as_completed
from datetime import datetime
from typing import Callable, List, Optional, Sequence, TypeVar

from ..core.host_registry import HostRegistry
from ..utils.error_handler import ErrorHandler
from ..utils.logger import Logger, get_logger

ItemT = TypeVar("ItemT")


class TargetSource:
    """Where the pipeline runner takes a step's target list from."""
    TARGETS = "targets"    # the caller's address list
    ONLINE = "online"      # addresses of hosts currently marked Online
    REGISTRY = "registry"  # the step selects hosts from the registry itself


class BaseStep(ABC):
    """
    Abstract base class for all probe steps.

    Concrete steps set ``key``, ``name`` and ``description`` and implement
    ``run``, which performs the blocking sweep on the step's worker thread.
    """

    key: str = ""
    name: str = ""
    description: str = ""
    target_source: str = TargetSource.TARGETS

    def __init__(
        self,
        registry: HostRegistry,
        logger: Optional[Logger] = None,
        error_handler: Optional[ErrorHandler] = None,
    ):
        """
        Initialize the step.

        Args:
            registry: Shared host registry the step writes into
            logger: Logger instance for console output
            error_handler: ErrorHandler used to classify per-target failures
        """
        self.registry = registry
        self.logger = logger or get_logger(self.__class__.__name__)
        self.error_handler = error_handler or ErrorHandler(self.logger)

        self._state_lock = threading.Lock()
        self._log_lines = deque()
        self._message = ""
        self._total = 0
        self._processed = 0
        self._last_percentage = 0.0
        self._started = False
        self._done = threading.Event()
        self._thread: Optional[threading.Thread] = None

        self.start_time: Optional[datetime] = None
        self.end_time: Optional[datetime] = None

    # ------------------------------------------------------------------
    # Polled contract
    # ------------------------------------------------------------------

    @property
    def progress_message(self) -> str:
        with self._state_lock:
            return self._message

    @property
    def progress_log(self) -> str:
        with self._state_lock:
            return "\n".join(self._log_lines)

    @property
    def progress_percentage(self) -> float:
        with self._state_lock:
            if self._done.is_set():
                return 1.0
            if self._total:
                current = min(self._processed / self._total, 1.0)
                self._last_percentage = max(self._last_percentage, current)
            return self._last_percentage

    @property
    def is_completed(self) -> bool:
        return self._done.is_set()

    @property
    def duration(self) -> float:
        """Seconds between start and completion (or now, while running)."""
        if not self.start_time:
            return 0.0
        end = self.end_time or datetime.now()
        return (end - self.start_time).total_seconds()

    def start(self, targets: Sequence[str]) -> None:
        """
        Launch the sweep on a background thread and return immediately.

        Args:
            targets: Addresses to probe. Registry-driven steps ignore them.
        """
        with self._state_lock:
            if self._started:
                self.logger.warning(f"{self.name} was already started; ignoring second start")
                return
            self._started = True

        self.start_time = datetime.now()
        self._thread = threading.Thread(
            target=self._execute,
            args=(list(targets),),
            name=f"step-{self.key or self.__class__.__name__}",
            daemon=True,
        )
        self._thread.start()

    def wait(self, timeout: Optional[float] = None) -> bool:
        """
        Block until the step has completed.

        Args:
            timeout: Maximum seconds to wait, None for no limit

        Returns:
            True if the step completed
        """
        return self._done.wait(timeout)

    def _execute(self, targets: List[str]) -> None:
        try:
            self.run(targets)
        except Exception as e:
            context = self.error_handler.context_for(e, "run", self.__class__.__name__)
            diagnostic = self.error_handler.handle_error(e, context)
            self._append_log(f"Step failed: {diagnostic}")
        finally:
            self.end_time = datetime.now()
            with self._state_lock:
                self._last_percentage = 1.0
                self._done.set()

    @abstractmethod
    def run(self, targets: List[str]) -> None:
        """
        Perform the sweep. Runs on the step's worker thread.

        Args:
            targets: Addresses handed to ``start``
        """
        pass

    # ------------------------------------------------------------------
    # Helpers for concrete steps
    # ------------------------------------------------------------------

    def _append_log(self, line: str) -> None:
        with self._state_lock:
            self._log_lines.append(line)
        self.logger.debug(f"[{self.name}] {line}")

    def _set_message(self, message: str) -> None:
        with self._state_lock:
            self._message = message

    def _set_total(self, total: int) -> None:
        with self._state_lock:
            self._total = total
            self._processed = 0

    def _advance(self, count: int = 1) -> None:
        with self._state_lock:
            self._processed = min(self._processed + count, self._total)
            self._message = f"Completed {self._processed} of {self._total}"

    def _sweep(
        self,
        items: Sequence[ItemT],
        worker: Callable[[ItemT], None],
        max_workers: int,
        operation: str = "probe",
    ) -> None:
        """
        Run ``worker`` over every item with a bounded thread pool.

        Every item counts as processed whether the worker returns normally or
        raises. Raised exceptions are classified and logged against the item.

        Args:
            items: Work items, typically addresses or hosts
            worker: Callable processing one item
            max_workers: Upper bound on concurrently running workers
            operation: Operation name recorded with failures
        """
        self._set_total(len(items))
        if not items:
            return

        pool_size = max(1, min(max_workers, len(items)))
        with ThreadPoolExecutor(
            max_workers=pool_size, thread_name_prefix=self.key or "step"
        ) as executor:
            future_to_item = {executor.submit(worker, item): item for item in items}

            for future in as_completed(future_to_item):
                item = future_to_item[future]
                try:
                    future.result()
                except Exception as e:
                    context = self.error_handler.context_for(
                        e, operation, self.__class__.__name__, target=str(item)
                    )
                    diagnostic = self.error_handler.handle_error(e, context)
                    self._append_log(f"{item}: {diagnostic}")
                finally:
                    self._advance()
