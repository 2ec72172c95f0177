"""Ordered, fail-fast execution of named bootstrap steps."""

import json
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from kubeadm_bootstrap.exceptions import BootstrapError, ConfigurationError, StepFailedError
from kubeadm_bootstrap.logging_config import get_logger
from kubeadm_bootstrap.models.config import BootstrapConfig
from kubeadm_bootstrap.models.state import ProcedureState, StepRecord
from kubeadm_bootstrap.shell import CommandRunner

logger = get_logger(__name__)


@dataclass
class BootstrapContext:
    """Everything a step needs: the configuration, the runner, and values
    produced by earlier steps (such as the resolved advertise address)."""

    config: BootstrapConfig
    runner: CommandRunner
    facts: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Step:
    """A named unit of work. ``action`` raises BootstrapError on failure."""

    name: str
    action: Callable[[BootstrapContext], None]
    description: str = ""


@dataclass
class StepResult:
    name: str
    success: bool
    duration: float
    error: BootstrapError | None = None


@dataclass
class ProcedureResult:
    """Outcome of a procedure run."""

    procedure: str
    state: str
    results: list[StepResult] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.state == "completed"

    @property
    def failed_step(self) -> str | None:
        return next((r.name for r in self.results if not r.success), None)

    @property
    def error(self) -> StepFailedError | None:
        failed = next((r for r in self.results if not r.success), None)
        if failed is None or failed.error is None:
            return None
        return StepFailedError(failed.name, failed.error)


class StateStore:
    """Persists procedure progress as JSON so an interrupted run can resume."""

    def __init__(self, state_dir: str | Path):
        self.state_dir = Path(state_dir)

    def path_for(self, procedure: str) -> Path:
        return self.state_dir / f"{procedure}.json"

    def load(self, procedure: str) -> ProcedureState | None:
        """Load saved progress, or None if the procedure never ran here."""
        path = self.path_for(procedure)
        if not path.exists():
            return None
        try:
            return ProcedureState.model_validate(json.loads(path.read_text()))
        except (OSError, json.JSONDecodeError, ValidationError) as e:
            raise ConfigurationError(
                f"Failed to read procedure state: {path}",
                f"{e}\nDelete the file to start over",
            )

    def save(self, state: ProcedureState) -> None:
        """Write progress. Failing to persist never fails the procedure."""
        path = self.path_for(state.procedure)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(state.model_dump_json(indent=2))
        except OSError as e:
            logger.warning(f"Failed to save procedure state to {path}: {e}")

    def next_step(self, procedure: "Procedure") -> str | None:
        """Name of the step a resumed run should start at.

        Returns None when there is nothing to resume: the procedure never ran
        here or already completed.
        """
        state = self.load(procedure.name)
        if state is None or state.finished:
            return None
        if state.failed_step:
            return state.failed_step
        return next((s.name for s in procedure.steps if s.name not in state.completed), None)


class Procedure:
    """An ordered list of named steps executed with stop-on-first-failure."""

    def __init__(
        self,
        name: str,
        steps: list[Step],
        preflight: Callable[[BootstrapContext], None] | None = None,
    ):
        names = [s.name for s in steps]
        if len(names) != len(set(names)):
            raise ValueError(f"step names must be unique in procedure '{name}'")
        self.name = name
        self.steps = steps
        self.preflight = preflight

    @property
    def step_names(self) -> list[str]:
        return [s.name for s in self.steps]

    def steps_from(self, start_at: str | None = None) -> list[Step]:
        """Steps remaining when starting at ``start_at``.

        Raises:
            ConfigurationError: If no step has that name
        """
        if start_at is None:
            return list(self.steps)
        if start_at not in self.step_names:
            raise ConfigurationError(
                f"Unknown step '{start_at}' for {self.name}",
                f"Valid steps: {', '.join(self.step_names)}",
            )
        return self.steps[self.step_names.index(start_at):]

    def run(
        self,
        ctx: BootstrapContext,
        start_at: str | None = None,
        store: StateStore | None = None,
    ) -> ProcedureResult:
        """Execute the steps in order, stopping at the first failure.

        Nothing is rolled back on failure; the saved state records which step
        failed so the run can be resumed from it.
        """
        steps = self.steps_from(start_at)
        console = ctx.runner.console

        # Configuration problems abort before any step touches the host
        if self.preflight:
            self.preflight(ctx)

        state = store.load(self.name) if store and start_at is not None else None
        state = state or ProcedureState(procedure=self.name)

        result = ProcedureResult(procedure=self.name, state=state.state)
        logger.info(f"Starting {self.name} with {len(steps)} step(s)")

        for index, step in enumerate(steps, start=1):
            console.print(
                f"\n[bold cyan]==> [{index}/{len(steps)}] {step.name}[/bold cyan]"
                + (f" [dim]{step.description}[/dim]" if step.description else "")
            )
            started_at = datetime.now()
            start = time.monotonic()
            try:
                step.action(ctx)
            except BootstrapError as e:
                duration = time.monotonic() - start
                logger.error(f"Step '{step.name}' failed after {duration:.1f}s: {e.message}")
                self._record(state, store, step.name, False, started_at, e.message)
                result.results.append(StepResult(step.name, False, duration, e))
                result.state = "failed"
                return result
            except Exception as e:
                logger.error(f"Unexpected error in step '{step.name}': {e}", exc_info=True)
                self._record(state, store, step.name, False, started_at, str(e))
                raise

            duration = time.monotonic() - start
            logger.info(f"Step '{step.name}' completed in {duration:.1f}s")
            self._record(state, store, step.name, True, started_at, None)
            result.results.append(StepResult(step.name, True, duration))
            result.state = step.name

        state.state = "completed"
        if store:
            store.save(state)
        result.state = "completed"
        logger.info(f"{self.name} completed")
        return result

    @staticmethod
    def _record(
        state: ProcedureState,
        store: StateStore | None,
        name: str,
        success: bool,
        started_at: datetime,
        error: str | None,
    ) -> None:
        state.record(
            StepRecord(
                name=name,
                success=success,
                started_at=started_at,
                finished_at=datetime.now(),
                error=error,
            )
        )
        if store:
            store.save(state)
