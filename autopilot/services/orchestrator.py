from __future__ import annotations

import logging
import threading
import time
from typing import Callable, Mapping

from autopilot.api.v1.schemas import StepStatus, StepType
from autopilot.errors import ProviderError
from autopilot.models.pipeline import EnhancementPlan, PipelineResult, StepResult
from autopilot.services.planning import validate_plan
from autopilot.services.providers import ProviderAdapter

logger = logging.getLogger(__name__)


class AutopilotOrchestrator:
    """
    Executes an enhancement plan step by step.

    Steps run strictly in `priority` order because each one consumes the
    previous step's output. A provider failure is recorded on its
    StepResult and the next step receives the last successfully produced
    image; it never aborts the rest of the plan.
    """

    def __init__(
        self,
        adapters: Mapping[StepType, ProviderAdapter],
        clock: Callable[[], float] = time.perf_counter,
    ) -> None:
        self._adapters = adapters
        self._clock = clock

    def run(
        self,
        original_image: str,
        plan: EnhancementPlan,
        cancel_event: threading.Event | None = None,
    ) -> PipelineResult:
        """
        Run `plan` against `original_image` and return the aggregate result.

        If `cancel_event` is set between steps, no further steps are started
        and the result accumulated so far is returned with `cancelled=True`.

        Raises:
            InvalidPlanError: before any step runs, if the plan is invalid.
        """
        validate_plan(plan)

        result = PipelineResult.start(original_image)
        current_image = original_image
        run_start = self._clock()
        logger.info(
            "Starting Autopilot run with %d step(s): %s",
            len(plan.priority),
            ", ".join(step.value for step in plan.priority) or "none",
        )

        for step_type in plan.priority:
            if cancel_event is not None and cancel_event.is_set():
                result.cancelled = True
                logger.warning(
                    "Autopilot run cancelled after %d of %d step(s)",
                    result.total_steps,
                    len(plan.priority),
                )
                break

            step = self._run_step(step_type, plan, current_image)
            result.steps.append(step)
            if step.success:
                current_image = step.result

        result.final = current_image
        logger.info(
            "Autopilot run finished: %d/%d step(s) succeeded in %dms",
            result.successful_steps,
            result.total_steps,
            int((self._clock() - run_start) * 1000),
        )
        return result

    def _run_step(self, step_type: StepType, plan: EnhancementPlan, image: str) -> StepResult:
        config = plan.step(step_type)
        step = StepResult(type=step_type, config=config.params())
        adapter = self._adapters[step_type]

        step.status = StepStatus.RUNNING
        logger.info("Running step %s with %s", step_type.value, step.config)
        started = self._clock()
        try:
            step.result = adapter.invoke(image, config)
            step.status = StepStatus.SUCCEEDED
        except ProviderError as exc:
            step.status = StepStatus.FAILED
            step.error = str(exc)
            step.error_kind = exc.kind
        step.processing_time_ms = int((self._clock() - started) * 1000)

        if step.success:
            logger.info("Step %s succeeded in %dms", step_type.value, step.processing_time_ms)
        else:
            logger.error(
                "Step %s failed (%s) after %dms: %s",
                step_type.value,
                step.error_kind,
                step.processing_time_ms,
                step.error,
            )
        return step
