from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from wc_dispatch.contracts import RunState, StepResult, StepStatus, Workflow
from wc_dispatch.logger import JsonlLogger
from wc_dispatch.run_context import RunContext, duration_ms, iso_utc_from_ms, now_ms, write_json


@dataclass(frozen=True)
class WorkflowResult:
    ok: bool
    run_id: str
    workflow: str
    failed_step: str | None = None
    error: str | None = None
    outputs: dict[str, Any] | None = None

    def to_jsonable(self) -> dict[str, Any]:
        return {
            "ok": self.ok,
            "run_id": self.run_id,
            "workflow": self.workflow,
            "failed_step": self.failed_step,
            "error": self.error,
            "outputs": self.outputs or {},
        }


def _step_summary(
    name: str, start: int, end: int, status: StepStatus, result: StepResult | None
) -> dict[str, Any]:
    summary: dict[str, Any] = {
        "step_name": name,
        "started_at": iso_utc_from_ms(start) if start else None,
        "finished_at": iso_utc_from_ms(end) if end else None,
        "status": status.value,
        "duration_ms": duration_ms(start, end),
        "error_summary": result.error if result else None,
    }
    if result is not None and result.outputs is not None:
        summary["metrics"] = result.outputs
    return summary


def run_workflow(
    *,
    workflow: Workflow,
    ctx: RunContext,
    log: JsonlLogger,
    state: RunState | None = None,
) -> WorkflowResult:
    """Run steps in order, stopping at the first failure.

    A step that raises is recorded as FAILED with the exception text; steps
    after it are listed as SKIPPED in ``steps.json``.
    """
    run_state = state or RunState()
    context_path = ctx.run_dir / "context.json"

    run_start = now_ms()
    log.info("run_start", run_id=ctx.run_id, workflow=workflow.name)
    failed_step: str | None = None
    error: str | None = None
    step_summaries: list[dict[str, Any]] = []

    for idx, step in enumerate(workflow.steps, start=1):
        if failed_step is not None:
            step_summaries.append(_step_summary(step.name, 0, 0, StepStatus.SKIPPED, None))
            continue

        step_start = now_ms()
        log.info("step_start", run_id=ctx.run_id, step=step.name, step_idx=idx)

        try:
            result = step.run(ctx, run_state, log)
            if not isinstance(result, StepResult):
                raise TypeError(f"step {step.name} must return StepResult")
        except Exception as e:  # noqa: BLE001
            result = StepResult.failure(str(e) or type(e).__name__)
            log.error(
                "step_error",
                run_id=ctx.run_id,
                step=step.name,
                step_idx=idx,
                error_type=type(e).__name__,
                error_message=result.error,
            )
        else:
            if not result.ok:
                log.error(
                    "step_error",
                    run_id=ctx.run_id,
                    step=step.name,
                    step_idx=idx,
                    error_type="StepFailed",
                    error_message=result.error,
                )

        if result.outputs is not None:
            run_state.step_outputs[step.name] = result.outputs
        if not result.ok:
            failed_step = step.name
            error = result.error

        step_end = now_ms()
        status = StepStatus.OK if result.ok else StepStatus.FAILED
        log.info(
            "step_end",
            run_id=ctx.run_id,
            step=step.name,
            step_idx=idx,
            status=status.value,
            duration_ms=duration_ms(step_start, step_end),
        )
        step_summaries.append(_step_summary(step.name, step_start, step_end, status, result))
        run_state.persist(context_path)

    ok = failed_step is None
    run_end = now_ms()
    log.info(
        "run_end",
        run_id=ctx.run_id,
        workflow=workflow.name,
        ok=ok,
        duration_ms=duration_ms(run_start, run_end),
    )
    write_json(
        ctx.run_dir / "run.json",
        {
            "run_id": ctx.run_id,
            "workflow": workflow.name,
            "started_at": iso_utc_from_ms(run_start),
            "finished_at": iso_utc_from_ms(run_end),
            "status": StepStatus.OK.value if ok else StepStatus.FAILED.value,
            "duration_ms": duration_ms(run_start, run_end),
            "failed_step": failed_step,
            "error_summary": error,
        },
    )
    write_json(ctx.run_dir / "steps.json", step_summaries)

    return WorkflowResult(
        ok=ok,
        run_id=ctx.run_id,
        workflow=workflow.name,
        failed_step=failed_step,
        error=error,
        outputs=dict(run_state.step_outputs),
    )
