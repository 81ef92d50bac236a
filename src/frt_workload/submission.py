"""Send, retry and confirm transactions.

Per attempt: Built -> Sent -> {Accepted | Rejected}. An accepted signature is
then polled until it is confirmed/finalized or the poll budget runs out.
Every retry rebuilds the transaction through the caller's ``build`` callback
so it carries a fresh blockhash and freshly read state.
"""
import asyncio
import logging
from collections import Counter, defaultdict
from typing import Any, Awaitable, Callable

from frt_workload.config import SubmitConfig
from frt_workload.constants import AttemptOutcome, ConfirmationStatus, FailureKind, OpKind
from frt_workload.errors import (
    RpcError,
    RpcResponseError,
    RpcTransportError,
    SubmissionExhaustedError,
    describe_contract_error,
)
from frt_workload.models import ConfirmationRecord, OperationResult, SubmissionAttempt
from frt_workload.rpc import Transport

log = logging.getLogger("frt_workload.submit")

BuildFn = Callable[[int], Awaitable[bytes]]


class Submitter:
    def __init__(self, rpc: Transport, cfg: SubmitConfig, *, sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep):
        self.rpc = rpc
        self.cfg = cfg
        self._sleep = sleep
        self.attempts_by_outcome: Counter[str] = Counter()
        self.results_by_op: defaultdict[str, Counter[str]] = defaultdict(Counter)

    def delay_before(self, attempt: int) -> float:
        if attempt <= 1:
            return 0.0
        if attempt == self.cfg.max_attempts:
            return self.cfg.final_retry_delay
        return self.cfg.retry_delay

    async def diagnose(self, tx: bytes) -> list[str]:
        """Simulate ``tx`` only to capture program logs. Never raises."""
        try:
            sim = await self.rpc.simulate_transaction(tx, sig_verify=False, replace_recent_blockhash=True)
        except Exception as e:
            log.warning("Diagnostic simulation failed: %s: %s", e.__class__.__name__, e)
            return []
        if sim.err is not None:
            log.info("Simulation err=%s", sim.err)
        for line in sim.logs:
            log.info("  program log: %s", line)
        return sim.logs

    async def send(self, op: OpKind, build: BuildFn) -> tuple[str, list[SubmissionAttempt]]:
        """Send with rebuild-on-retry. Returns (signature, attempt history).

        Raises:
            SubmissionExhaustedError: every attempt was rejected.
            ConstructionError: ``build`` found the inputs invalid; not retried.
        """
        history: list[SubmissionAttempt] = []
        last_reason: str | None = None
        max_attempts = self.cfg.max_attempts

        for n in range(1, max_attempts + 1):
            if delay := self.delay_before(n):
                log.info("%s: waiting %.1fs before attempt %d/%d", op, delay, n, max_attempts)
                await self._sleep(delay)

            try:
                tx = await build(n)
            except RpcError as e:
                last_reason = f"could not build: {e}"
                log.warning("%s attempt %d/%d: %s", op, n, max_attempts, last_reason)
                history.append(SubmissionAttempt(n, b"", AttemptOutcome.EXCEPTION, reason=last_reason))
                self.attempts_by_outcome[AttemptOutcome.EXCEPTION] += 1
                continue

            try:
                signature = await self.rpc.send_transaction(tx, skip_preflight=self.cfg.skip_preflight)
            except RpcResponseError as e:
                last_reason = str(e)
                logs = e.logs or await self.diagnose(tx)
                history.append(SubmissionAttempt(n, tx, AttemptOutcome.REJECTED, reason=last_reason, logs=logs))
                self.attempts_by_outcome[AttemptOutcome.REJECTED] += 1
                log.warning("%s attempt %d/%d rejected: %s", op, n, max_attempts, last_reason)
                continue
            except RpcTransportError as e:
                last_reason = str(e)
                logs = await self.diagnose(tx)
                history.append(SubmissionAttempt(n, tx, AttemptOutcome.EXCEPTION, reason=last_reason, logs=logs))
                self.attempts_by_outcome[AttemptOutcome.EXCEPTION] += 1
                log.warning("%s attempt %d/%d failed: %s", op, n, max_attempts, last_reason)
                continue

            history.append(SubmissionAttempt(n, tx, AttemptOutcome.ACCEPTED, signature=signature))
            self.attempts_by_outcome[AttemptOutcome.ACCEPTED] += 1
            log.info("%s accepted on attempt %d/%d: %s", op, n, max_attempts, signature)
            return signature, history

        log.error("%s failed after %d attempts: %s", op, max_attempts, last_reason)
        raise SubmissionExhaustedError(str(op), len(history), last_reason, history)

    async def confirm(self, signature: str) -> ConfirmationRecord:
        """Poll until the signature is confirmed/finalized, up to ``confirm_polls`` times."""
        rec = ConfirmationRecord(signature)
        for poll in range(1, self.cfg.confirm_polls + 1):
            rec.polls = poll
            try:
                statuses = await self.rpc.get_signature_statuses([signature])
            except RpcError as e:
                log.debug("Status poll %d for %s failed: %s", poll, signature, e)
                statuses = [None]

            status = statuses[0] if statuses else None
            if status is not None:
                rec.status = ConfirmationStatus(status.get("confirmationStatus") or ConfirmationStatus.PROCESSED)
                rec.err = status.get("err")
                rec.slot = status.get("slot")
                if rec.landed:
                    return rec

            if poll < self.cfg.confirm_polls:
                await self._sleep(self.cfg.confirm_delay)

        log.warning("%s not confirmed after %d polls (last status %s)", signature, rec.polls, rec.status)
        return rec

    async def _execution_logs(self, signature: str) -> list[str]:
        try:
            return await self.rpc.get_transaction_logs(signature)
        except RpcError as e:
            log.debug("Could not fetch logs for %s: %s", signature, e)
            return []

    def _finish(self, result: OperationResult) -> OperationResult:
        self.results_by_op[str(result.op)]["ok" if result.ok else str(result.failure)] += 1
        return result

    async def execute(self, op: OpKind, build: BuildFn, *, data: dict[str, Any] | None = None) -> OperationResult:
        """Send and confirm one operation, returning a typed result instead of raising."""
        data = data or {}
        try:
            signature, history = await self.send(op, build)
        except SubmissionExhaustedError as e:
            logs = e.history[-1].logs if e.history else []
            code, message = describe_contract_error(e.last_reason, logs)
            return self._finish(OperationResult(
                op=op, ok=False, attempts=e.attempts, failure=FailureKind.SEND_EXHAUSTED,
                reason=e.last_reason, error_code=code, error_message=message, logs=logs, data=data,
            ))

        rec = await self.confirm(signature)
        base = dict(op=op, signature=signature, attempts=len(history), status=rec.status, data=data)
        if not rec.landed:
            return self._finish(OperationResult(
                ok=False, failure=FailureKind.CONFIRMATION_TIMEOUT,
                reason=f"not confirmed after {rec.polls} polls (last status {rec.status})", **base,
            ))
        if rec.err is not None:
            logs = await self._execution_logs(signature)
            code, message = describe_contract_error(rec.err, logs)
            log.warning("%s landed but failed: %s (%s)", op, rec.err, message or "no contract code")
            return self._finish(OperationResult(
                ok=False, failure=FailureKind.EXECUTION_FAILED, reason=str(rec.err),
                error_code=code, error_message=message, logs=logs, **base,
            ))
        return self._finish(OperationResult(ok=True, **base))

    def snapshot_stats(self) -> dict[str, Any]:
        return {
            "attempts_by_outcome": dict(self.attempts_by_outcome),
            "results_by_op": {op: dict(c) for op, c in self.results_by_op.items()},
        }
