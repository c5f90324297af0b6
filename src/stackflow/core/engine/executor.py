# src/stackflow/core/engine/executor.py
"""
Executor de planos do Stackflow.

Executa um Plan contra o Resource Provider Adapter, propagando outputs
para os parâmetros dos dependentes e gravando AppliedState após cada
chamada confirmada.

Política de execução:
    - Entradas são agendadas na ordem do plano; uma entrada só é agendada
      quando todas as entradas de que depende concluíram com sucesso e,
      para create/update/noop, quando o passo de deletes terminou
    - `engine.max_workers > 1` permite executar stacks irmãos em paralelo;
      arestas de dependência nunca são paralelizadas
    - Inputs são resolvidos a partir dos outputs em memória desta run
      (nunca de AppliedState obsoleto)
    - Falha: o stack é marcado, o estado parcial confirmado é gravado, nenhuma
      nova entrada é agendada (as restantes ficam `skipped`) e a compensação
      desfaz apenas o que esta invocação criou ou alterou no stack que falhou
    - Cancelamento externo: nenhuma nova entrada é agendada; chamadas em
      andamento terminam normalmente; as restantes ficam `cancelled`
    - `noop` não chama o provider e não grava estado
    - Falha ao gravar AppliedState após apply confirmado: stack `failed`, sem
      compensação; os registros confirmados seguem no payload de erro

Invariantes:
    - AppliedState só é escrito após retorno do provider
    - Stacks concluídos antes de uma falha não são desfeitos
    - Nenhuma chamada ao provider acontece para stacks `skipped`

Limites explícitos:
    - Não planeja (consome o Plan como recebido)
    - Não impõe timeout próprio
"""

from __future__ import annotations

from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional, Tuple

from stackflow.core import errors
from stackflow.core.exceptions import (
    InvalidExpression,
    ProviderError,
    RollbackError,
    StackflowException,
    TypeMismatch,
)
from stackflow.core.stack.binding import UNKNOWN, resolve_inputs
from stackflow.core.stack.context import RunContext
from stackflow.core.stack.definition import StackDefinition
from stackflow.core.stack.expressions import evaluate_output, interpolate
from stackflow.core.stack.types import Action, AppliedState, ResourceRecord, StackStatus, value_matches

from .planner import Plan, PlanEntry


@dataclass(frozen=True)
class StackResult:
    """
    Resultado de um stack em uma run.

    Campos:
        - stack_id / action: entrada do plano
        - status: estado final (applied, noop, failed, rolled_back, rollback_failed, skipped, cancelled)
        - summary: resumo textual
        - outputs: outputs produzidos (ou mantidos, em noop)
        - provider_calls: chamadas feitas ao provider (incluindo compensação)
        - error: StackErrorPayload serializado, quando houver
        - rollback_error: erro da compensação, quando houver
    """

    stack_id: str
    action: Action
    status: StackStatus
    summary: str
    outputs: Dict[str, Any] = field(default_factory=dict)
    provider_calls: int = 0
    error: Optional[Dict[str, Any]] = None
    rollback_error: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "stack_id": self.stack_id,
            "action": self.action.value,
            "status": self.status.value,
            "summary": self.summary,
            "outputs": dict(self.outputs),
            "provider_calls": self.provider_calls,
            "error": self.error,
            "rollback_error": self.rollback_error,
        }


@dataclass(frozen=True)
class RunResult:
    """Resultado agregado de uma run: plano executado e resultado por stack."""

    plan: Plan
    stacks: Dict[str, StackResult] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return len(self.stacks) == len(self.plan) and all(r.status.is_success for r in self.stacks.values())

    @property
    def provider_calls(self) -> int:
        return sum(r.provider_calls for r in self.stacks.values())

    def statuses(self) -> Dict[str, StackStatus]:
        return {sid: r.status for sid, r in self.stacks.items()}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ok": self.ok,
            "plan": self.plan.to_dict(),
            "stacks": [r.to_dict() for r in self.stacks.values()],
        }


class _StackFailure(Exception):
    """Falha interna de um stack carregando o estado confirmado até o ponto da falha."""

    def __init__(self, error: StackflowException, *, confirmed: Dict[str, ResourceRecord], journal: List[Tuple[str, Optional[ResourceRecord], Optional[ResourceRecord]]]):
        super().__init__(str(error))
        self.error = error
        self.confirmed = confirmed
        self.journal = journal


class _CallCounter:
    def __init__(self) -> None:
        self.count = 0


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class Executor:
    """Executor canônico: consome um Plan e devolve um RunResult."""

    def __init__(
        self,
        *,
        provider: Any,
        store: Any,
        ctx: RunContext,
        rollback: Optional[bool] = None,
        max_workers: Optional[int] = None,
    ):
        self.provider = provider
        self.store = store
        self.ctx = ctx
        self.rollback = bool(ctx.engine_option("rollback", True) if rollback is None else rollback)
        self.max_workers = int(ctx.engine_option("max_workers", 1) if max_workers is None else max_workers)

    # ------------------------------------------------------------------
    # Agendamento
    # ------------------------------------------------------------------
    def execute(self, plan: Plan) -> RunResult:
        results: Dict[str, StackResult] = {}
        outputs: Dict[str, Dict[str, Any]] = {}
        pending: List[PlanEntry] = list(plan.entries)
        inflight: Dict[Future, PlanEntry] = {}
        halted_by: Optional[str] = None

        deletes = {e.stack_id for e in plan.entries if e.action is Action.DELETE}

        def is_ready(entry: PlanEntry) -> bool:
            if entry.action is not Action.DELETE and any(sid not in results for sid in deletes):
                return False
            return all(dep in results for dep in entry.depends_on if dep in plan.actions())

        with ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="stackflow") as pool:
            while pending or inflight:
                if halted_by is None and not self.ctx.cancelled:
                    for entry in list(pending):
                        if len(inflight) >= self.max_workers:
                            break
                        if not is_ready(entry):
                            continue
                        pending.remove(entry)
                        snapshot = dict(outputs)
                        inflight[pool.submit(self._run_entry, entry, snapshot)] = entry

                if not inflight:
                    break

                done, _ = wait(list(inflight), return_when=FIRST_COMPLETED)
                for fut in done:
                    entry = inflight.pop(fut)
                    result = self._collect(entry, fut)
                    results[entry.stack_id] = result
                    if result.status.is_success:
                        outputs[entry.stack_id] = dict(result.outputs)
                    elif halted_by is None:
                        halted_by = entry.stack_id
                        self.ctx.log(stack_id=entry.stack_id, level="ERROR", message="plan halted", event="plan_halted")

        for entry in pending:
            results[entry.stack_id] = self._not_run(entry, halted_by)

        ordered = {e.stack_id: results[e.stack_id] for e in plan.entries}
        return RunResult(plan=plan, stacks=ordered)

    def _collect(self, entry: PlanEntry, fut: Future) -> StackResult:
        try:
            return fut.result()
        except Exception as exc:
            # falha fora do provider (ex.: I/O do State Store)
            payload = errors.from_exception(exc)
            self.ctx.log(stack_id=entry.stack_id, level="ERROR", message=payload.message, event="stack_failed")
            return StackResult(
                stack_id=entry.stack_id,
                action=entry.action,
                status=StackStatus.FAILED,
                summary=payload.message,
                error=payload.to_dict(),
            )

    def _not_run(self, entry: PlanEntry, halted_by: Optional[str]) -> StackResult:
        if halted_by is None and self.ctx.cancelled:
            payload = errors.run_cancelled(stack_id=entry.stack_id)
            status = StackStatus.CANCELLED
        else:
            payload = errors.upstream_failed(stack_id=entry.stack_id, blocked_by=halted_by)
            status = StackStatus.SKIPPED
        self.ctx.log(stack_id=entry.stack_id, level="WARNING", message=payload.message, event=f"stack_{status.value}")
        return StackResult(
            stack_id=entry.stack_id,
            action=entry.action,
            status=status,
            summary=payload.message,
            error=payload.to_dict(),
        )

    # ------------------------------------------------------------------
    # Execução por entrada
    # ------------------------------------------------------------------
    def _run_entry(self, entry: PlanEntry, outputs: Mapping[str, Dict[str, Any]]) -> StackResult:
        sid = entry.stack_id
        self.ctx.log(stack_id=sid, level="INFO", message=f"{entry.action.value} started", event="stack_started")

        if entry.action is Action.NOOP:
            prior_outputs = dict(entry.prior.outputs) if entry.prior is not None else {}
            self.ctx.log(stack_id=sid, level="INFO", message="no changes", event="stack_finished", status="noop")
            return StackResult(stack_id=sid, action=entry.action, status=StackStatus.NOOP, summary="sem alterações", outputs=prior_outputs)

        if entry.action is Action.DELETE:
            return self._delete_stack(entry)

        return self._apply_stack(entry, outputs)

    def _call(self, counter: _CallCounter, fn: Any, *args: Any) -> Any:
        counter.count += 1
        return fn(*args)

    def _apply_stack(self, entry: PlanEntry, outputs: Mapping[str, Dict[str, Any]]) -> StackResult:
        sid = entry.stack_id
        definition: StackDefinition = entry.definition  # type: ignore[assignment]
        prior = entry.prior
        counter = _CallCounter()

        inputs = resolve_inputs(definition, entry.bindings, outputs)
        problem = self._check_inputs(definition, inputs)
        if problem is not None:
            return self._failed_before_calls(entry, problem)

        prior_records: Dict[str, ResourceRecord] = {r.name: r for r in prior.resources} if prior else {}
        prior_clean = prior is not None and prior.status is StackStatus.APPLIED
        current: Dict[str, ResourceRecord] = dict(prior_records)
        journal: List[Tuple[str, Optional[ResourceRecord], Optional[ResourceRecord]]] = []
        attrs: Dict[str, Dict[str, Any]] = {}

        try:
            for res in definition.resources:
                config = self._interpolate(sid, res.name, res.config, inputs, attrs, current, journal)
                before = current.get(res.name)

                if before is not None and before.kind != res.kind:
                    self._destroy(counter, sid, before, current=current, journal=journal)
                    journal.append((res.name, before, None))
                    del current[res.name]
                    before = None

                if (
                    prior_clean
                    and before is not None
                    and before.config == config
                    and before.template_hash == res.template_hash
                ):
                    attrs[res.name] = dict(before.attributes)
                    continue

                outcome = self._provider_apply(counter, sid, res.name, res.kind, config, before.fingerprint if before else None, current, journal)
                record = ResourceRecord(
                    name=res.name,
                    kind=res.kind,
                    fingerprint=outcome.fingerprint,
                    template_hash=res.template_hash,
                    config=config,
                    attributes=dict(outcome.attributes),
                )
                journal.append((res.name, before, record))
                current[res.name] = record
                attrs[res.name] = dict(record.attributes)

            declared = {r.name for r in definition.resources}
            for name in [n for n in reversed(list(prior_records)) if n not in declared]:
                if name not in current:
                    continue
                before = current[name]
                self._destroy(counter, sid, before, current=current, journal=journal)
                journal.append((name, before, None))
                del current[name]

            produced = self._evaluate_outputs(definition, attrs, current, journal)

        except _StackFailure as failure:
            return self._handle_failure(entry, inputs, failure, counter)

        state = AppliedState(
            stack_id=sid,
            graph_id=self.store.graph_id,
            inputs=inputs,
            resources=tuple(current[r.name] for r in definition.resources if r.name in current),
            outputs=produced,
            status=StackStatus.APPLIED,
            dependencies=tuple(sorted({b.source.stack_id for b in entry.bindings.values() if b.source is not None})),
            outputs_hash=definition.outputs_hash,
            applied_at=_now(),
        )
        try:
            self.store.save(sid, state)
        except Exception as exc:
            return self._unrecorded(entry, state, exc, counter)
        self.ctx.log(stack_id=sid, level="INFO", message=f"{entry.action.value} applied", event="stack_finished", status="applied", provider_calls=counter.count)
        return StackResult(
            stack_id=sid,
            action=entry.action,
            status=StackStatus.APPLIED,
            summary=f"{entry.action.value} aplicado ({counter.count} chamada(s) ao provider)",
            outputs=produced,
            provider_calls=counter.count,
        )

    def _delete_stack(self, entry: PlanEntry) -> StackResult:
        sid = entry.stack_id
        prior = entry.prior
        counter = _CallCounter()
        current: Dict[str, ResourceRecord] = {r.name: r for r in prior.resources} if prior else {}

        try:
            for name in reversed(list(current)):
                self._destroy(counter, sid, current[name], current=current, journal=[])
                del current[name]
        except _StackFailure as failure:
            partial = AppliedState(
                stack_id=sid,
                graph_id=self.store.graph_id,
                inputs=dict(prior.inputs) if prior else {},
                resources=tuple(current.values()),
                outputs=dict(prior.outputs) if prior else {},
                status=StackStatus.FAILED,
                dependencies=tuple(prior.dependencies) if prior else (),
                outputs_hash=prior.outputs_hash if prior else "",
                applied_at=_now(),
                error=errors.from_exception(failure.error).to_dict(),
            )
            self.store.save(sid, partial)
            payload = errors.from_exception(failure.error)
            self.ctx.log(stack_id=sid, level="ERROR", message=payload.message, event="stack_failed")
            return StackResult(
                stack_id=sid,
                action=entry.action,
                status=StackStatus.FAILED,
                summary=payload.message,
                provider_calls=counter.count,
                error=payload.to_dict(),
            )

        self.store.delete(sid)
        self.ctx.log(stack_id=sid, level="INFO", message="deleted", event="stack_finished", status="applied", provider_calls=counter.count)
        return StackResult(
            stack_id=sid,
            action=entry.action,
            status=StackStatus.APPLIED,
            summary=f"delete aplicado ({counter.count} chamada(s) ao provider)",
            provider_calls=counter.count,
        )

    # ------------------------------------------------------------------
    # Chamadas ao provider
    # ------------------------------------------------------------------
    def _provider_apply(self, counter, sid, name, kind, config, previous, current, journal):
        try:
            return self._call(counter, self.provider.apply, kind, config, previous)
        except Exception as exc:
            raise _StackFailure(
                self._provider_error(ProviderError, sid, name, kind, "apply", exc),
                confirmed=dict(current),
                journal=list(journal),
            ) from exc

    def _destroy(self, counter, sid, record: ResourceRecord, *, current=None, journal=None) -> None:
        try:
            self._call(counter, self.provider.destroy, record.kind, record.fingerprint)
        except Exception as exc:
            raise _StackFailure(
                self._provider_error(ProviderError, sid, record.name, record.kind, "destroy", exc),
                confirmed=dict(current or {}),
                journal=list(journal or []),
            ) from exc

    @staticmethod
    def _provider_error(cls, sid: str, resource: str, kind: str, operation: str, exc: Exception):
        return cls(
            message=f"{operation} de '{sid}.{resource}' falhou: {exc}",
            details={
                "stack_id": sid,
                "resource": resource,
                "kind": kind,
                "operation": operation,
                "exception_class": exc.__class__.__name__,
            },
            hint="Verifique o provider para o kind indicado; o estado confirmado foi preservado",
        )

    # ------------------------------------------------------------------
    # Inputs, interpolação e outputs
    # ------------------------------------------------------------------
    def _check_inputs(self, definition: StackDefinition, inputs: Mapping[str, Any]) -> Optional[StackflowException]:
        for param in definition.parameters:
            value = inputs.get(param.name)
            if value is UNKNOWN:
                return InvalidExpression(
                    message=f"Input não resolvido em tempo de execução: {definition.id}.{param.name}",
                    details={"stack_id": definition.id, "parameter": param.name},
                )
            if value is None and not param.required:
                continue
            if not value_matches(param.type, value):
                return TypeMismatch(
                    message=f"Valor recebido por '{definition.id}.{param.name}' não satisfaz o tipo {param.type.value}",
                    details={"stack_id": definition.id, "parameter": param.name, "expected": param.type.value, "value": repr(value)},
                )
        return None

    def _interpolate(self, sid, name, template, inputs, attrs, current, journal) -> Dict[str, Any]:
        try:
            return interpolate(template, inputs, attrs)
        except InvalidExpression as exc:
            raise _StackFailure(
                InvalidExpression(message=exc.message, details={"stack_id": sid, "resource": name, **exc.details}),
                confirmed=dict(current),
                journal=list(journal),
            ) from exc

    def _evaluate_outputs(self, definition, attrs, current, journal) -> Dict[str, Any]:
        produced: Dict[str, Any] = {}
        for out in definition.outputs:
            try:
                value = evaluate_output(out.value, attrs)
            except InvalidExpression as exc:
                raise _StackFailure(
                    InvalidExpression(message=exc.message, details={"stack_id": definition.id, "output": out.name, **exc.details}),
                    confirmed=dict(current),
                    journal=list(journal),
                ) from exc
            if not value_matches(out.type, value):
                self.ctx.add_warning(
                    stack_id=definition.id,
                    message=f"output '{out.name}' não satisfaz o tipo declarado {out.type.value}",
                )
            produced[out.name] = value
        return produced

    # ------------------------------------------------------------------
    # Falha e compensação
    # ------------------------------------------------------------------
    def _failed_before_calls(self, entry: PlanEntry, problem: StackflowException) -> StackResult:
        payload = errors.from_exception(problem)
        self.ctx.log(stack_id=entry.stack_id, level="ERROR", message=payload.message, event="stack_failed")
        return StackResult(
            stack_id=entry.stack_id,
            action=entry.action,
            status=StackStatus.FAILED,
            summary=payload.message,
            error=payload.to_dict(),
        )

    def _unrecorded(self, entry: PlanEntry, state: AppliedState, exc: Exception, counter: _CallCounter) -> StackResult:
        """
        Provider confirmou as alterações, mas o AppliedState não foi gravado.

        Não há compensação: os registros confirmados seguem no payload de erro
        (`details.unrecorded_resources`) para reconciliação manual.
        """
        base = errors.from_exception(exc)
        payload = errors.StackErrorPayload(
            type=base.type,
            message=f"estado de '{entry.stack_id}' não gravado após apply confirmado: {base.message}",
            details={
                **base.details,
                "stack_id": entry.stack_id,
                "unrecorded_resources": [r.to_dict() for r in state.resources],
                "outputs": dict(state.outputs),
            },
            hint="Os recursos acima existem no provider; restaure o State Store e reexecute, ou registre-os manualmente",
        )
        self.ctx.log(stack_id=entry.stack_id, level="ERROR", message=payload.message, event="state_not_recorded")
        return StackResult(
            stack_id=entry.stack_id,
            action=entry.action,
            status=StackStatus.FAILED,
            summary=payload.message,
            provider_calls=counter.count,
            error=payload.to_dict(),
        )

    def _handle_failure(self, entry: PlanEntry, inputs: Dict[str, Any], failure: _StackFailure, counter: _CallCounter) -> StackResult:
        sid = entry.stack_id
        prior = entry.prior
        definition: StackDefinition = entry.definition  # type: ignore[assignment]
        payload = errors.from_exception(failure.error)
        self.ctx.log(stack_id=sid, level="ERROR", message=payload.message, event="stack_failed")

        order = [r.name for r in definition.resources] + [n for n in failure.confirmed if definition.resource(n) is None]
        partial = AppliedState(
            stack_id=sid,
            graph_id=self.store.graph_id,
            inputs=inputs,
            resources=tuple(failure.confirmed[n] for n in order if n in failure.confirmed),
            outputs=dict(prior.outputs) if prior else {},
            status=StackStatus.FAILED,
            dependencies=tuple(sorted({b.source.stack_id for b in entry.bindings.values() if b.source is not None})),
            outputs_hash=prior.outputs_hash if prior else "",
            applied_at=_now(),
            error=payload.to_dict(),
        )
        # estado confirmado antes da compensação, preservado para inspeção
        self.store.save(sid, partial)

        if not self.rollback or not failure.journal:
            return StackResult(
                stack_id=sid,
                action=entry.action,
                status=StackStatus.FAILED,
                summary=payload.message,
                provider_calls=counter.count,
                error=payload.to_dict(),
            )

        self.ctx.log(stack_id=sid, level="WARNING", message="rollback started", event="rollback_started", changes=len(failure.journal))
        restored = dict(failure.confirmed)
        try:
            for name, before, after in reversed(failure.journal):
                if after is not None and before is None:
                    self._compensate(counter, sid, name, after.kind, "destroy", self.provider.destroy, after.kind, after.fingerprint)
                    restored.pop(name, None)
                elif after is not None and before is not None:
                    outcome = self._compensate(counter, sid, name, before.kind, "apply", self.provider.apply, before.kind, before.config, after.fingerprint)
                    restored[name] = ResourceRecord(name, before.kind, outcome.fingerprint, before.template_hash, before.config, dict(outcome.attributes))
                elif before is not None:
                    outcome = self._compensate(counter, sid, name, before.kind, "apply", self.provider.apply, before.kind, before.config, None)
                    restored[name] = ResourceRecord(name, before.kind, outcome.fingerprint, before.template_hash, before.config, dict(outcome.attributes))
        except RollbackError as rb:
            rb_payload = errors.from_exception(rb)
            self.ctx.log(stack_id=sid, level="ERROR", message=rb_payload.message, event="rollback_failed")
            left = AppliedState(
                stack_id=sid,
                graph_id=partial.graph_id,
                inputs=partial.inputs,
                resources=tuple(restored[n] for n in order if n in restored),
                outputs=partial.outputs,
                status=StackStatus.ROLLBACK_FAILED,
                dependencies=partial.dependencies,
                outputs_hash=partial.outputs_hash,
                applied_at=_now(),
                error={
                    **payload.to_dict(),
                    "rollback_error": rb_payload.to_dict(),
                    "pre_rollback_resources": [r.to_dict() for r in partial.resources],
                },
            )
            self.store.save(sid, left)
            return StackResult(
                stack_id=sid,
                action=entry.action,
                status=StackStatus.ROLLBACK_FAILED,
                summary=rb_payload.message,
                provider_calls=counter.count,
                error=payload.to_dict(),
                rollback_error=rb_payload.to_dict(),
            )

        if prior is None:
            self.store.delete(sid)
        else:
            prior_order = [r.name for r in prior.resources]
            self.store.save(
                sid,
                AppliedState(
                    stack_id=sid,
                    graph_id=prior.graph_id or self.store.graph_id,
                    inputs=dict(prior.inputs),
                    resources=tuple(restored[n] for n in prior_order if n in restored),
                    outputs=dict(prior.outputs),
                    status=StackStatus.ROLLED_BACK,
                    dependencies=prior.dependencies,
                    outputs_hash=prior.outputs_hash,
                    applied_at=_now(),
                    error=payload.to_dict(),
                ),
            )
        self.ctx.log(stack_id=sid, level="WARNING", message="rollback finished", event="rollback_finished")
        return StackResult(
            stack_id=sid,
            action=entry.action,
            status=StackStatus.ROLLED_BACK,
            summary=f"{payload.message} (compensação aplicada)",
            provider_calls=counter.count,
            error=payload.to_dict(),
        )

    def _compensate(self, counter, sid, name, kind, operation, fn, *args):
        try:
            return self._call(counter, fn, *args)
        except Exception as exc:
            raise self._provider_error(RollbackError, sid, name, kind, operation, exc) from exc


__all__ = ["Executor", "RunResult", "StackResult"]
