# src/stackflow/core/engine/engine.py
"""
Orchestrator: fachada do engine (graph builder + planner + executor).

O Orchestrator amarra os componentes em uma run:
    1. `validate`: constrói o StackGraph (todas as violações ou nenhuma)
    2. `plan`: produz o Plan a partir do grafo, do conjunto ativo e do State Store
    3. `run`: executa o Plan e, quando recebe um RunManifest, registra o
       plano, o resultado de cada stack e o status agregado da run

Decisões arquiteturais:
    - Provider, State Store e RunContext são injetados (nenhum singleton)
    - Políticas de execução (`engine.rollback`, `engine.max_workers`) vêm da
      configuração do RunContext
    - O Manifest é opcional e atualizado somente por chamadas explícitas

Limites explícitos:
    - Não carrega declarações nem configuração (responsabilidade da CLI)
    - Não persiste o Manifest (o chamador decide onde gravar)
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Iterable, Optional

from stackflow.core.stack.binding import ParameterBinding
from stackflow.core.stack.context import RunContext
from stackflow.core.stack.definition import StackDefinition
from stackflow.core.traceability import RunManifest, finish_run, record_plan, stack_finished

from .executor import Executor, RunResult
from .graph import StackGraph, build_graph
from .planner import Plan, plan as make_plan


def _now() -> datetime:
    return datetime.now(timezone.utc)


class Orchestrator:
    """Engine canônico do Stackflow."""

    def __init__(self, *, provider: Any, store: Any, ctx: RunContext):
        self.provider = provider
        self.store = store
        self.ctx = ctx

    def validate(
        self,
        definitions: Iterable[StackDefinition],
        bindings: Iterable[ParameterBinding] = (),
    ) -> StackGraph:
        graph = build_graph(definitions, bindings)
        self.ctx.log(stack_id=None, level="INFO", message="graph validated", event="graph_validated", stacks=len(graph.definitions))
        return graph

    def plan(self, graph: StackGraph, *, active: Optional[Iterable[str]] = None) -> Plan:
        result = make_plan(graph, self.store, active=active, ctx=self.ctx)
        self.ctx.log(stack_id=None, level="INFO", message="plan ready", event="plan_ready", summary=result.summary())
        return result

    def execute(self, plan: Plan, *, manifest: Optional[RunManifest] = None) -> RunResult:
        if manifest is not None:
            record_plan(manifest, plan=plan.to_dict(), ts=_now())

        executor = Executor(provider=self.provider, store=self.store, ctx=self.ctx)
        result = executor.execute(plan)

        if manifest is not None:
            for sid, stack_result in result.stacks.items():
                stack_finished(manifest, stack_id=sid, ts=_now(), result=stack_result.to_dict())
            if result.ok:
                status = "succeeded"
            else:
                status = "cancelled" if self.ctx.cancelled else "failed"
            finish_run(manifest, status=status, ts=_now())

        self.ctx.log(
            stack_id=None,
            level="INFO" if result.ok else "ERROR",
            message="run finished",
            event="run_finished",
            ok=result.ok,
            provider_calls=result.provider_calls,
        )
        return result

    def run(
        self,
        graph: StackGraph,
        *,
        active: Optional[Iterable[str]] = None,
        manifest: Optional[RunManifest] = None,
    ) -> RunResult:
        """
        Planeja e executa uma run completa.

        Raises:
            GraphValidationError: Se o conjunto ativo for inconsistente com o grafo
                (nenhum provider é chamado nesse caso).
        """
        return self.execute(self.plan(graph, active=active), manifest=manifest)


__all__ = ["Orchestrator"]
