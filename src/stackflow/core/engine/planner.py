# src/stackflow/core/engine/planner.py
"""
Planejador de execução (Plan).

Este módulo decide, para cada stack, a ação da run corrente comparando o
estado desejado (StackGraph + conjunto ativo) com o último AppliedState.

Algoritmo:
    1. Valida o conjunto ativo (`check_active_set`) antes de qualquer decisão
    2. Stacks persistidos fora do conjunto ativo → `delete`, em ordem
       topológica reversa (consumidores antes de produtores); este passo
       vem antes do passo de create/update
    3. Stacks ativos em ordem topológica estável (empates por id):
        - sem AppliedState → `create`
        - com AppliedState → resolve inputs a partir dos outputs *planejados*
          dos produtores e compara com inputs, recursos e outputs aplicados;
          diferença → `update`, igual → `noop`
        - produtor planejado como `create`/`update` → nunca `noop`
        - último status diferente de `applied` → `update`

Princípios fundamentais:
    - O Planner nunca muta AppliedState (somente leitura)
    - A mesma entrada sempre produz o mesmo plano
    - Um plano só existe para grafos válidos

Limites explícitos:
    - Não chama providers
    - Não persiste o plano (o Plan é efêmero, consumido uma vez pelo Executor)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Set, Tuple

from stackflow.core.config.hashing import canonical_json
from stackflow.core.stack.binding import ParameterBinding, UNKNOWN, has_unknown, resolve_inputs
from stackflow.core.stack.context import RunContext
from stackflow.core.stack.definition import StackDefinition
from stackflow.core.stack.types import Action, AppliedState, StackStatus

from .graph import StackGraph, check_active_set, find_cycles, toposort


@dataclass(frozen=True)
class PlanEntry:
    """
    Entrada do plano para um stack.

    Campos:
        - stack_id: stack alvo
        - action: ação planejada
        - resolved_inputs: inputs conhecidos no planejamento (`UNKNOWN` quando
          dependem de produtor que ainda será aplicado)
        - reasons: motivos legíveis da decisão
        - depends_on: entradas do plano que precisam concluir antes desta
        - definition / bindings: declaração desejada (None em deletes de
          stacks que não existem mais nas declarações)
        - prior: AppliedState lido no planejamento
    """

    stack_id: str
    action: Action
    resolved_inputs: Dict[str, Any] = field(default_factory=dict)
    reasons: Tuple[str, ...] = ()
    depends_on: Tuple[str, ...] = ()
    definition: Optional[StackDefinition] = field(default=None, repr=False, compare=False)
    bindings: Dict[str, ParameterBinding] = field(default_factory=dict, repr=False, compare=False)
    prior: Optional[AppliedState] = field(default=None, repr=False, compare=False)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "stack_id": self.stack_id,
            "action": self.action.value,
            "resolved_inputs": {k: (repr(v) if v is UNKNOWN else v) for k, v in self.resolved_inputs.items()},
            "reasons": list(self.reasons),
            "depends_on": list(self.depends_on),
        }


@dataclass(frozen=True)
class Plan:
    """Sequência ordenada de PlanEntry para uma run."""

    graph_id: str
    entries: Tuple[PlanEntry, ...] = ()

    def __iter__(self):
        return iter(self.entries)

    def __len__(self) -> int:
        return len(self.entries)

    @property
    def order(self) -> List[str]:
        return [e.stack_id for e in self.entries]

    def entry(self, stack_id: str) -> PlanEntry:
        for e in self.entries:
            if e.stack_id == stack_id:
                return e
        raise KeyError(stack_id)

    def actions(self) -> Dict[str, Action]:
        return {e.stack_id: e.action for e in self.entries}

    @property
    def is_noop(self) -> bool:
        return all(e.action is Action.NOOP for e in self.entries)

    def summary(self) -> Dict[str, int]:
        counts = {a.value: 0 for a in Action}
        for e in self.entries:
            counts[e.action.value] += 1
        return counts

    def to_dict(self) -> Dict[str, Any]:
        return {
            "graph_id": self.graph_id,
            "summary": self.summary(),
            "entries": [e.to_dict() for e in self.entries],
        }


def _diff_against_prior(
    definition: StackDefinition,
    inputs: Mapping[str, Any],
    prior: AppliedState,
    producers: Iterable[str] = (),
) -> List[str]:
    reasons: List[str] = []

    if prior.status is not StackStatus.APPLIED:
        reasons.append(f"último status: {prior.status.value}")

    # dependências registradas guiam o teardown; divergência força regravação
    moved = sorted(set(prior.dependencies) ^ set(producers))
    if moved:
        reasons.append("dependências alteradas: " + ", ".join(moved))

    if not has_unknown(inputs):
        # comparação sobre JSON canônico: o estado persistido passou por JSON
        changed = sorted(
            k for k in set(inputs) | set(prior.inputs)
            if (k in inputs) != (k in prior.inputs)
            or canonical_json(inputs.get(k)) != canonical_json(prior.inputs.get(k))
        )
        if changed:
            reasons.append("inputs alterados: " + ", ".join(changed))

    desired = {r.name: r for r in definition.resources}
    applied = {r.name: r for r in prior.resources}
    for name in sorted(set(desired) - set(applied)):
        reasons.append(f"recurso novo: {name}")
    for name in sorted(set(applied) - set(desired)):
        reasons.append(f"recurso removido: {name}")
    for name in sorted(set(desired) & set(applied)):
        if desired[name].kind != applied[name].kind:
            reasons.append(f"recurso com kind alterado: {name}")
        elif desired[name].template_hash != applied[name].template_hash:
            reasons.append(f"configuração alterada: {name}")

    if definition.outputs_hash != prior.outputs_hash:
        reasons.append("declaração de outputs alterada")

    return reasons


def _delete_order(
    to_delete: Set[str],
    graph: StackGraph,
    states: Mapping[str, AppliedState],
) -> Tuple[List[str], Dict[str, Tuple[str, ...]]]:
    """
    Ordem de teardown (consumidores antes de produtores) e dependências por entrada.

    Stacks ainda declarados usam os produtores do grafo atual; apenas stacks
    que saíram das declarações recorrem às dependências registradas no
    AppliedState. Um ciclo remanescente entre registros é desfeito removendo,
    por ciclo, a aresta que chega ao menor id.
    """
    producers: Dict[str, Set[str]] = {}
    for sid in to_delete:
        if sid in graph.definitions:
            known = graph.producers_of(sid)
        else:
            known = set(states[sid].dependencies)
        producers[sid] = (known & to_delete) - {sid}

    cycles = find_cycles(to_delete, producers)
    while cycles:
        for path in cycles:
            producers[path[0]].discard(path[-2])
        cycles = find_cycles(to_delete, producers)

    # um produtor só é removido depois de todos os seus consumidores
    consumers: Dict[str, Set[str]] = {sid: set() for sid in to_delete}
    for consumer, prods in producers.items():
        for p in prods:
            consumers[p].add(consumer)

    order = toposort(to_delete, consumers)
    return order, {sid: tuple(sorted(consumers[sid])) for sid in order}


def plan(
    graph: StackGraph,
    store: Any,
    *,
    active: Optional[Iterable[str]] = None,
    ctx: Optional[RunContext] = None,
) -> Plan:
    """
    Produz o Plan da run.

    Args:
        graph: StackGraph validado.
        store: State Store (somente `load`, `list_stack_ids` e `graph_id` são usados).
        active: Conjunto ativo desejado (None = todos os stacks declarados).
        ctx: RunContext opcional para log estruturado das decisões.

    Returns:
        Plan: Deletes (ordem reversa) seguidos de create/update/noop (ordem topológica).

    Raises:
        GraphValidationError: Se o conjunto ativo for inconsistente com o grafo.
    """
    active_set = check_active_set(graph, active)

    persisted = set(store.list_stack_ids())
    states: Dict[str, AppliedState] = {}
    for sid in sorted(persisted | active_set):
        st = store.load(sid)
        if st is not None:
            states[sid] = st

    entries: List[PlanEntry] = []

    to_delete = set(states) - active_set
    delete_order, delete_deps = _delete_order(to_delete, graph, states)
    for sid in delete_order:
        entries.append(
            PlanEntry(
                stack_id=sid,
                action=Action.DELETE,
                reasons=("fora do conjunto ativo" if sid in graph.definitions else "não declarado",),
                depends_on=delete_deps[sid],
                definition=graph.definitions.get(sid),
                prior=states[sid],
            )
        )

    planned_actions: Dict[str, Action] = {}
    planned_outputs: Dict[str, Optional[Dict[str, Any]]] = {}

    for sid in graph.topological_order(active_set):
        definition = graph.definitions[sid]
        bindings = graph.bindings_for(sid)
        producers = sorted(graph.producers_of(sid))
        prior = states.get(sid)
        inputs = resolve_inputs(definition, bindings, planned_outputs)

        if prior is None:
            action = Action.CREATE
            reasons: List[str] = ["sem estado aplicado"]
        else:
            reasons = [
                f"produtor '{p}' planejado como {planned_actions[p].value}"
                for p in producers
                if planned_actions.get(p) in (Action.CREATE, Action.UPDATE)
            ]
            reasons.extend(_diff_against_prior(definition, inputs, prior, producers))
            action = Action.UPDATE if reasons else Action.NOOP

        planned_actions[sid] = action
        planned_outputs[sid] = dict(prior.outputs) if action is Action.NOOP and prior is not None else None

        entries.append(
            PlanEntry(
                stack_id=sid,
                action=action,
                resolved_inputs=inputs,
                reasons=tuple(reasons),
                depends_on=tuple(producers),
                definition=definition,
                bindings=bindings,
                prior=prior,
            )
        )

    result = Plan(graph_id=str(getattr(store, "graph_id", "")), entries=tuple(entries))

    if ctx is not None:
        for e in result.entries:
            ctx.log(
                stack_id=e.stack_id,
                level="INFO",
                message=f"planned {e.action.value}",
                event="stack_planned",
                reasons=list(e.reasons),
            )
    return result


__all__ = ["Plan", "PlanEntry", "plan"]
