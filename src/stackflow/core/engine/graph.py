# src/stackflow/core/engine/graph.py
"""
Dependency Graph Builder.

Este módulo valida um conjunto de StackDefinitions e ParameterBindings e
produz um `StackGraph` imutável, ou levanta `GraphValidationError` com a
lista completa de violações.

Validações (exaustivas, todas coletadas antes de falhar):
    - DuplicateDefinition: stack id repetido, ou nome repetido dentro de um stack
    - InvalidExpression: output ou `${...}` referenciando recurso/parâmetro inexistente
    - UnresolvedReference: binding para stack/output/parâmetro inexistente
    - ConflictingBinding: mais de um binding para o mesmo parâmetro consumidor
    - TypeMismatch: tag do parâmetro difere da tag do output, ou literal/default fora do tipo
    - UnboundParameter: parâmetro obrigatório sem default e sem binding
    - CyclicDependency: um por componente fortemente conexo, com o caminho completo

Decisões arquiteturais:
    - Ordenação topológica determinística (Kahn modificado)
    - Empates são resolvidos por ordem lexicográfica de stack id
    - Ciclos são procurados apenas sobre arestas válidas

Limites explícitos:
    - Não consulta o State Store
    - Não decide ações (responsabilidade do Planner)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, FrozenSet, Iterable, List, Mapping, Optional, Set

from stackflow.core.exceptions import (
    ConflictingBinding,
    CyclicDependency,
    DuplicateDefinition,
    GraphValidationError,
    InvalidExpression,
    StackflowException,
    TypeMismatch,
    UnboundParameter,
    UnresolvedReference,
    graph_validation_error,
)
from stackflow.core.stack.binding import ParameterBinding
from stackflow.core.stack.definition import StackDefinition
from stackflow.core.stack.expressions import iter_references, parse_output_expression, parse_reference
from stackflow.core.stack.registry import StackRegistry
from stackflow.core.stack.types import value_matches


@dataclass(frozen=True)
class StackGraph:
    """
    Grafo validado de stacks.

    Invariantes:
        - O grafo produtor -> consumidor é acíclico
        - Todo binding aponta para parâmetro e output existentes e compatíveis
    """

    definitions: Dict[str, StackDefinition]
    bindings: Dict[str, Dict[str, ParameterBinding]] = field(default_factory=dict)

    @property
    def stack_ids(self) -> List[str]:
        return sorted(self.definitions)

    def bindings_for(self, stack_id: str) -> Dict[str, ParameterBinding]:
        return dict(self.bindings.get(stack_id, {}))

    def producers_of(self, stack_id: str) -> Set[str]:
        return {
            b.source.stack_id
            for b in self.bindings.get(stack_id, {}).values()
            if b.source is not None
        }

    def consumers_of(self, stack_id: str) -> Set[str]:
        return {sid for sid in self.definitions if stack_id in self.producers_of(sid)}

    def dependencies(self) -> Dict[str, Set[str]]:
        return {sid: self.producers_of(sid) for sid in self.definitions}

    def topological_order(self, subset: Optional[Iterable[str]] = None) -> List[str]:
        nodes = set(self.definitions) if subset is None else set(subset)
        deps = {sid: self.producers_of(sid) & nodes for sid in nodes}
        return toposort(nodes, deps)

    def upstream_of(self, stack_id: str) -> Set[str]:
        """Todos os produtores transitivos de `stack_id`."""
        seen: Set[str] = set()
        frontier = [stack_id]
        while frontier:
            for p in self.producers_of(frontier.pop()):
                if p not in seen:
                    seen.add(p)
                    frontier.append(p)
        return seen


def toposort(nodes: Iterable[str], deps: Mapping[str, Iterable[str]]) -> List[str]:
    """
    Ordenação topológica determinística (Kahn, empates por id ascendente).

    `deps[n]` lista os nós que devem vir antes de `n`; dependências fora de
    `nodes` são ignoradas.

    Raises:
        ValueError: Se restarem nós não ordenáveis (ciclo).
    """
    node_set = set(nodes)
    incoming_count: Dict[str, int] = {n: 0 for n in node_set}
    outgoing: Dict[str, Set[str]] = {n: set() for n in node_set}

    for n in node_set:
        for d in set(deps.get(n, ())):
            if d in node_set:
                incoming_count[n] += 1
                outgoing[d].add(n)

    ready: List[str] = sorted(n for n, c in incoming_count.items() if c == 0)
    order: List[str] = []

    while ready:
        n = ready.pop(0)  # smallest lexicographic
        order.append(n)
        for child in sorted(outgoing[n]):
            incoming_count[child] -= 1
            if incoming_count[child] == 0:
                ready.append(child)
                ready.sort()

    if len(order) != len(node_set):
        raise ValueError("Cycle detected in stack dependency graph")
    return order


def find_cycles(nodes: Iterable[str], deps: Mapping[str, Iterable[str]]) -> List[List[str]]:
    """
    Encontra um ciclo por componente fortemente conexo (Tarjan).

    Cada ciclo é devolvido como caminho na direção produtor -> consumidor,
    começando e terminando no menor id do componente (ex.: `[a, b, a]`).
    """
    node_list = sorted(set(nodes))
    successors: Dict[str, List[str]] = {n: [] for n in node_list}
    for n in node_list:
        for d in sorted(set(deps.get(n, ()))):
            if d in successors:
                successors[d].append(n)
    for n in node_list:
        successors[n].sort()

    index: Dict[str, int] = {}
    low: Dict[str, int] = {}
    stack: List[str] = []
    on_stack: Set[str] = set()
    components: List[List[str]] = []
    counter = [0]

    def strongconnect(v: str) -> None:
        index[v] = low[v] = counter[0]
        counter[0] += 1
        stack.append(v)
        on_stack.add(v)
        for w in successors[v]:
            if w not in index:
                strongconnect(w)
                low[v] = min(low[v], low[w])
            elif w in on_stack:
                low[v] = min(low[v], index[w])
        if low[v] == index[v]:
            comp: List[str] = []
            while True:
                w = stack.pop()
                on_stack.discard(w)
                comp.append(w)
                if w == v:
                    break
            components.append(sorted(comp))

    for n in node_list:
        if n not in index:
            strongconnect(n)

    cycles: List[List[str]] = []
    for comp in sorted(components):
        start = comp[0]
        if len(comp) == 1 and start not in successors[start]:
            continue
        cycles.append(_cycle_path(start, set(comp), successors))
    return cycles


def _cycle_path(start: str, members: Set[str], successors: Mapping[str, List[str]]) -> List[str]:
    # BFS dentro do componente até voltar a `start`
    parent: Dict[str, str] = {}
    queue: List[str] = [start]
    visited: Set[str] = set()
    while queue:
        v = queue.pop(0)
        for w in successors[v]:
            if w not in members:
                continue
            if w == start:
                path = [start]
                cur = v
                while cur != start:
                    path.append(cur)
                    cur = parent[cur]
                path.append(start)
                return [path[0]] + list(reversed(path[1:-1])) + [start]
            if w not in visited:
                visited.add(w)
                parent[w] = v
                queue.append(w)
    return [start, start]  # pragma: no cover


# ---------------------------------------------------------------------------
# Validações por definição
# ---------------------------------------------------------------------------

def _validate_definition(d: StackDefinition) -> List[StackflowException]:
    violations: List[StackflowException] = []

    for kind, names in (
        ("parameter", [p.name for p in d.parameters]),
        ("resource", [r.name for r in d.resources]),
        ("output", [o.name for o in d.outputs]),
    ):
        seen: Set[str] = set()
        for n in names:
            if n in seen:
                violations.append(
                    DuplicateDefinition(
                        message=f"{kind} '{n}' declarado mais de uma vez em '{d.id}'",
                        details={"stack_id": d.id, kind: n},
                    )
                )
            seen.add(n)

    for p in d.parameters:
        if p.has_default and not value_matches(p.type, p.default):
            violations.append(
                TypeMismatch(
                    message=f"Default de '{d.id}.{p.name}' não satisfaz o tipo {p.type.value}",
                    details={"stack_id": d.id, "parameter": p.name, "expected": p.type.value, "value": repr(p.default)},
                )
            )

    param_names = {p.name for p in d.parameters}
    declared_before: Set[str] = set()
    resource_names = {r.name for r in d.resources}
    for r in d.resources:
        for body in iter_references(r.config):
            try:
                parts = parse_reference(body)
            except InvalidExpression as exc:
                violations.append(
                    InvalidExpression(message=exc.message, details={"stack_id": d.id, "resource": r.name, **exc.details}, hint=exc.hint)
                )
                continue
            if parts[0] == "params" and parts[1] not in param_names:
                violations.append(
                    InvalidExpression(
                        message=f"Recurso '{d.id}.{r.name}' referencia parâmetro não declarado: {parts[1]}",
                        details={"stack_id": d.id, "resource": r.name, "reference": body},
                    )
                )
            elif parts[0] == "resources" and parts[1] not in declared_before:
                reason = "declarado depois" if parts[1] in resource_names else "não declarado"
                violations.append(
                    InvalidExpression(
                        message=f"Recurso '{d.id}.{r.name}' referencia recurso {reason}: {parts[1]}",
                        details={"stack_id": d.id, "resource": r.name, "reference": body},
                        hint="Recursos só podem referenciar recursos declarados antes deles",
                    )
                )
        declared_before.add(r.name)

    for o in d.outputs:
        try:
            resource, _ = parse_output_expression(o.value)
        except InvalidExpression as exc:
            violations.append(
                InvalidExpression(message=exc.message, details={"stack_id": d.id, "output": o.name, **exc.details}, hint=exc.hint)
            )
            continue
        if resource not in resource_names:
            violations.append(
                InvalidExpression(
                    message=f"Output '{d.id}.{o.name}' referencia recurso não declarado: {resource}",
                    details={"stack_id": d.id, "output": o.name, "expression": o.value},
                )
            )

    return violations


def _validate_binding(b: ParameterBinding, defs: Mapping[str, StackDefinition]) -> List[StackflowException]:
    consumer = defs.get(b.consumer)
    if consumer is None:
        return [
            UnresolvedReference(
                message=f"Binding para stack consumidor inexistente: {b.consumer}",
                details={"binding": b.target, "missing_stack": b.consumer, "origin": b.origin},
            )
        ]
    param = consumer.parameter(b.parameter)
    if param is None:
        return [
            UnresolvedReference(
                message=f"Binding para parâmetro inexistente: {b.target}",
                details={"binding": b.target, "missing_parameter": b.parameter, "origin": b.origin},
            )
        ]

    if b.source is None:
        if not value_matches(param.type, b.value):
            return [
                TypeMismatch(
                    message=f"Literal vinculado a '{b.target}' não satisfaz o tipo {param.type.value}",
                    details={"binding": b.target, "expected": param.type.value, "value": repr(b.value), "origin": b.origin},
                )
            ]
        return []

    producer = defs.get(b.source.stack_id)
    if producer is None:
        return [
            UnresolvedReference(
                message=f"'{b.target}' referencia stack inexistente: {b.source.stack_id}",
                details={"binding": b.target, "missing_stack": b.source.stack_id, "origin": b.origin},
            )
        ]
    output = producer.output(b.source.output)
    if output is None:
        return [
            UnresolvedReference(
                message=f"'{b.target}' referencia output inexistente: {b.source}",
                details={"binding": b.target, "missing_output": str(b.source), "origin": b.origin},
            )
        ]
    if output.type != param.type:
        return [
            TypeMismatch(
                message=(
                    f"'{b.target}' ({param.type.value}) vinculado a "
                    f"'{b.source}' ({output.type.value})"
                ),
                details={
                    "binding": b.target,
                    "producer": str(b.source),
                    "expected": param.type.value,
                    "actual": output.type.value,
                },
            )
        ]
    return []


def build_graph(
    definitions: Iterable[StackDefinition],
    bindings: Iterable[ParameterBinding] = (),
) -> StackGraph:
    """
    Valida definições e bindings e produz um StackGraph.

    Args:
        definitions: StackDefinitions (podem vir de várias fontes).
        bindings: ParameterBindings explícitos.

    Returns:
        StackGraph: Grafo validado e acíclico.

    Raises:
        GraphValidationError: Com todas as violações encontradas.
    """
    violations: List[StackflowException] = []

    registry = StackRegistry()
    for d in definitions:
        try:
            registry.add(d)
        except DuplicateDefinition as exc:
            violations.append(exc)
    defs = registry.as_dict()

    for d in defs.values():
        violations.extend(_validate_definition(d))

    by_consumer: Dict[str, Dict[str, ParameterBinding]] = {}
    for b in bindings:
        errors = _validate_binding(b, defs)
        if errors:
            violations.extend(errors)
            continue
        slot = by_consumer.setdefault(b.consumer, {})
        if b.parameter in slot:
            violations.append(
                ConflictingBinding(
                    message=f"Parâmetro vinculado mais de uma vez: {b.target}",
                    details={"binding": b.target, "origins": [slot[b.parameter].origin, b.origin]},
                    hint="Remova um dos bindings ou use um override explícito",
                )
            )
            continue
        slot[b.parameter] = b

    # UnboundParameter só é avaliado para consumidores existentes; bindings
    # inválidos já foram reportados e não contam como vínculo.
    unresolved_targets = {
        v.details.get("binding") for v in violations if isinstance(v, (UnresolvedReference, TypeMismatch))
    }
    for d in defs.values():
        bound = by_consumer.get(d.id, {})
        for p in d.parameters:
            if p.required and not p.has_default and p.name not in bound and f"{d.id}.{p.name}" not in unresolved_targets:
                violations.append(
                    UnboundParameter(
                        message=f"Parâmetro obrigatório sem default e sem binding: {d.id}.{p.name}",
                        details={"stack_id": d.id, "parameter": p.name},
                        hint="Declare um default, um binding literal ou um binding de output",
                    )
                )

    deps = {
        sid: {b.source.stack_id for b in by_consumer.get(sid, {}).values() if b.source is not None}
        for sid in defs
    }
    for cycle in find_cycles(defs.keys(), deps):
        violations.append(
            CyclicDependency(
                message="Dependência cíclica: " + " -> ".join(cycle),
                details={"cycle": cycle},
                hint="Quebre o ciclo removendo ou redirecionando um dos bindings",
            )
        )

    if violations:
        raise graph_validation_error(violations)

    return StackGraph(definitions=defs, bindings=by_consumer)


def check_active_set(graph: StackGraph, active: Optional[Iterable[str]] = None) -> FrozenSet[str]:
    """
    Valida o conjunto ativo desejado contra o grafo.

    Um stack ativo não pode depender de um stack fora do conjunto ativo: o
    produtor seria removido enquanto o consumidor ainda o referencia. Essa
    condição é reportada como `UnresolvedReference` antes de qualquer
    planejamento.

    Returns:
        FrozenSet[str]: Conjunto ativo normalizado (todos os stacks quando `active` é None).

    Raises:
        GraphValidationError: Para ids desconhecidos ou dependências de stacks inativos.
    """
    if active is None:
        return frozenset(graph.definitions)

    requested = frozenset(active)
    violations: List[StackflowException] = []
    for sid in sorted(requested - set(graph.definitions)):
        violations.append(
            UnresolvedReference(
                message=f"Conjunto ativo contém stack não declarado: {sid}",
                details={"missing_stack": sid, "origin": "active_set"},
            )
        )
    for sid in sorted(requested & set(graph.definitions)):
        for param, b in sorted(graph.bindings_for(sid).items()):
            if b.source is not None and b.source.stack_id not in requested:
                violations.append(
                    UnresolvedReference(
                        message=(
                            f"'{b.target}' depende de '{b.source}', mas "
                            f"'{b.source.stack_id}' está fora do conjunto ativo"
                        ),
                        details={
                            "binding": b.target,
                            "inactive_producer": b.source.stack_id,
                            "origin": "active_set",
                        },
                        hint="Inclua o produtor no conjunto ativo ou remova o binding do consumidor",
                    )
                )
    if violations:
        raise graph_validation_error(violations)
    return requested


__all__ = [
    "StackGraph",
    "GraphValidationError",
    "build_graph",
    "check_active_set",
    "find_cycles",
    "toposort",
]
