# tests/core/engine/test_graph_builder.py
"""
Testes do Dependency Graph Builder.

Os testes asseguram que:
- grafos válidos produzem ordem topológica que respeita toda aresta
- cada tipo de violação é reportado com a exceção correta
- a validação é exaustiva (todas as violações em um único erro)
- ciclos de qualquer comprimento são reportados com o caminho completo

Limites explícitos:
    - Não valida planejamento nem execução
"""

import pytest

from stackflow.core.engine.graph import build_graph, check_active_set, find_cycles, toposort
from stackflow.core.exceptions import (
    ConflictingBinding,
    CyclicDependency,
    DuplicateDefinition,
    GraphValidationError,
    InvalidExpression,
    TypeMismatch,
    UnboundParameter,
    UnresolvedReference,
)
from stackflow.core.stack.binding import ParameterBinding
from stackflow.core.stack.definition import OutputSpec, ParameterSpec, ResourceSpec, StackDefinition
from stackflow.core.stack.types import TypeTag


def _stack(sid, params=(), outputs=("out",), out_type=TypeTag.STRING):
    """Stack mínimo: um recurso `r`, parâmetros string e outputs apontando para `r.id`."""
    return StackDefinition(
        id=sid,
        parameters=[ParameterSpec(p, TypeTag.STRING) for p in params],
        resources=[ResourceSpec("r", "test.kind", {"name": sid})],
        outputs=[OutputSpec(o, out_type, "r.id") for o in outputs],
    )


def _chain(edges):
    """Constrói definições e bindings a partir de arestas (produtor, consumidor)."""
    nodes = sorted({n for e in edges for n in e})
    params = {n: [f"in_{p}" for p, c in edges if c == n] for n in nodes}
    defs = [_stack(n, params[n]) for n in nodes]
    binds = [ParameterBinding.from_output(c, f"in_{p}", f"{p}.out") for p, c in edges]
    return defs, binds


@pytest.mark.parametrize(
    "edges",
    [
        [("a", "b")],
        [("a", "b"), ("b", "c"), ("a", "c")],
        [("z", "a"), ("y", "a"), ("a", "m")],
        [("root", "l1"), ("root", "l2"), ("l1", "leaf"), ("l2", "leaf"), ("root", "leaf")],
        [("n5", "n1"), ("n4", "n2"), ("n3", "n1"), ("n2", "n1"), ("n5", "n4")],
    ],
)
def test_topological_order_respects_every_edge(edges):
    defs, binds = _chain(edges)
    graph = build_graph(defs, binds)
    order = graph.topological_order()

    assert sorted(order) == sorted({n for e in edges for n in e})
    for producer, consumer in edges:
        assert order.index(producer) < order.index(consumer)


def test_topological_order_breaks_ties_by_id():
    defs = [_stack("c"), _stack("a"), _stack("b")]
    assert build_graph(defs).topological_order() == ["a", "b", "c"]


def test_three_tier_order(three_tier):
    defs, binds = three_tier
    graph = build_graph(defs, binds)
    assert graph.topological_order() == ["network", "compute", "database"]
    assert graph.producers_of("database") == {"compute", "network"}
    assert graph.consumers_of("network") == {"compute", "database"}
    assert graph.upstream_of("database") == {"compute", "network"}


@pytest.mark.parametrize(
    "edges, expected",
    [
        ([("a", "b"), ("b", "a")], ["a", "b", "a"]),
        ([("a", "b"), ("b", "c"), ("c", "a")], ["a", "b", "c", "a"]),
        ([("b", "c"), ("c", "d"), ("d", "e"), ("e", "b"), ("a", "b")], ["b", "c", "d", "e", "b"]),
    ],
)
def test_cycle_reported_with_full_path(edges, expected):
    defs, binds = _chain(edges)
    with pytest.raises(GraphValidationError) as ei:
        build_graph(defs, binds)

    cycles = ei.value.of_kind(CyclicDependency)
    assert len(cycles) == 1
    assert cycles[0].cycle == expected


def test_self_binding_is_a_cycle():
    d = _stack("solo", params=["loop"])
    with pytest.raises(GraphValidationError) as ei:
        build_graph([d], [ParameterBinding.from_output("solo", "loop", "solo.out")])
    assert ei.value.of_kind(CyclicDependency)[0].cycle == ["solo", "solo"]


def test_find_cycles_ignores_acyclic_components():
    deps = {"b": {"a"}, "c": {"b"}, "x": {"y"}, "y": {"x"}}
    assert find_cycles(["a", "b", "c", "x", "y"], deps) == [["x", "y", "x"]]


def test_toposort_raises_on_cycle():
    with pytest.raises(ValueError):
        toposort(["a", "b"], {"a": {"b"}, "b": {"a"}})


def test_missing_output_is_unresolved_reference():
    defs = [_stack("net"), _stack("app", params=["vpc"])]
    binds = [ParameterBinding.from_output("app", "vpc", "net.vpc_id")]
    with pytest.raises(GraphValidationError) as ei:
        build_graph(defs, binds)
    assert ei.value.kinds() == ["UnresolvedReference"]
    assert ei.value.violations[0].details["missing_output"] == "net.vpc_id"


def test_missing_producer_stack_is_unresolved_reference():
    defs = [_stack("app", params=["vpc"])]
    binds = [ParameterBinding.from_output("app", "vpc", "ghost.out")]
    with pytest.raises(GraphValidationError) as ei:
        build_graph(defs, binds)
    # o binding inválido não gera UnboundParameter adicional
    assert ei.value.kinds() == ["UnresolvedReference"]


def test_output_type_mismatch():
    defs = [_stack("net", out_type=TypeTag.INTEGER), _stack("app", params=["vpc"])]
    binds = [ParameterBinding.from_output("app", "vpc", "net.out")]
    with pytest.raises(GraphValidationError) as ei:
        build_graph(defs, binds)
    mismatch = ei.value.of_kind(TypeMismatch)[0]
    assert mismatch.details["expected"] == "string"
    assert mismatch.details["actual"] == "integer"


def test_literal_type_mismatch():
    defs = [_stack("app", params=["name"])]
    with pytest.raises(GraphValidationError) as ei:
        build_graph(defs, [ParameterBinding.literal("app", "name", 42)])
    assert ei.value.kinds() == ["TypeMismatch"]


def test_any_output_type_only_matches_any_parameter():
    defs = [
        _stack("net", out_type=TypeTag.ANY),
        StackDefinition(id="app", parameters=[ParameterSpec("v", TypeTag.ANY)]),
    ]
    graph = build_graph(defs, [ParameterBinding.from_output("app", "v", "net.out")])
    assert graph.producers_of("app") == {"net"}


def test_unbound_required_parameter():
    with pytest.raises(GraphValidationError) as ei:
        build_graph([_stack("app", params=["vpc"])])
    unbound = ei.value.of_kind(UnboundParameter)[0]
    assert unbound.details == {"stack_id": "app", "parameter": "vpc"}


def test_optional_and_defaulted_parameters_need_no_binding():
    d = StackDefinition(
        id="app",
        parameters=[
            ParameterSpec("size", TypeTag.STRING, default="small"),
            ParameterSpec("tag", TypeTag.STRING, required=False),
        ],
    )
    assert build_graph([d]).stack_ids == ["app"]


def test_duplicate_stack_and_conflicting_binding():
    defs = [_stack("net"), _stack("net"), _stack("app", params=["vpc"])]
    binds = [
        ParameterBinding.from_output("app", "vpc", "net.out", origin="a.yaml"),
        ParameterBinding.literal("app", "vpc", "vpc-123", origin="b.yaml"),
    ]
    with pytest.raises(GraphValidationError) as ei:
        build_graph(defs, binds)

    assert len(ei.value.of_kind(DuplicateDefinition)) == 1
    conflict = ei.value.of_kind(ConflictingBinding)[0]
    assert conflict.details["origins"] == ["a.yaml", "b.yaml"]


def test_invalid_expressions_in_definition():
    d = StackDefinition(
        id="app",
        parameters=[],
        resources=[
            ResourceSpec("first", "k", {"ref": "${resources.second.id}"}),
            ResourceSpec("second", "k", {"p": "${params.missing}", "bad": "${env.HOME}"}),
        ],
        outputs=[OutputSpec("o", TypeTag.STRING, "nowhere.id"), OutputSpec("p", TypeTag.STRING, "noattr")],
    )
    with pytest.raises(GraphValidationError) as ei:
        build_graph([d])
    assert ei.value.kinds() == ["InvalidExpression"] * 5
    assert all(isinstance(v, InvalidExpression) for v in ei.value.violations)


def test_validation_is_exhaustive():
    defs = [
        _stack("a", params=["x"]),
        _stack("b", params=["y"]),
        _stack("c", params=["unbound"]),
        _stack("d", params=["bad"]),
    ]
    binds = [
        ParameterBinding.from_output("a", "x", "b.out"),
        ParameterBinding.from_output("b", "y", "a.out"),
        ParameterBinding.from_output("d", "bad", "ghost.out"),
    ]
    with pytest.raises(GraphValidationError) as ei:
        build_graph(defs, binds)

    assert sorted(set(ei.value.kinds())) == ["CyclicDependency", "UnboundParameter", "UnresolvedReference"]
    payload = ei.value.to_dict()
    assert payload["details"]["count"] == 3
    assert len(payload["violations"]) == 3


def test_check_active_set_rejects_binding_to_inactive_producer(three_tier):
    defs, binds = three_tier
    graph = build_graph(defs, binds)

    with pytest.raises(GraphValidationError) as ei:
        check_active_set(graph, ["network", "database"])

    refs = ei.value.of_kind(UnresolvedReference)
    assert len(refs) == 1
    assert refs[0].details["binding"] == "database.securityGroupId"


def test_check_active_set_rejects_unknown_stack(three_tier):
    graph = build_graph(*three_tier)
    with pytest.raises(GraphValidationError) as ei:
        check_active_set(graph, ["network", "storage"])
    assert ei.value.violations[0].details["missing_stack"] == "storage"


def test_check_active_set_defaults_to_all(three_tier):
    graph = build_graph(*three_tier)
    assert check_active_set(graph) == frozenset({"network", "compute", "database"})
    assert check_active_set(graph, ["network", "compute"]) == frozenset({"network", "compute"})
