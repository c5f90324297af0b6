# tests/core/engine/test_planner.py
"""
Testes do Planner.

Os testes asseguram que:
- sem estado aplicado, todo stack ativo é planejado como `create` em ordem topológica
- re-planejar após uma run bem-sucedida produz um plano só de `noop` (idempotência)
- alterar a configuração de um produtor propaga `update` a todos os dependentes transitivos
- stacks persistidos fora do conjunto ativo são planejados como `delete`,
  antes do passo de create/update e em ordem reversa de dependência
- um conjunto ativo inconsistente falha antes de qualquer plano
- dependências registradas divergentes do grafo forçam `update`, e ciclos
  entre registros obsoletos não impedem o teardown

Limites explícitos:
    - O estado aplicado é produzido pelo Executor com o provider simulado
"""

from dataclasses import replace

import pytest

from stackflow.core.engine.executor import Executor
from stackflow.core.engine.graph import build_graph
from stackflow.core.engine.planner import plan
from stackflow.core.exceptions import GraphValidationError, UnresolvedReference
from stackflow.core.stack.binding import UNKNOWN, ParameterBinding
from stackflow.core.stack.definition import OutputSpec, ParameterSpec, ResourceSpec, StackDefinition
from stackflow.core.stack.types import Action, AppliedState, StackStatus, TypeTag

from stack_builders import make_compute, make_database, make_network, three_tier_bindings


def _apply_all(graph, store, provider, ctx, active=None):
    result = Executor(provider=provider, store=store, ctx=ctx).execute(plan(graph, store, active=active))
    assert result.ok
    return result


def test_first_plan_creates_everything_in_order(three_tier, store, ctx):
    graph = build_graph(*three_tier)
    p = plan(graph, store, ctx=ctx)

    assert p.order == ["network", "compute", "database"]
    assert p.actions() == {"network": Action.CREATE, "compute": Action.CREATE, "database": Action.CREATE}
    assert p.entry("database").depends_on == ("compute", "network")
    assert p.entry("compute").resolved_inputs["subnetId"] is UNKNOWN
    assert p.entry("network").resolved_inputs == {"cidr": "10.0.0.0/16"}
    assert p.summary() == {"create": 3, "update": 0, "delete": 0, "noop": 0}

    planned = [e for e in ctx.events if e.get("event") == "stack_planned"]
    assert [e["stack_id"] for e in planned] == ["network", "compute", "database"]


def test_replan_after_success_is_all_noop(three_tier, store, provider, ctx):
    graph = build_graph(*three_tier)
    _apply_all(graph, store, provider, ctx)

    again = plan(graph, store)
    assert again.is_noop
    assert again.order == ["network", "compute", "database"]
    assert all(e.reasons == () for e in again)


def test_leaf_config_change_cascades_to_all_dependents(store, provider, ctx):
    _apply_all(build_graph([make_network(), make_compute(), make_database()], three_tier_bindings()), store, provider, ctx)

    changed = build_graph(
        [make_network(subnet_cidr="10.0.9.0/24"), make_compute(), make_database()],
        three_tier_bindings(),
    )
    p = plan(changed, store)

    assert p.actions() == {"network": Action.UPDATE, "compute": Action.UPDATE, "database": Action.UPDATE}
    assert "configuração alterada: subnet" in p.entry("network").reasons
    assert "produtor 'network' planejado como update" in p.entry("compute").reasons
    assert "produtor 'compute' planejado como update" in p.entry("database").reasons


def test_literal_input_change_only_affects_consumer_and_downstream(store, provider, ctx):
    graph = build_graph([make_network(), make_compute(), make_database()], three_tier_bindings())
    _apply_all(graph, store, provider, ctx)

    overridden = build_graph(
        [make_network(), make_compute(), make_database()],
        three_tier_bindings() + [ParameterBinding.literal("compute", "instanceType", "m5.large", origin="override")],
    )
    p = plan(overridden, store)

    assert p.actions() == {"network": Action.NOOP, "compute": Action.UPDATE, "database": Action.UPDATE}
    assert "inputs alterados: instanceType" in p.entry("compute").reasons


def test_failed_prior_status_forces_update(three_tier, store, provider, ctx):
    graph = build_graph(*three_tier)
    _apply_all(graph, store, provider, ctx)

    prior = store.load("database")
    store.save(
        "database",
        AppliedState(
            stack_id=prior.stack_id,
            graph_id=prior.graph_id,
            inputs=prior.inputs,
            resources=prior.resources,
            outputs=prior.outputs,
            status=StackStatus.FAILED,
            dependencies=prior.dependencies,
            outputs_hash=prior.outputs_hash,
            applied_at=prior.applied_at,
        ),
    )
    p = plan(graph, store)
    assert p.actions()["database"] is Action.UPDATE
    assert p.entry("database").reasons == ("último status: failed",)
    assert p.actions()["network"] is Action.NOOP


def test_removed_stack_is_deleted_before_applies(three_tier, store, provider, ctx):
    graph = build_graph(*three_tier)
    _apply_all(graph, store, provider, ctx)

    p = plan(graph, store, active=["network", "compute"])
    assert p.order == ["database", "network", "compute"]
    assert p.actions() == {"database": Action.DELETE, "network": Action.NOOP, "compute": Action.NOOP}
    assert p.entry("database").reasons == ("fora do conjunto ativo",)


def test_deletes_run_consumers_before_producers(three_tier, store, provider, ctx):
    graph = build_graph(*three_tier)
    _apply_all(graph, store, provider, ctx)

    p = plan(graph, store, active=["network"])
    assert p.order == ["database", "compute", "network"]
    assert p.entry("compute").action is Action.DELETE
    assert p.entry("compute").depends_on == ("database",)


def test_undeclared_persisted_stack_is_deleted(three_tier, store, provider, ctx):
    graph = build_graph(*three_tier)
    _apply_all(graph, store, provider, ctx)

    only_network = build_graph([make_network()])
    p = plan(only_network, store)
    assert p.actions() == {"database": Action.DELETE, "compute": Action.DELETE, "network": Action.NOOP}
    # dependências vêm do estado aplicado quando o stack não é mais declarado
    assert p.entry("compute").depends_on == ("database",)
    assert p.entry("compute").reasons == ("não declarado",)


def test_inactive_producer_fails_before_planning(three_tier, store, provider, ctx):
    graph = build_graph(*three_tier)
    _apply_all(graph, store, provider, ctx)
    calls_before = len(provider.calls)

    with pytest.raises(GraphValidationError) as ei:
        plan(graph, store, active=["network", "database"])

    assert ei.value.kinds() == ["UnresolvedReference"]
    assert isinstance(ei.value.violations[0], UnresolvedReference)
    assert len(provider.calls) == calls_before


def test_plan_is_deterministic(three_tier, store):
    graph = build_graph(*three_tier)
    assert plan(graph, store).to_dict() == plan(graph, store).to_dict()


def test_plan_to_dict_renders_unknown_inputs(three_tier, store):
    data = plan(build_graph(*three_tier), store).to_dict()
    compute = [e for e in data["entries"] if e["stack_id"] == "compute"][0]
    assert compute["resolved_inputs"]["subnetId"] == "(known after apply)"
    assert data["graph_id"] == "webapp"


def _pair(*, reversed_binding: bool):
    """Dois stacks `a` e `b`; em `reversed_binding`, `a` passa a consumir `b`."""
    a_params = [ParameterSpec("q", TypeTag.STRING)] if reversed_binding else []
    a_config = {"q": "${params.q}"} if reversed_binding else {}
    a = StackDefinition(
        id="a",
        parameters=a_params,
        resources=[ResourceSpec("node", "test.node", a_config)],
        outputs=[OutputSpec("x", TypeTag.STRING, "node.id")],
    )
    b = StackDefinition(
        id="b",
        parameters=[ParameterSpec("p", TypeTag.STRING)],
        resources=[ResourceSpec("node", "test.node", {"p": "${params.p}"})],
        outputs=[OutputSpec("y", TypeTag.STRING, "node.id")],
    )
    return a, b


def test_dropped_producer_forces_update_of_consumer(store, provider, ctx):
    a, b = _pair(reversed_binding=False)
    _apply_all(build_graph([a, b], [ParameterBinding.from_output("b", "p", "a.x")]), store, provider, ctx)
    old_x = store.load("a").outputs["x"]

    a2, b2 = _pair(reversed_binding=True)
    reversed_graph = build_graph(
        [a2, b2],
        [
            ParameterBinding.literal("b", "p", old_x),
            ParameterBinding.from_output("a", "q", "b.y"),
        ],
    )
    p = plan(reversed_graph, store)

    assert p.order == ["b", "a"]
    assert p.actions() == {"b": Action.UPDATE, "a": Action.UPDATE}
    assert p.entry("b").reasons == ("dependências alteradas: a",)

    _apply_all(reversed_graph, store, provider, ctx)
    assert store.load("b").dependencies == ()
    assert store.load("a").dependencies == ("b",)

    teardown = plan(build_graph([], []), store, active=[])
    assert teardown.order == ["a", "b"]
    assert teardown.entry("b").depends_on == ("a",)


def test_cyclic_recorded_dependencies_are_broken_deterministically(store, provider, ctx):
    a, b = _pair(reversed_binding=False)
    _apply_all(build_graph([a, b], [ParameterBinding.from_output("b", "p", "a.x")]), store, provider, ctx)

    # registros inconsistentes: a -> b e b -> a
    prior = store.load("a")
    store.save("a", replace(prior, dependencies=("b",)))

    first = plan(build_graph([], []), store, active=[])
    second = plan(build_graph([], []), store, active=[])

    assert first.actions() == {"a": Action.DELETE, "b": Action.DELETE}
    assert first.order == ["b", "a"]
    assert first.entry("a").depends_on == ("b",)
    assert first.entry("b").depends_on == ()
    assert first.to_dict() == second.to_dict()
