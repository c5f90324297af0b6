"""
CLI do Stackflow.

Uso:
    stackflow validate stacks.yaml
    stackflow plan stacks.yaml --only network --param compute.size=large
    stackflow apply stacks.yaml --json
    stackflow state list

Códigos de saída:
    - 0: toda entrada do plano termina applied ou noop
    - 1: grafo inválido, stack com falha ou run cancelada
    - 2: configuração, declaração ou provider inválidos

Durante `apply`, SIGINT e SIGTERM cancelam a run: nenhuma nova entrada é
agendada, chamadas em andamento terminam e o manifest é gravado.
"""

from __future__ import annotations

import json
import signal
import sys
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterator, Optional, Sequence, Tuple

import click

from stackflow import __version__
from stackflow.core.config import ConfigError, compute_config_hash, load_config
from stackflow.core.engine import Orchestrator, RunResult
from stackflow.core.engine.planner import Plan
from stackflow.core.exceptions import DeclarationError, GraphValidationError, StackflowException
from stackflow.core.stack.context import RunContext, new_run_context
from stackflow.core.stack.types import Action, StackStatus
from stackflow.core.traceability import create_manifest, save_manifest
from stackflow.declarations import Declarations, apply_overrides, load_declarations, parse_overrides
from stackflow.persistence import FileStateStore, encode_state
from stackflow.providers import load_provider


_ACTION_ICONS = {
    Action.CREATE: ("+", "green"),
    Action.UPDATE: ("~", "yellow"),
    Action.DELETE: ("-", "red"),
    Action.NOOP: ("=", None),
}

_STATUS_COLORS = {
    StackStatus.APPLIED: "green",
    StackStatus.NOOP: None,
    StackStatus.FAILED: "red",
    StackStatus.ROLLED_BACK: "yellow",
    StackStatus.ROLLBACK_FAILED: "red",
    StackStatus.SKIPPED: "yellow",
    StackStatus.CANCELLED: "yellow",
}


# ── Helpers ─────────────────────────────────────────────────────


def _config(ctx: click.Context) -> Dict[str, Any]:
    if "config" not in ctx.obj:
        try:
            ctx.obj["config"] = load_config(local_path=ctx.obj.get("config_path"))
        except ConfigError as exc:
            click.secho(f"❌ Configuração inválida: {exc}", fg="red", err=True)
            sys.exit(2)
    return ctx.obj["config"]


def _declarations(paths: Sequence[str], params: Sequence[str]) -> Declarations:
    try:
        decls = load_declarations(list(paths))
        if params:
            decls = decls.with_bindings(apply_overrides(decls.bindings, parse_overrides(params)))
    except DeclarationError as exc:
        click.secho(f"❌ {exc.message}", fg="red", err=True)
        for k, v in sorted(exc.details.items()):
            click.echo(f"   {k}: {v}", err=True)
        sys.exit(2)
    return decls


def _store(config: Dict[str, Any], graph_id: Optional[str]) -> FileStateStore:
    gid = graph_id or config["graph"]["id"]
    try:
        return FileStateStore(root=config["state"]["dir"], graph_id=gid)
    except ValueError as exc:
        click.secho(f"❌ {exc}", fg="red", err=True)
        sys.exit(2)


def _echo_violations(exc: GraphValidationError, as_json: bool) -> None:
    if as_json:
        click.echo(json.dumps(exc.to_dict(), indent=2, default=str))
        return
    click.secho(f"❌ Grafo inválido ({len(exc.violations)} violação(ões))", fg="red", bold=True)
    for v in exc.violations:
        click.secho(f"   [{v.code}] {v.message}", fg="red")
        if v.hint:
            click.echo(f"      💡 {v.hint}")


def _echo_plan(plan: Plan) -> None:
    summary = plan.summary()
    click.secho(f"📋 Plano para '{plan.graph_id}':", fg="cyan", bold=True)
    if not plan.entries:
        click.echo("   (nenhum stack)")
    for e in plan.entries:
        icon, color = _ACTION_ICONS[e.action]
        click.secho(f"   {icon} {e.stack_id:<30} {e.action.value}", fg=color)
        for reason in e.reasons:
            click.echo(f"       · {reason}")
    click.echo(
        f"\n   {summary['create']} create, {summary['update']} update, "
        f"{summary['delete']} delete, {summary['noop']} noop"
    )


def _echo_result(result: RunResult) -> None:
    click.secho("🏗️  Resultado:", fg="cyan", bold=True)
    for sid, r in result.stacks.items():
        click.secho(f"   {sid:<30} {r.status.value:<16} {r.summary}", fg=_STATUS_COLORS.get(r.status))
        if r.rollback_error:
            click.secho(f"      ⚠️  {r.rollback_error.get('message')}", fg="red")
    if result.ok:
        click.secho("\n✅ Run concluída", fg="green", bold=True)
    elif any(r.status is StackStatus.CANCELLED for r in result.stacks.values()):
        click.secho("\n⚠️  Run cancelada", fg="yellow", bold=True)
    else:
        click.secho("\n❌ Run falhou", fg="red", bold=True)


def _prepare(ctx: click.Context, declarations: Tuple[str, ...], params: Tuple[str, ...]):
    config = _config(ctx)
    decls = _declarations(declarations, params)
    store = _store(config, decls.graph_id)
    return config, decls, store


@contextmanager
def _cancel_on_signals(run_ctx: RunContext) -> Iterator[None]:
    """
    Converte SIGINT/SIGTERM em cancelamento da run enquanto o bloco executa.

    Os handlers anteriores são restaurados na saída. Fora da thread principal
    nenhum handler é instalado.
    """

    def _handler(signum: int, frame: Any) -> None:
        # sem log aqui: a thread principal pode estar dentro de RunContext.log
        run_ctx.cancel()

    previous: Dict[int, Any] = {}
    if threading.current_thread() is threading.main_thread():
        for signum in (signal.SIGINT, signal.SIGTERM):
            previous[signum] = signal.signal(signum, _handler)
    try:
        yield
    finally:
        for signum, handler in previous.items():
            signal.signal(signum, handler)


# ── Root group ──────────────────────────────────────────────────


@click.group()
@click.version_option(version=__version__, prog_name="stackflow")
@click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(exists=False),
    default=None,
    help="Arquivo de configuração local mesclado sobre os defaults empacotados.",
)
@click.pass_context
def main(ctx: click.Context, config_path: Optional[str]) -> None:
    """Stackflow: planeja e aplica stacks de infraestrutura interdependentes."""
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = Path(config_path) if config_path else None


_decl_args = click.argument("declarations", nargs=-1, required=True, type=click.Path(exists=False))
_only_opt = click.option("--only", "only", multiple=True, help="Restringe o conjunto ativo (repetível).")
_param_opt = click.option("--param", "params", multiple=True, help="Sobrescreve um parâmetro: Stack.param=valor.")
_json_opt = click.option("--json-output", "--json", "as_json", is_flag=True, help="Saída em JSON.")


# ── Validate / Plan / Apply ─────────────────────────────────────


@main.command("validate")
@_decl_args
@_param_opt
@_json_opt
@click.pass_context
def validate(ctx: click.Context, declarations: Tuple[str, ...], params: Tuple[str, ...], as_json: bool) -> None:
    """Constrói o grafo de dependências e reporta todas as violações."""
    config, decls, store = _prepare(ctx, declarations, params)
    run_ctx = new_run_context(config, command="validate")
    try:
        graph = Orchestrator(provider=None, store=store, ctx=run_ctx).validate(decls.definitions, decls.bindings)
    except GraphValidationError as exc:
        _echo_violations(exc, as_json)
        sys.exit(1)

    order = graph.topological_order()
    if as_json:
        click.echo(json.dumps({"valid": True, "graph_id": store.graph_id, "order": order}, indent=2))
        return
    click.secho(f"✅ Grafo válido: {len(order)} stack(s)", fg="green", bold=True)
    click.echo("   ordem: " + " → ".join(order))


@main.command("plan")
@_decl_args
@_only_opt
@_param_opt
@_json_opt
@click.pass_context
def plan_cmd(
    ctx: click.Context,
    declarations: Tuple[str, ...],
    only: Tuple[str, ...],
    params: Tuple[str, ...],
    as_json: bool,
) -> None:
    """Mostra o que o apply faria, sem chamar o provider."""
    config, decls, store = _prepare(ctx, declarations, params)
    run_ctx = new_run_context(config, command="plan")
    orchestrator = Orchestrator(provider=None, store=store, ctx=run_ctx)
    try:
        graph = orchestrator.validate(decls.definitions, decls.bindings)
        plan = orchestrator.plan(graph, active=list(only) or None)
    except GraphValidationError as exc:
        _echo_violations(exc, as_json)
        sys.exit(1)
    except StackflowException as exc:
        click.secho(f"❌ {exc.message}", fg="red", err=True)
        sys.exit(2)

    if as_json:
        click.echo(json.dumps(plan.to_dict(), indent=2, default=str))
        return
    _echo_plan(plan)


@main.command("apply")
@_decl_args
@_only_opt
@_param_opt
@_json_opt
@click.pass_context
def apply_cmd(
    ctx: click.Context,
    declarations: Tuple[str, ...],
    only: Tuple[str, ...],
    params: Tuple[str, ...],
    as_json: bool,
) -> None:
    """Planeja e executa; o manifest da run é gravado no diretório de estado."""
    config, decls, store = _prepare(ctx, declarations, params)
    run_ctx = new_run_context(config, command="apply")

    try:
        provider = load_provider(config["provider"]["factory"], config["provider"].get("options") or {})
    except (ValueError, TypeError, ImportError, AttributeError) as exc:
        click.secho(f"❌ Provider inválido: {exc}", fg="red", err=True)
        sys.exit(2)

    orchestrator = Orchestrator(provider=provider, store=store, ctx=run_ctx)
    try:
        graph = orchestrator.validate(decls.definitions, decls.bindings)
        plan = orchestrator.plan(graph, active=list(only) or None)
    except GraphValidationError as exc:
        _echo_violations(exc, as_json)
        sys.exit(1)
    except StackflowException as exc:
        click.secho(f"❌ {exc.message}", fg="red", err=True)
        sys.exit(2)

    manifest = create_manifest(
        run_id=run_ctx.run_id,
        graph_id=store.graph_id,
        started_at=run_ctx.created_at,
        stackflow_version=__version__,
        config_hash=compute_config_hash(config),
        declarations_hash=decls.source_hash,
    )
    with _cancel_on_signals(run_ctx):
        result = orchestrator.execute(plan, manifest=manifest)
    manifest_path = store.graph_dir / "runs" / f"{run_ctx.run_id}.json"
    save_manifest(manifest, manifest_path)

    if as_json:
        payload = result.to_dict()
        payload["run_id"] = run_ctx.run_id
        payload["manifest"] = str(manifest_path)
        click.echo(json.dumps(payload, indent=2, default=str))
    else:
        _echo_plan(plan)
        click.echo()
        _echo_result(result)
        click.echo(f"   📄 Manifest: {manifest_path}")

    if not result.ok:
        sys.exit(1)


# ── State ───────────────────────────────────────────────────────


@main.group("state")
def state() -> None:
    """Inspeciona o AppliedState persistido."""


@state.command("list")
@click.option("--graph", "graph_id", default=None, help="Id do grafo (padrão: graph.id da configuração).")
@_json_opt
@click.pass_context
def state_list(ctx: click.Context, graph_id: Optional[str], as_json: bool) -> None:
    """Lista os stacks com estado persistido."""
    store = _store(_config(ctx), graph_id)
    rows = []
    for sid in store.list_stack_ids():
        st = store.load(sid)
        if st is not None:
            rows.append({"stack_id": sid, "status": st.status.value, "applied_at": st.applied_at, "resources": len(st.resources)})

    if as_json:
        click.echo(json.dumps(rows, indent=2))
        return
    if not rows:
        click.echo(f"   (nenhum estado para '{store.graph_id}')")
        return
    click.secho(f"💾 Estado de '{store.graph_id}':", fg="cyan", bold=True)
    for row in rows:
        click.echo(f"   {row['stack_id']:<30} {row['status']:<16} {row['resources']} recurso(s)  {row['applied_at']}")


@state.command("show")
@click.argument("stack_id")
@click.option("--graph", "graph_id", default=None, help="Id do grafo (padrão: graph.id da configuração).")
@click.pass_context
def state_show(ctx: click.Context, stack_id: str, graph_id: Optional[str]) -> None:
    """Imprime o AppliedState de um stack em JSON."""
    store = _store(_config(ctx), graph_id)
    try:
        st = store.load(stack_id)
    except (ValueError, StackflowException) as exc:
        click.secho(f"❌ {exc}", fg="red", err=True)
        sys.exit(2)
    if st is None:
        click.secho(f"❌ Nenhum estado para '{stack_id}'", fg="red", err=True)
        sys.exit(1)
    click.echo(json.dumps(encode_state(st), indent=2, sort_keys=True, default=str))


if __name__ == "__main__":
    main()
