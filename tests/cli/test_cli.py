# tests/cli/test_cli.py
"""
Testes da CLI (`stackflow`).

Cada teste grava uma configuração local apontando `state.dir` para
`tmp_path`, de modo que nenhum estado escapa do diretório temporário.

Códigos de saída verificados:
    - 0: run concluída (todo stack applied/noop) ou comando informativo
    - 1: grafo inválido ou run com falha
    - 2: configuração, declaração ou provider inválidos
"""

import json
import signal

import pytest
from click.testing import CliRunner

from stackflow import __version__
from stackflow.cli import _cancel_on_signals, main
from stackflow.core.stack.context import new_run_context
from stackflow.providers import SimulatedProvider


class InterruptingProvider(SimulatedProvider):
    """Provider simulado que dispara SIGINT ao aplicar a VPC (Ctrl-C no meio da run)."""

    def apply(self, kind, config, previous_fingerprint):
        if kind == "network.vpc":
            signal.raise_signal(signal.SIGINT)
        return super().apply(kind, config, previous_fingerprint)


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def config_file(tmp_path):
    def _write(extra: str = "") -> str:
        path = tmp_path / "stackflow.yaml"
        path.write_text(
            f"graph:\n  id: webapp\nstate:\n  dir: '{tmp_path / 'state'}'\n{extra}",
            encoding="utf-8",
        )
        return str(path)

    return _write


def _invoke(runner, config_path, *args):
    return runner.invoke(main, ["--config", config_path, *[str(a) for a in args]])


def test_version(runner):
    result = runner.invoke(main, ["--version"])
    assert result.exit_code == 0
    assert __version__ in result.output


def test_help_is_in_portuguese(runner):
    result = runner.invoke(main, ["apply", "--help"])
    assert result.exit_code == 0
    assert "Restringe o conjunto ativo" in result.output
    assert "Sobrescreve um parâmetro" in result.output


def test_validate_ok(runner, config_file, declarations_file):
    result = _invoke(runner, config_file(), "validate", declarations_file)
    assert result.exit_code == 0, result.output
    assert "network → compute → database" in result.output

    result = _invoke(runner, config_file(), "validate", declarations_file, "--json")
    data = json.loads(result.output)
    assert data == {"valid": True, "graph_id": "webapp", "order": ["network", "compute", "database"]}


def test_validate_reports_every_violation(runner, config_file, tmp_path, three_tier_yaml):
    broken = tmp_path / "broken.yaml"
    broken.write_text(
        three_tier_yaml.replace("output: network.subnet2Id", "output: network.missing")
        + "  - {consumer: network.cidr, output: database.endpoint}\n",
        encoding="utf-8",
    )
    result = _invoke(runner, config_file(), "validate", broken, "--json")
    assert result.exit_code == 1
    kinds = {v["type"] for v in json.loads(result.output)["violations"]}
    assert kinds == {"UnresolvedReference", "CyclicDependency"}


def test_plan_does_not_touch_state(runner, config_file, declarations_file, tmp_path):
    result = _invoke(runner, config_file(), "plan", declarations_file, "--json")
    assert result.exit_code == 0, result.output
    data = json.loads(result.output)
    assert data["summary"] == {"create": 3, "update": 0, "delete": 0, "noop": 0}
    assert not (tmp_path / "state").exists()

    text = _invoke(runner, config_file(), "plan", declarations_file)
    assert "+ network" in text.output
    assert "3 create, 0 update, 0 delete, 0 noop" in text.output


def test_apply_then_replan_is_noop(runner, config_file, declarations_file, tmp_path):
    cfg = config_file()
    result = _invoke(runner, cfg, "apply", declarations_file, "--json")
    assert result.exit_code == 0, result.output
    data = json.loads(result.output)
    assert data["ok"] is True
    assert [s["status"] for s in data["stacks"]] == ["applied", "applied", "applied"]

    manifest = json.loads((tmp_path / "state" / "webapp" / "runs" / f"{data['run_id']}.json").read_text(encoding="utf-8"))
    assert manifest["run"]["status"] == "succeeded"
    assert manifest["run"]["graph_id"] == "webapp"

    again = _invoke(runner, cfg, "plan", declarations_file, "--json")
    assert json.loads(again.output)["summary"]["noop"] == 3

    listed = _invoke(runner, cfg, "state", "list", "--json")
    assert [row["stack_id"] for row in json.loads(listed.output)] == ["compute", "database", "network"]

    shown = _invoke(runner, cfg, "state", "show", "network")
    assert shown.exit_code == 0
    record = json.loads(shown.output)
    assert record["status"] == "applied"
    assert record["schema_version"] == 1


def test_param_override_is_planned_as_update(runner, config_file, declarations_file):
    cfg = config_file()
    assert _invoke(runner, cfg, "apply", declarations_file, "--json").exit_code == 0

    result = _invoke(runner, cfg, "plan", declarations_file, "--param", "compute.instanceType=m5.large", "--json")
    actions = {e["stack_id"]: e["action"] for e in json.loads(result.output)["entries"]}
    assert actions == {"network": "noop", "compute": "update", "database": "update"}


def test_only_deletes_stacks_outside_active_set(runner, config_file, declarations_file):
    cfg = config_file()
    assert _invoke(runner, cfg, "apply", declarations_file, "--json").exit_code == 0

    result = _invoke(runner, cfg, "apply", declarations_file, "--only", "network", "--only", "compute", "--json")
    assert result.exit_code == 0, result.output
    statuses = {s["stack_id"]: (s["action"], s["status"]) for s in json.loads(result.output)["stacks"]}
    assert statuses["database"] == ("delete", "applied")

    listed = _invoke(runner, cfg, "state", "list", "--json")
    assert [row["stack_id"] for row in json.loads(listed.output)] == ["compute", "network"]


def test_inconsistent_only_exits_before_apply(runner, config_file, declarations_file, tmp_path):
    result = _invoke(runner, config_file(), "apply", declarations_file, "--only", "database", "--json")
    assert result.exit_code == 1
    assert json.loads(result.output)["violations"][0]["type"] == "UnresolvedReference"
    assert not (tmp_path / "state" / "webapp").exists()


def test_failed_run_exits_1(runner, config_file, declarations_file):
    cfg = config_file("provider:\n  options:\n    fail_kinds: [database.instance]\n")
    result = _invoke(runner, cfg, "apply", declarations_file)
    assert result.exit_code == 1
    assert "rolled_back" in result.output
    assert "Run falhou" in result.output

    listed = _invoke(runner, cfg, "state", "list", "--json")
    statuses = {row["stack_id"]: row["status"] for row in json.loads(listed.output)}
    assert statuses == {"network": "applied", "compute": "applied"}


def test_invalid_config_exits_2(runner, config_file, declarations_file):
    result = _invoke(runner, config_file("engine:\n  max_workers: 0\n"), "validate", declarations_file)
    assert result.exit_code == 2


def test_invalid_declarations_exit_2(runner, config_file, tmp_path):
    bad = tmp_path / "bad.yaml"
    bad.write_text("stacks:\n  a:\n    unknown: 1\n", encoding="utf-8")
    assert _invoke(runner, config_file(), "validate", bad).exit_code == 2
    assert _invoke(runner, config_file(), "plan", tmp_path / "absent.yaml").exit_code == 2


def test_invalid_provider_exits_2(runner, config_file, declarations_file):
    cfg = config_file("provider:\n  factory: 'stackflow.providers.simulated:Nope'\n")
    assert _invoke(runner, cfg, "apply", declarations_file).exit_code == 2


def test_state_show_unknown_stack(runner, config_file):
    result = _invoke(runner, config_file(), "state", "show", "ghost")
    assert result.exit_code == 1


def test_state_list_empty(runner, config_file):
    result = _invoke(runner, config_file(), "state", "list")
    assert result.exit_code == 0
    assert "nenhum estado" in result.output


def test_signal_handlers_cancel_run_and_are_restored():
    run_ctx = new_run_context({}, command="apply")
    before = signal.getsignal(signal.SIGTERM)

    with _cancel_on_signals(run_ctx):
        signal.raise_signal(signal.SIGTERM)
        assert run_ctx.cancelled

    assert signal.getsignal(signal.SIGTERM) is before


def test_sigint_during_apply_cancels_pending_stacks(runner, config_file, declarations_file, tmp_path):
    """
    Ctrl-C durante o apply não aborta o processo.

    Invariantes:
        - o stack em andamento (network) termina e tem estado gravado
        - os stacks ainda não agendados ficam `cancelled`, sem chamada ao provider
        - o manifest é gravado com status `cancelled` e a saída é 1
    """
    cfg = config_file(f"provider:\n  factory: '{__name__}:InterruptingProvider'\n")
    before = signal.getsignal(signal.SIGINT)

    result = _invoke(runner, cfg, "apply", declarations_file, "--json")

    assert result.exit_code == 1, result.output
    data = json.loads(result.output)
    assert [(s["stack_id"], s["status"]) for s in data["stacks"]] == [
        ("network", "applied"),
        ("compute", "cancelled"),
        ("database", "cancelled"),
    ]
    assert all(s["provider_calls"] == 0 for s in data["stacks"][1:])

    manifest = json.loads((tmp_path / "state" / "webapp" / "runs" / f"{data['run_id']}.json").read_text(encoding="utf-8"))
    assert manifest["run"]["status"] == "cancelled"

    listed = _invoke(runner, cfg, "state", "list", "--json")
    assert [row["stack_id"] for row in json.loads(listed.output)] == ["network"]
    assert signal.getsignal(signal.SIGINT) is before
