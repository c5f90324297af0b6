# tests/conftest.py
"""
Fixtures compartilhados para testes do Stackflow.

Este módulo fornece:
- o grafo de três camadas usado nos cenários de referência
  (network → compute → database), construído por `stack_builders`
- a mesma declaração em YAML, para testes de loader e CLI
- State Store em memória, provider simulado e RunContext controlado

Decisões arquiteturais:
    - Fixtures são simples, explícitas e determinísticas
    - O provider simulado registra cada chamada (`provider.calls`), o que
      permite afirmar que nenhum apply/destroy ocorreu para um stack

Limites explícitos:
    - Não executa runs (cada teste decide o que exercitar)
    - Não realiza I/O fora de `tmp_path`
"""

import pytest

from stackflow.core.stack.context import new_run_context
from stackflow.persistence import InMemoryStateStore
from stackflow.providers import SimulatedProvider

from stack_builders import THREE_TIER_YAML, three_tier_bindings, three_tier_definitions


# =====================================================
# Grafo de referência
# =====================================================

@pytest.fixture
def three_tier():
    """(definições, bindings) do grafo Network → Compute → Database."""
    return three_tier_definitions(), three_tier_bindings()


@pytest.fixture
def three_tier_yaml() -> str:
    return THREE_TIER_YAML


@pytest.fixture
def declarations_file(tmp_path):
    path = tmp_path / "stacks.yaml"
    path.write_text(THREE_TIER_YAML, encoding="utf-8")
    return path


# =====================================================
# Infraestrutura de execução
# =====================================================

@pytest.fixture
def store():
    return InMemoryStateStore(graph_id="webapp")


@pytest.fixture
def provider():
    return SimulatedProvider()


@pytest.fixture
def make_ctx():
    """Fábrica de RunContext com política de execução explícita."""

    def _make(*, max_workers: int = 1, rollback: bool = True):
        config = {
            "graph": {"id": "webapp"},
            "engine": {"max_workers": max_workers, "rollback": rollback},
        }
        return new_run_context(config, origin="tests")

    return _make


@pytest.fixture
def ctx(make_ctx):
    return make_ctx()
