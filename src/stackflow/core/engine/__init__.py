# src/stackflow/core/engine/__init__.py
"""
Engine do Stackflow.

Componentes:
    - graph    → Dependency Graph Builder (validação exaustiva + ordem topológica)
    - planner  → Plan (create/update/delete/noop) contra o AppliedState
    - executor → execução com propagação de outputs, falha e compensação
    - engine   → Orchestrator, fachada usada pela CLI

Princípios fundamentais:
    - Planejamento e execução são responsabilidades separadas
    - A ordem de execução é determinística para o mesmo grafo
    - Um stack só é aplicado depois de todos os seus produtores
"""

from .engine import Orchestrator
from .executor import Executor, RunResult, StackResult
from .graph import StackGraph, build_graph, check_active_set, find_cycles, toposort
from .planner import Plan, PlanEntry, plan

__all__ = [
    "Orchestrator",
    "Executor",
    "RunResult",
    "StackResult",
    "StackGraph",
    "build_graph",
    "check_active_set",
    "find_cycles",
    "toposort",
    "Plan",
    "PlanEntry",
    "plan",
]
