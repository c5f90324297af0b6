# src/stackflow/__init__.py
"""
Stackflow: orquestração de stacks de infraestrutura interdependentes.

Um stack declara parâmetros, recursos opacos e outputs. Stacks se ligam
apenas por ParameterBindings explícitos (output do produtor → parâmetro do
consumidor), formando um grafo acíclico que o engine valida, planeja contra
o último estado aplicado e executa em ordem topológica.

Arquitetura em alto nível:
    - core.config       → carregamento, merge e hashing de configuração
    - core.stack        → StackDefinition, bindings, AppliedState e RunContext
    - core.engine       → graph builder, planner, executor e Orchestrator
    - core.traceability → Run Manifest e Event Log
    - persistence       → State Store (memória e arquivo, escrita atômica)
    - providers         → Resource Provider Adapter (protocolo + simulado)
    - declarations      → leitura de declarações YAML/JSON
    - cli               → interface de linha de comando (click)

Limites explícitos:
    - Não conhece a semântica dos recursos (o `kind` é opaco)
    - Não detecta drift fora do AppliedState
"""

__version__ = "0.1.0"

__all__ = ["__version__"]
