# src/stackflow/core/__init__.py
"""
Núcleo do Stackflow.

Subpacotes:
    - config       → configuração do engine
    - stack        → modelo de stacks e contexto de execução
    - engine       → validação, planejamento e execução
    - traceability → Run Manifest

O núcleo não depende da CLI nem de providers concretos.
"""
