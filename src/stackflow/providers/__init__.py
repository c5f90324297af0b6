# src/stackflow/providers/__init__.py
"""
Resource Provider Adapters.

    - base      → protocolo ResourceProvider, ApplyOutcome e carregamento por factory
    - simulated → provider determinístico para ensaios e testes
"""

from .base import ApplyOutcome, ResourceProvider, load_provider
from .simulated import SimulatedProvider, SimulatedProviderError

__all__ = [
    "ApplyOutcome",
    "ResourceProvider",
    "load_provider",
    "SimulatedProvider",
    "SimulatedProviderError",
]
