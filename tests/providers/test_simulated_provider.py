# tests/providers/test_simulated_provider.py
"""
Testes do provider simulado e da carga de provider por factory.

Invariantes verificadas:
    - a mesma configuração produz o mesmo fingerprint e o mesmo `id`
    - atributos ecoam a configuração
    - falhas injetadas por kind levantam erro na chamada correspondente
    - `load_provider` valida o formato `modulo:atributo` e o protocolo
"""

import pytest

from stackflow.providers import (
    ResourceProvider,
    SimulatedProvider,
    SimulatedProviderError,
    load_provider,
)


def test_apply_is_deterministic():
    p = SimulatedProvider()
    a = p.apply("network.vpc", {"cidr": "10.0.0.0/16"}, None)
    b = p.apply("network.vpc", {"cidr": "10.0.0.0/16"}, a.fingerprint)

    assert a.fingerprint == b.fingerprint
    assert a.attributes["id"] == f"network-vpc-{a.fingerprint[:12]}"
    assert a.attributes["cidr"] == "10.0.0.0/16"
    assert a.attributes["kind"] == "network.vpc"
    assert p.calls == [("apply", "network.vpc", None), ("apply", "network.vpc", a.fingerprint)]


def test_config_change_changes_fingerprint():
    p = SimulatedProvider()
    assert p.apply("k", {"x": 1}, None).fingerprint != p.apply("k", {"x": 2}, None).fingerprint


def test_injected_failures():
    p = SimulatedProvider(fail_kinds=["compute.instance"], fail_destroy_kinds=["network.vpc"])
    with pytest.raises(SimulatedProviderError):
        p.apply("compute.instance", {}, None)
    with pytest.raises(SimulatedProviderError):
        p.destroy("network.vpc", "fp")
    p.destroy("network.subnet", "fp")
    assert [c[0] for c in p.calls] == ["apply", "destroy", "destroy"]


def test_load_provider_from_factory():
    p = load_provider("stackflow.providers.simulated:SimulatedProvider", {"fail_kinds": ["a"]})
    assert isinstance(p, SimulatedProvider)
    assert isinstance(p, ResourceProvider)
    assert p.fail_kinds == {"a"}


def test_load_provider_rejects_bad_factories():
    with pytest.raises(ValueError):
        load_provider("stackflow.providers.simulated")
    with pytest.raises(TypeError):
        load_provider("collections:OrderedDict")
