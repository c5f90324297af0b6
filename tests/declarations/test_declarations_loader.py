# tests/declarations/test_declarations_loader.py
"""
Testes do loader de declarações.

Os testes asseguram que:
- o documento YAML de referência produz as mesmas definições e bindings
  que o grafo construído em Python
- formas abreviadas (tipo como string, output como expressão, literal direto)
  são aceitas
- overrides `Stack.param=valor` substituem bindings do parâmetro
- documentos malformados e grafos conflitantes levantam DeclarationError

Limites explícitos:
    - Referências quebradas e ciclos são responsabilidade do Graph Builder
"""

import pytest

from stackflow.core.engine.graph import build_graph
from stackflow.core.exceptions import DeclarationError
from stackflow.core.stack.binding import ParameterBinding
from stackflow.core.stack.types import TypeTag
from stackflow.declarations import apply_overrides, load_declarations, parse_document, parse_overrides

from stack_builders import three_tier_bindings, three_tier_definitions


def _edges(bindings):
    return [(b.consumer, b.parameter, str(b.source) if b.source else None, b.value) for b in bindings]


def test_yaml_matches_python_three_tier(declarations_file):
    decls = load_declarations([declarations_file])

    assert decls.graph_id == "webapp"
    assert list(decls.definitions) == three_tier_definitions()
    assert _edges(decls.bindings) == _edges(three_tier_bindings())
    assert decls.sources == (str(declarations_file),)
    assert all(b.origin == str(declarations_file) for b in decls.bindings)

    graph = build_graph(decls.definitions, decls.bindings)
    assert graph.topological_order() == ["network", "compute", "database"]


def test_source_hash_tracks_content(tmp_path, three_tier_yaml):
    a = tmp_path / "a.yaml"
    b = tmp_path / "b.yaml"
    a.write_text(three_tier_yaml, encoding="utf-8")
    b.write_text(three_tier_yaml.replace("t3.micro", "m5.large"), encoding="utf-8")

    assert load_declarations([a]).source_hash == load_declarations([a]).source_hash
    assert load_declarations([a]).source_hash != load_declarations([b]).source_hash


def test_shorthand_forms():
    graph_id, defs, binds = parse_document(
        {
            "stacks": {
                "app": {
                    "parameters": {"size": "integer", "name": {"type": "string", "required": False}},
                    "resources": {"bucket": {"kind": "storage.bucket"}},
                    "outputs": {"bucketId": "bucket.id"},
                    "bindings": {"size": 3},
                }
            },
            "bindings": [{"consumer": "app.name", "value": "demo"}],
        }
    )
    app = defs[0]
    assert graph_id is None
    assert app.parameter("size").type is TypeTag.INTEGER
    assert app.parameter("name").required is False
    assert app.resource("bucket").config == {}
    assert app.output("bucketId").type is TypeTag.ANY
    assert [(b.parameter, b.value) for b in binds] == [("size", 3), ("name", "demo")]


def test_multiple_files_are_concatenated(tmp_path):
    first = tmp_path / "net.yaml"
    second = tmp_path / "app.json"
    first.write_text(
        "graph: g\nstacks:\n  net:\n    resources: {vpc: {kind: network.vpc}}\n    outputs: {vpcId: vpc.id}\n",
        encoding="utf-8",
    )
    second.write_text(
        '{"stacks": {"app": {"parameters": {"vpc": "any"}, "bindings": {"vpc": {"output": "net.vpcId"}}}}}',
        encoding="utf-8",
    )
    decls = load_declarations([first, second])
    assert decls.graph_id == "g"
    assert [d.id for d in decls.definitions] == ["net", "app"]
    assert str(decls.bindings[0].source) == "net.vpcId"


def test_conflicting_graph_ids_are_rejected(tmp_path):
    a = tmp_path / "a.yaml"
    b = tmp_path / "b.yaml"
    a.write_text("graph: one\nstacks: {}\n", encoding="utf-8")
    b.write_text("graph: two\nstacks: {}\n", encoding="utf-8")
    with pytest.raises(DeclarationError):
        load_declarations([a, b])


@pytest.mark.parametrize(
    "document",
    [
        {"stacks": {}, "extra": 1},
        {"graph": 3},
        {"stacks": ["a"]},
        {"stacks": {"a": {"resourcez": {}}}},
        {"stacks": {"a": {"parameters": {"p": "text"}}}},
        {"stacks": {"a": {"resources": {"r": {"config": {}}}}}},
        {"stacks": {"a": {"outputs": {"o": {"type": "string"}}}}},
        {"stacks": {"bad id": {}}},
        {"stacks": {"a": {"bindings": {"p": {"output": "no-dot"}}}}},
        {"bindings": {"consumer": "a.p"}},
        {"bindings": [{"consumer": "a.p"}]},
        {"bindings": [{"consumer": "a.p", "value": 1, "output": "b.o"}]},
        {"bindings": [{"consumer": "ap", "value": 1}]},
    ],
)
def test_malformed_documents(document):
    with pytest.raises(DeclarationError):
        parse_document(document, source="test.yaml")


def test_missing_and_invalid_files(tmp_path):
    with pytest.raises(DeclarationError):
        load_declarations([])
    with pytest.raises(DeclarationError):
        load_declarations([tmp_path / "absent.yaml"])
    broken = tmp_path / "broken.yaml"
    broken.write_text("stacks: [unclosed\n", encoding="utf-8")
    with pytest.raises(DeclarationError):
        load_declarations([broken])
    listed = tmp_path / "list.yaml"
    listed.write_text("- a\n", encoding="utf-8")
    with pytest.raises(DeclarationError):
        load_declarations([listed])


def test_parse_overrides_uses_yaml_scalars():
    overrides = parse_overrides(["compute.instanceType=m5.large", "db.port=5432", "db.public=true", "db.note="])
    assert [(o.consumer, o.parameter, o.value) for o in overrides] == [
        ("compute", "instanceType", "m5.large"),
        ("db", "port", 5432),
        ("db", "public", True),
        ("db", "note", ""),
    ]
    assert all(o.origin == "override" for o in overrides)


@pytest.mark.parametrize("item", ["compute.instanceType", "instanceType=x", "a.b=[unclosed"])
def test_invalid_overrides(item):
    with pytest.raises(DeclarationError):
        parse_overrides([item])


def test_apply_overrides_replaces_existing_binding():
    bindings = three_tier_bindings()
    overrides = [ParameterBinding.literal("compute", "subnetId", "subnet-fixed", origin="override")]
    merged = apply_overrides(bindings, overrides)

    compute = [b for b in merged if b.consumer == "compute"]
    assert len(compute) == 1
    assert compute[0].is_literal and compute[0].value == "subnet-fixed"
    assert len(merged) == len(bindings)
