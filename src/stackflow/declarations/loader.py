# src/stackflow/declarations/loader.py
"""
Loader de declarações de stacks (YAML/JSON).

Um documento de declaração descreve stacks e bindings:

    graph: webapp
    stacks:
      network:
        parameters: {cidr: {type: string, default: 10.0.0.0/16}}
        resources:
          vpc: {kind: network.vpc, config: {cidr: "${params.cidr}"}}
        outputs: {vpc_id: {type: string, value: vpc.id}}
      compute:
        parameters: {vpc_id: string}
        bindings: {vpc_id: {output: network.vpc_id}}
    bindings:
      - {consumer: compute.vpc_id, output: network.vpc_id}

Decisões arquiteturais:
    - Vários documentos são concatenados; duplicidades e referências
      quebradas ficam para o Graph Builder, que reporta todas de uma vez
    - A ordem de chaves YAML define a ordem de parâmetros e recursos
    - Overrides (`Stack.param=valor`) substituem bindings do parâmetro por
      literais; o valor é interpretado como escalar YAML

Limites explícitos:
    - Apenas a forma do documento é validada aqui (`DeclarationError`)
    - Não resolve referências nem tipos
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

import yaml  # PyYAML

from stackflow.core.config.errors import ConfigError
from stackflow.core.config.hashing import canonical_hash
from stackflow.core.config.loader import read_mapping_file
from stackflow.core.exceptions import DeclarationError
from stackflow.core.stack.binding import ParameterBinding
from stackflow.core.stack.definition import (
    NO_DEFAULT,
    OutputSpec,
    ParameterSpec,
    ResourceSpec,
    StackDefinition,
)
from stackflow.core.stack.types import TypeTag


_DOC_KEYS = {"graph", "stacks", "bindings"}
_STACK_KEYS = {"description", "parameters", "resources", "outputs", "bindings"}


@dataclass(frozen=True)
class Declarations:
    """Resultado do carregamento: definições, bindings e hash das fontes."""

    graph_id: Optional[str]
    definitions: Tuple[StackDefinition, ...]
    bindings: Tuple[ParameterBinding, ...]
    source_hash: str
    sources: Tuple[str, ...] = ()

    def with_bindings(self, bindings: Iterable[ParameterBinding]) -> "Declarations":
        return Declarations(
            graph_id=self.graph_id,
            definitions=self.definitions,
            bindings=tuple(bindings),
            source_hash=self.source_hash,
            sources=self.sources,
        )


def _fail(message: str, *, source: str, **details: Any) -> DeclarationError:
    return DeclarationError(message=message, details={"source": source, **details})


def _mapping(value: Any, *, what: str, source: str) -> Dict[str, Any]:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise _fail(f"{what} deve ser um mapeamento", source=source, found=type(value).__name__)
    return value


def _type_tag(raw: Any, *, where: str, source: str) -> TypeTag:
    try:
        return TypeTag(str(raw))
    except ValueError:
        raise _fail(
            f"Tipo desconhecido em {where}: {raw!r}",
            source=source,
            allowed=[t.value for t in TypeTag],
        ) from None


def _parse_parameter(stack_id: str, name: str, raw: Any, source: str) -> ParameterSpec:
    if isinstance(raw, str):
        return ParameterSpec(name=name, type=_type_tag(raw, where=f"{stack_id}.{name}", source=source))
    decl = _mapping(raw, what=f"parâmetro {stack_id}.{name}", source=source)
    return ParameterSpec(
        name=name,
        type=_type_tag(decl.get("type", "string"), where=f"{stack_id}.{name}", source=source),
        required=bool(decl.get("required", True)),
        default=decl["default"] if "default" in decl else NO_DEFAULT,
    )


def _parse_resource(stack_id: str, name: str, raw: Any, source: str) -> ResourceSpec:
    decl = _mapping(raw, what=f"recurso {stack_id}.{name}", source=source)
    kind = decl.get("kind")
    if not isinstance(kind, str) or not kind:
        raise _fail(f"Recurso sem kind: {stack_id}.{name}", source=source)
    return ResourceSpec(
        name=name,
        kind=kind,
        config=_mapping(decl.get("config"), what=f"config de {stack_id}.{name}", source=source),
    )


def _parse_output(stack_id: str, name: str, raw: Any, source: str) -> OutputSpec:
    if isinstance(raw, str):
        return OutputSpec(name=name, type=TypeTag.ANY, value=raw)
    decl = _mapping(raw, what=f"output {stack_id}.{name}", source=source)
    if not isinstance(decl.get("value"), str):
        raise _fail(f"Output sem expressão: {stack_id}.{name}", source=source)
    return OutputSpec(
        name=name,
        type=_type_tag(decl.get("type", "any"), where=f"{stack_id}.{name}", source=source),
        value=decl["value"],
    )


def _parse_binding(consumer: str, parameter: str, raw: Any, source: str) -> ParameterBinding:
    try:
        if isinstance(raw, dict) and set(raw) == {"output"}:
            return ParameterBinding.from_output(consumer, parameter, raw["output"], origin=source)
    except ValueError as exc:
        raise _fail(str(exc), source=source, binding=f"{consumer}.{parameter}") from exc
    if isinstance(raw, dict) and set(raw) == {"value"}:
        return ParameterBinding.literal(consumer, parameter, raw["value"], origin=source)
    return ParameterBinding.literal(consumer, parameter, raw, origin=source)


def _split_target(target: Any, *, source: str) -> Tuple[str, str]:
    stack_id, sep, parameter = str(target).rpartition(".")
    if not sep or not stack_id or not parameter:
        raise _fail(f"Alvo de binding inválido: {target!r} (use '<stack>.<parâmetro>')", source=source)
    return stack_id, parameter


def parse_document(
    data: Mapping[str, Any],
    *,
    source: str = "<memory>",
) -> Tuple[Optional[str], List[StackDefinition], List[ParameterBinding]]:
    """
    Converte um documento já carregado em definições e bindings.

    Returns:
        Tuple: (graph_id declarado ou None, definições, bindings).

    Raises:
        DeclarationError: Para documentos malformados.
    """
    unknown = sorted(set(data) - _DOC_KEYS)
    if unknown:
        raise _fail("Chaves desconhecidas no documento", source=source, keys=unknown)

    graph_id = data.get("graph")
    if graph_id is not None and not isinstance(graph_id, str):
        raise _fail("`graph` deve ser uma string", source=source)

    definitions: List[StackDefinition] = []
    bindings: List[ParameterBinding] = []

    for stack_id, body in _mapping(data.get("stacks"), what="`stacks`", source=source).items():
        body = _mapping(body, what=f"stack {stack_id}", source=source)
        extra = sorted(set(body) - _STACK_KEYS)
        if extra:
            raise _fail(f"Chaves desconhecidas no stack {stack_id}", source=source, keys=extra)
        sid = str(stack_id)

        try:
            definitions.append(
                StackDefinition(
                    id=sid,
                    description=str(body.get("description", "") or ""),
                    parameters=[
                        _parse_parameter(sid, str(n), raw, source)
                        for n, raw in _mapping(body.get("parameters"), what=f"parâmetros de {sid}", source=source).items()
                    ],
                    resources=[
                        _parse_resource(sid, str(n), raw, source)
                        for n, raw in _mapping(body.get("resources"), what=f"recursos de {sid}", source=source).items()
                    ],
                    outputs=[
                        _parse_output(sid, str(n), raw, source)
                        for n, raw in _mapping(body.get("outputs"), what=f"outputs de {sid}", source=source).items()
                    ],
                )
            )
        except ValueError as exc:
            raise _fail(str(exc), source=source, stack_id=sid) from exc

        for param, raw in _mapping(body.get("bindings"), what=f"bindings de {sid}", source=source).items():
            bindings.append(_parse_binding(sid, str(param), raw, source))

    raw_bindings = data.get("bindings") or []
    if not isinstance(raw_bindings, list):
        raise _fail("`bindings` deve ser uma lista", source=source)
    for item in raw_bindings:
        item = _mapping(item, what="binding", source=source)
        if "consumer" not in item or ("output" in item) == ("value" in item):
            raise _fail("Binding deve ter `consumer` e exatamente um de `output`/`value`", source=source, binding=item)
        consumer, parameter = _split_target(item["consumer"], source=source)
        raw = {"output": item["output"]} if "output" in item else {"value": item["value"]}
        bindings.append(_parse_binding(consumer, parameter, raw, source))

    return graph_id, definitions, bindings


def load_declarations(paths: Sequence[Union[str, Path]]) -> Declarations:
    """
    Carrega e concatena um ou mais arquivos de declaração.

    Raises:
        DeclarationError: Arquivo ausente, formato não suportado, documento
            malformado ou ids de grafo conflitantes.
    """
    if not paths:
        raise DeclarationError(message="Nenhum arquivo de declaração informado", details={})

    graph_id: Optional[str] = None
    definitions: List[StackDefinition] = []
    bindings: List[ParameterBinding] = []
    documents: List[Dict[str, Any]] = []
    sources: List[str] = []

    for p in paths:
        path = Path(p)
        source = str(path)
        try:
            data = read_mapping_file(path)
        except ConfigError as exc:
            raise _fail(str(exc), source=source) from exc
        except yaml.YAMLError as exc:
            raise _fail(f"YAML inválido: {exc}", source=source) from exc

        doc_graph, defs, binds = parse_document(data, source=source)
        if doc_graph is not None:
            if graph_id is not None and doc_graph != graph_id:
                raise _fail(
                    f"Documentos declaram grafos diferentes: {graph_id!r} e {doc_graph!r}",
                    source=source,
                )
            graph_id = doc_graph

        definitions.extend(defs)
        bindings.extend(binds)
        documents.append(data)
        sources.append(source)

    return Declarations(
        graph_id=graph_id,
        definitions=tuple(definitions),
        bindings=tuple(bindings),
        source_hash=canonical_hash(documents),
        sources=tuple(sources),
    )


def parse_overrides(items: Iterable[str]) -> List[ParameterBinding]:
    """Converte `Stack.param=valor` em bindings literais de origem `override`."""
    overrides: List[ParameterBinding] = []
    for item in items:
        target, sep, raw = str(item).partition("=")
        if not sep:
            raise _fail(f"Override inválido: {item!r} (use 'Stack.param=valor')", source="override")
        consumer, parameter = _split_target(target.strip(), source="override")
        try:
            value = yaml.safe_load(raw) if raw.strip() else ""
        except yaml.YAMLError as exc:
            raise _fail(f"Valor de override inválido: {raw!r}", source="override") from exc
        overrides.append(ParameterBinding.literal(consumer, parameter, value, origin="override"))
    return overrides


def apply_overrides(
    bindings: Iterable[ParameterBinding],
    overrides: Iterable[ParameterBinding],
) -> List[ParameterBinding]:
    """Remove bindings dos parâmetros sobrescritos e acrescenta os overrides."""
    overrides = list(overrides)
    targets = {(o.consumer, o.parameter) for o in overrides}
    kept = [b for b in bindings if (b.consumer, b.parameter) not in targets]
    return kept + overrides


__all__ = [
    "Declarations",
    "apply_overrides",
    "load_declarations",
    "parse_document",
    "parse_overrides",
]
