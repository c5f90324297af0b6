# src/stackflow/core/stack/expressions.py
"""
Referências e interpolação em declarações de stack.

Dois tipos de expressão existem:

    - Referências `${params.<nome>}` e `${resources.<recurso>.<atributo>}`
      dentro da configuração de recursos. Uma string composta apenas por uma
      referência recebe o valor bruto (preservando o tipo); referências
      embutidas em texto são convertidas com `str`.
    - Expressões de output `<recurso>.<atributo>[.<chave>...]`, avaliadas
      sobre os atributos devolvidos pelo provider.

Limites explícitos:
    - Não existem funções, operadores ou referências entre stacks aqui;
      dependências entre stacks passam exclusivamente por ParameterBinding.
"""

from __future__ import annotations

import re
from typing import Any, Dict, Iterator, List, Mapping, Tuple

from stackflow.core.exceptions import InvalidExpression


_REF = re.compile(r"\$\{([^}]*)\}")


def parse_reference(body: str) -> Tuple[str, ...]:
    """Divide o corpo de `${...}` em partes validadas (`params`/`resources`)."""
    parts = tuple(p.strip() for p in body.split("."))
    if any(not p for p in parts):
        raise InvalidExpression(message=f"Referência malformada: ${{{body}}}", details={"reference": body})
    if parts[0] == "params" and len(parts) == 2:
        return parts
    if parts[0] == "resources" and len(parts) >= 3:
        return parts
    raise InvalidExpression(
        message=f"Referência não suportada: ${{{body}}}",
        details={"reference": body},
        hint="Use ${params.<nome>} ou ${resources.<recurso>.<atributo>}",
    )


def iter_references(value: Any) -> Iterator[str]:
    """Percorre recursivamente `value` produzindo o corpo de cada `${...}`."""
    if isinstance(value, str):
        for m in _REF.finditer(value):
            yield m.group(1)
    elif isinstance(value, Mapping):
        for v in value.values():
            yield from iter_references(v)
    elif isinstance(value, (list, tuple)):
        for v in value:
            yield from iter_references(v)


def _lookup(parts: Tuple[str, ...], params: Mapping[str, Any], resources: Mapping[str, Mapping[str, Any]]) -> Any:
    if parts[0] == "params":
        if parts[1] not in params:
            raise InvalidExpression(message=f"Parâmetro não resolvido: {parts[1]}", details={"reference": ".".join(parts)})
        return params[parts[1]]
    attrs = resources.get(parts[1])
    if attrs is None:
        raise InvalidExpression(message=f"Recurso não resolvido: {parts[1]}", details={"reference": ".".join(parts)})
    return dig(attrs, parts[2:], expression=".".join(parts))


def dig(attrs: Mapping[str, Any], path: Tuple[str, ...], *, expression: str) -> Any:
    current: Any = attrs
    for key in path:
        if not isinstance(current, Mapping) or key not in current:
            raise InvalidExpression(
                message=f"Atributo ausente em '{expression}': {key}",
                details={"expression": expression, "missing": key},
            )
        current = current[key]
    return current


def interpolate(
    value: Any,
    params: Mapping[str, Any],
    resources: Mapping[str, Mapping[str, Any]],
) -> Any:
    """Resolve todas as referências `${...}` de `value`, devolvendo uma cópia."""
    if isinstance(value, str):
        whole = _REF.fullmatch(value)
        if whole is not None:
            return _lookup(parse_reference(whole.group(1)), params, resources)
        return _REF.sub(lambda m: str(_lookup(parse_reference(m.group(1)), params, resources)), value)
    if isinstance(value, Mapping):
        return {k: interpolate(v, params, resources) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [interpolate(v, params, resources) for v in value]
    return value


def parse_output_expression(expression: str) -> Tuple[str, Tuple[str, ...]]:
    parts: List[str] = [p.strip() for p in str(expression).split(".")]
    if len(parts) < 2 or any(not p for p in parts):
        raise InvalidExpression(
            message=f"Expressão de output malformada: {expression!r}",
            details={"expression": expression},
            hint="Use '<recurso>.<atributo>'",
        )
    return parts[0], tuple(parts[1:])


def evaluate_output(expression: str, resources: Dict[str, Mapping[str, Any]]) -> Any:
    resource, path = parse_output_expression(expression)
    if resource not in resources:
        raise InvalidExpression(
            message=f"Output referencia recurso inexistente: {resource}",
            details={"expression": expression},
        )
    return dig(resources[resource], path, expression=expression)
