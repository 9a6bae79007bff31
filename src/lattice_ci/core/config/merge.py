# src/lattice_ci/core/config/merge.py
"""
Políticas canônicas de merge do Lattice CI.

Este módulo implementa as duas políticas de merge utilizadas pelo
Lattice CI, deliberadamente distintas e explicitamente documentadas:

1. `deep_merge` — configuração do runner (defaults + overrides locais):
    - dict → merge recursivo por chave
    - list → sobrescrita total (sem merge elemento a elemento)
    - escalar → sobrescrita direta
    - conflito de tipos → erro estrutural explícito

2. `merge_extends` — herança de Jobs via `extends`:
    - o merge é **raso**: cada chave declarada pelo filho substitui
      integralmente o valor herdado
    - escalares → last-write-wins
    - listas → sobrescrita total (`tags: [a, b]` + `tags: [c]` = `[c]`)
    - mapas (ex.: `cache`, `artifacts`) → sobrescrita total
    - exceção documentada: `variables` é aditivo (merge por chave)

Princípios fundamentais:
    - O merge é determinístico e puramente funcional
    - Nenhum input é mutado durante o processo
    - Não existem heurísticas implícitas por campo além das documentadas

Limites explícitos:
    - Não carrega arquivos
    - Não valida semântica de Jobs
    - Não resolve a cadeia de `extends` (ver core.engine.graph)
"""

from copy import deepcopy
from typing import Any, Dict

from .errors import ConfigTypeConflictError


# Campos de Job cujo merge em `extends` é aditivo por chave.
ADDITIVE_JOB_FIELDS = frozenset({"variables"})


def deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """
    Realiza um deep-merge determinístico entre dois dicionários de configuração.

    Política de merge (v1):
        - dict + dict → merge recursivo por chave
        - list        → sobrescrita total (sem merge elemento a elemento)
        - escalar     → sobrescrita direta pelo override
        - conflito de tipos → erro estrutural explícito

    Invariantes:
        - A estrutura retornada é sempre um novo dicionário
        - Chaves não presentes no override são preservadas da base
        - O mesmo par (base, override) sempre produz o mesmo resultado

    Args:
        base (Dict[str, Any]): Configuração base (ex.: defaults do runner).
        override (Dict[str, Any]): Overrides explícitos da configuração.

    Returns:
        Dict[str, Any]: Nova configuração resultante do deep-merge.

    Raises:
        ConfigTypeConflictError: Se ocorrer conflito de tipo entre base e override.
    """

    if not isinstance(base, dict) or not isinstance(override, dict):
        raise ConfigTypeConflictError(
            f"Deep-merge requer dicts no nível raiz, recebido: "
            f"{type(base).__name__} vs {type(override).__name__}"
        )

    result: Dict[str, Any] = deepcopy(base)

    for key, override_value in override.items():
        if key not in result:
            result[key] = deepcopy(override_value)
            continue

        base_value = result[key]

        # dict -> merge recursivo
        if isinstance(base_value, dict) and isinstance(override_value, dict):
            result[key] = deep_merge(base_value, override_value)
            continue

        # list -> sobrescrita total
        if isinstance(override_value, list):
            result[key] = deepcopy(override_value)
            continue

        # None, int e float são intercambiáveis em valores numéricos opcionais
        if base_value is None or override_value is None or (
            isinstance(base_value, (int, float)) and isinstance(override_value, (int, float))
            and not isinstance(base_value, bool) and not isinstance(override_value, bool)
        ):
            result[key] = deepcopy(override_value)
            continue

        # conflito de tipo
        if type(base_value) is not type(override_value):
            raise ConfigTypeConflictError(
                f"Conflito de tipo na chave '{key}': "
                f"{type(base_value).__name__} vs {type(override_value).__name__}"
            )

        # escalar -> sobrescrita
        result[key] = deepcopy(override_value)

    return result


def merge_extends(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """
    Aplica os atributos declarados de um Job sobre os atributos herdados.

    Política de `extends` (v1):
        - cada chave presente em `override` substitui o valor de `base`
        - listas e mapas são substituídos integralmente
        - `variables` é mesclado por chave (o override vence por chave)
        - a chave `extends` nunca é herdada

    Exemplo:
        base:     {"tags": ["a", "b"], "variables": {"X": "1"}}
        override: {"tags": ["c"], "variables": {"Y": "2"}}
        result:   {"tags": ["c"], "variables": {"X": "1", "Y": "2"}}

    Args:
        base (Dict[str, Any]): Atributos resolvidos do ancestral.
        override (Dict[str, Any]): Atributos declarados pelo descendente.

    Returns:
        Dict[str, Any]: Novo dicionário de atributos resolvidos.
    """
    result: Dict[str, Any] = {k: deepcopy(v) for k, v in base.items() if k != "extends"}

    for key, value in override.items():
        if key == "extends":
            continue
        if key in ADDITIVE_JOB_FIELDS and isinstance(result.get(key), dict) and isinstance(value, dict):
            merged = dict(result[key])
            merged.update(deepcopy(value))
            result[key] = merged
            continue
        result[key] = deepcopy(value)

    return result
