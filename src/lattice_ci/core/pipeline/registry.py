# src/lattice_ci/core/pipeline/registry.py
"""
Registro estrutural de definições de Jobs do pipeline.

Este módulo define o `JobRegistry`, responsável por registrar definições
de Jobs e Templates e validar a integridade estrutural dos nomes antes
de qualquer resolução de `extends` ou construção de grafo.

O registry atua como uma camada de proteção antecipada, garantindo que:
    - cada definição possua um nome válido
    - nenhum Job utilize um nome reservado
    - não existam nomes duplicados
    - a ordem de declaração seja preservada explicitamente

Decisões arquiteturais:
    - A validação ocorre antes do Graph Builder
    - Erros estruturais são tratados como falhas fatais (ConfigError)
    - Templates são distinguidos por flag explícita, não por tipo separado

Invariantes:
    - Cada definição registrada possui nome único
    - A lista de definições reflete exatamente a ordem de registro
    - Nenhum nome reservado é aceito

Limites explícitos:
    - Não resolve `extends`
    - Não valida `needs`
    - Não avalia rules
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List

from lattice_ci.core.config.errors import ConfigError, ReservedJobNameError

from .types import JobDefinition


# Palavras-chave do documento que nunca podem nomear um Job.
RESERVED_JOB_NAMES = frozenset(
    {
        "image",
        "services",
        "stages",
        "types",
        "before_script",
        "after_script",
        "variables",
        "cache",
        "include",
        "workflow",
        "default",
        "pages:deploy",
    }
)


class DuplicateJobNameError(ConfigError):
    """
    Exceção levantada quando dois Jobs (ou Templates) compartilham o mesmo nome.

    Decisões arquiteturais:
        - Nomes de Jobs são identificadores únicos do pipeline
        - A duplicidade é detectada no registro, antes da execução
    """


@dataclass
class JobRegistry:
    """
    Registro canônico de definições de Jobs e Templates.

    Decisões arquiteturais:
        - A validação ocorre antes do Graph Builder
        - A ordem de inserção é preservada separadamente
        - Nomes reservados são rejeitados com ReservedJobNameError

    Invariantes:
        - Cada nome é único no registry
        - `list()` reflete exatamente a ordem de registro
    """

    _definitions: Dict[str, JobDefinition] = field(default_factory=dict, init=False, repr=False)
    _order: List[str] = field(default_factory=list, init=False, repr=False)

    def add(self, definition: JobDefinition) -> None:
        name = getattr(definition, "name", None)
        if not isinstance(name, str) or not name.strip():
            raise ConfigError("job name must be a non-empty string")

        if name in RESERVED_JOB_NAMES:
            raise ReservedJobNameError(f"Job name '{name}' is a reserved keyword")

        if name in self._definitions:
            raise DuplicateJobNameError(f"Duplicate job name: {name}")

        self._definitions[name] = definition
        self._order.append(name)

    def get(self, name: str) -> JobDefinition:
        return self._definitions[name]

    def __contains__(self, name: object) -> bool:
        return name in self._definitions

    def list(self) -> List[JobDefinition]:
        return [self._definitions[n] for n in self._order]

    def jobs(self) -> List[JobDefinition]:
        return [d for d in self.list() if not d.is_template]
