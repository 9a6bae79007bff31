# src/lattice_ci/core/pipeline/variables.py
"""
Expansão de variáveis e construção do ambiente de Jobs.

Política de expansão (v1):
    - `$NAME` e `${NAME}` são substituídos pelo valor corrente
    - `$$` produz um `$` literal
    - Variáveis indefinidas expandem para string vazia

Precedência do ambiente de um Job (menor → maior):
    predefinidas → globais → Job (já mescladas com templates)
    → variáveis do trigger → variáveis injetadas por dotenv
"""

from __future__ import annotations

import re
from typing import Dict, Mapping, Optional

from .context import TriggerContext
from .types import JobSpec


_VAR_PATTERN = re.compile(r"\$\$|\$\{([A-Za-z_][A-Za-z0-9_]*)\}|\$([A-Za-z_][A-Za-z0-9_]*)")


def expand_variables(template: str, env: Mapping[str, str]) -> str:
    """Substitui referências `$VAR`/`${VAR}` em `template` usando `env`."""

    def _sub(match: "re.Match[str]") -> str:
        if match.group(0) == "$$":
            return "$"
        name = match.group(1) or match.group(2)
        return str(env.get(name, ""))

    return _VAR_PATTERN.sub(_sub, template)


def _expand_layer(layer: Mapping[str, str], env: Dict[str, str]) -> None:
    # valores podem referenciar variáveis de camadas anteriores e da própria camada
    for key, value in layer.items():
        env[key] = expand_variables(str(value), env)


def build_job_environment(
    job: JobSpec,
    *,
    trigger: TriggerContext,
    global_variables: Mapping[str, str],
    injected: Optional[Mapping[str, str]] = None,
) -> Dict[str, str]:
    """
    Constrói o ambiente de variáveis de um Job.

    Args:
        job: Job resolvido.
        trigger: contexto imutável do trigger.
        global_variables: variáveis globais do documento.
        injected: variáveis vindas de artefatos dotenv das dependências.

    Returns:
        Dict[str, str]: ambiente final entregue ao executor.
    """
    env: Dict[str, str] = dict(trigger.predefined_variables())
    env["CI_JOB_NAME"] = job.name
    env["CI_JOB_STAGE"] = job.stage
    if job.environment:
        env["CI_ENVIRONMENT_NAME"] = job.environment

    _expand_layer(global_variables, env)
    _expand_layer(job.variables, env)
    env.update({k: str(v) for k, v in trigger.variables.items()})
    if injected:
        env.update({k: str(v) for k, v in injected.items()})
    return env


def rule_variables(
    trigger: TriggerContext,
    global_variables: Mapping[str, str],
    job_variables: Optional[Mapping[str, str]] = None,
) -> Dict[str, str]:
    """Variáveis visíveis às expressões `if` de rules (sem dotenv)."""
    env: Dict[str, str] = dict(trigger.predefined_variables())
    _expand_layer(global_variables, env)
    if job_variables:
        _expand_layer(job_variables, env)
    env.update({k: str(v) for k, v in trigger.variables.items()})
    return env
