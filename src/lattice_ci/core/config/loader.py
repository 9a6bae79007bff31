# src/lattice_ci/core/config/loader.py
"""
Loader canônico de configuração do Lattice CI.

Este módulo é responsável por carregar e validar estruturalmente as duas
entradas declarativas do Lattice CI:

    - a configuração do runner (concorrência, timeouts, retry de executores,
      diretório de estado), resolvida a partir de defaults embutidos,
      um arquivo de defaults opcional e um arquivo local de overrides opcional
    - o documento de pipeline (`.gitlab-ci.yml`-like), carregado como dict
      e entregue ao schema

Responsabilidades do módulo:
    - Carregar arquivos em YAML ou JSON
    - Validar requisitos estruturais mínimos (tipo raiz)
    - Resolver a configuração final do runner via deep-merge determinístico

Princípios fundamentais:
    - Configuração é declarativa e explícita
    - Erros estruturais são tratados como falhas fatais
    - A mesma entrada sempre produz a mesma configuração final

Limites explícitos:
    - Não valida semântica do documento de pipeline (ver schema)
    - Não interage com Engine ou Scheduler
"""

from copy import deepcopy
from pathlib import Path
from typing import Any, Dict, Optional, Union
import json

import yaml  # PyYAML

from .merge import deep_merge
from .errors import (
    ConfigFileNotFoundError,
    InvalidConfigRootTypeError,
    UnsupportedConfigFormatError,
)


DEFAULT_RUNNER_CONFIG: Dict[str, Any] = {
    "engine": {
        "max_concurrency": 4,
        "default_timeout": 3600.0,
        "executor_wait_seconds": 30.0,
        "poll_interval": 0.05,
    },
    "executor": {
        "retry_attempts": 3,
        "retry_backoff": 0.5,
        "shell": "/bin/sh",
    },
    "store": {
        "root": ".lattice",
    },
}


def _load_file(path: Path) -> Dict[str, Any]:
    """
    Carrega um arquivo de configuração e valida sua estrutura básica.

    Formatos suportados (v1):
        - YAML (.yaml, .yml)
        - JSON (.json)

    Decisões arquiteturais:
        - O arquivo deve existir no momento do carregamento
        - O conteúdo raiz deve ser um dicionário (`dict`)
        - Arquivos vazios são interpretados como dicionários vazios

    Args:
        path (Path): Caminho para o arquivo de configuração.

    Returns:
        Dict[str, Any]: Conteúdo do arquivo carregado como dicionário.

    Raises:
        ConfigFileNotFoundError: Se o arquivo não existir.
        UnsupportedConfigFormatError: Se o formato do arquivo não for suportado.
        InvalidConfigRootTypeError: Se o conteúdo raiz não for um dicionário.
    """
    if not path.exists():
        raise ConfigFileNotFoundError(f"Arquivo de configuração não encontrado: {path}")

    suffix = path.suffix.lower()

    if suffix in {".yaml", ".yml"}:
        with path.open("r", encoding="utf-8") as f:
            data = yaml.safe_load(f)

    elif suffix == ".json":
        with path.open("r", encoding="utf-8") as f:
            data = json.load(f)

    else:
        raise UnsupportedConfigFormatError(f"Formato não suportado: {path.suffix}")

    if data is None:
        data = {}

    if not isinstance(data, dict):
        raise InvalidConfigRootTypeError(
            f"Config root deve ser dict, recebido: {type(data).__name__}"
        )

    return data


def load_config(
    *,
    defaults_path: Optional[str] = None,
    local_path: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Carrega e resolve a configuração efetiva do runner.

    Política de resolução:
        - A base é sempre `DEFAULT_RUNNER_CONFIG`
        - O arquivo de defaults, quando informado, é obrigatório e se aplica
          sobre a base
        - O arquivo local é opcional; quando existe, tem prioridade máxima
        - A resolução utiliza `deep_merge` com política determinística

    Args:
        defaults_path (Optional[str]): Caminho para o arquivo de defaults.
        local_path (Optional[str]): Caminho opcional para overrides locais.

    Returns:
        Dict[str, Any]: Configuração final resolvida do runner.

    Raises:
        ConfigFileNotFoundError: Se o arquivo de defaults não existir.
        UnsupportedConfigFormatError: Se o formato do arquivo não for suportado.
        InvalidConfigRootTypeError: Se o conteúdo não for um dicionário.
        ConfigTypeConflictError: Se ocorrer conflito estrutural durante o merge.
    """
    effective = deepcopy(DEFAULT_RUNNER_CONFIG)

    if defaults_path is not None:
        effective = deep_merge(effective, _load_file(Path(defaults_path)))

    if local_path is not None:
        local_file = Path(local_path)
        if local_file.exists():
            effective = deep_merge(effective, _load_file(local_file))

    return effective


def load_pipeline_document(path: Union[str, Path]) -> Dict[str, Any]:
    """
    Carrega o documento de pipeline (YAML ou JSON) como dicionário puro.

    Raises:
        ConfigFileNotFoundError: Se o documento não existir.
        UnsupportedConfigFormatError: Se o formato não for suportado.
        InvalidConfigRootTypeError: Se o conteúdo raiz não for um dicionário.
    """
    return _load_file(Path(path))


def parse_pipeline_text(text: str) -> Dict[str, Any]:
    """Interpreta um documento de pipeline a partir de texto YAML (ou JSON)."""
    data = yaml.safe_load(text)
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise InvalidConfigRootTypeError(
            f"Config root deve ser dict, recebido: {type(data).__name__}"
        )
    return data
