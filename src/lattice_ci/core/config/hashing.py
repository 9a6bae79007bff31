# src/lattice_ci/core/config/hashing.py
"""
Hashing canônico de configuração do Lattice CI.

Este módulo implementa a geração de hash determinístico de estruturas
de configuração (configuração do runner e documento de pipeline).

O hash gerado representa a **identidade estrutural** da entrada e é
utilizado para:
    - rastreabilidade de pipelines no histórico
    - associação entre registro de pipeline e documento executado

Política de hashing (v1):
    - Serialização JSON canônica (chaves ordenadas, separadores compactos)
    - Codificação UTF-8
    - Algoritmo SHA-256

Invariantes:
    - Estruturas equivalentes produzem o mesmo hash
    - O valor gerado é sempre uma string hexadecimal de 64 caracteres
"""


import json
import hashlib
from typing import Dict, Any


def compute_config_hash(config: Dict[str, Any]) -> str:
    """
    Gera um hash determinístico de uma configuração.

    Args:
        config (Dict[str, Any]): Configuração efetiva ou documento de pipeline.

    Returns:
        str: Hash SHA-256 hexadecimal da configuração.

    Raises:
        TypeError: Se o objeto fornecido não for um dicionário.
    """

    if not isinstance(config, dict):
        raise TypeError(
            f"Config para hashing deve ser dict, recebido: {type(config).__name__}"
        )

    canonical_json = json.dumps(
        config,
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
        default=str,
    )

    return hashlib.sha256(canonical_json.encode("utf-8")).hexdigest()
