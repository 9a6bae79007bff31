"""
Lattice CI — Canonical Exceptions (v1)

Este módulo define exceções tipadas de **execução** do Lattice CI.

Objetivo:
- Permitir que Scheduler, stores e executores levantem exceções semânticas
- Facilitar o mapeamento determinístico para LatticeErrorPayload
- Separar falhas de execução (Job, executor, store) de erros de configuração

Regras:
- Erros de configuração vivem em `core.config.errors` (fatais, pré-execução).
- Exceções devem carregar apenas dados estruturados (serializáveis).
- Apenas `ExecutorTransientError` é elegível a retry (bounded, com backoff).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Optional


@dataclass(eq=False)
class LatticeException(Exception):
    """Base class para exceções de execução do Lattice CI.

    Importante:
    - Sempre carregar dados estruturados em `details`
    - Não embedar stack trace em payloads de erro
    - Mensagem deve ser curta e humana
    """

    message: str
    details: Dict[str, Any] = field(default_factory=dict)
    hint: Optional[str] = None

    def __str__(self) -> str:  # pragma: no cover
        return self.message


# ---------------------------------------------------------------------------
# Jobs
# ---------------------------------------------------------------------------

@dataclass(eq=False)
class JobFailure(LatticeException):
    """Job terminou com exit code diferente de zero."""


@dataclass(eq=False)
class JobTimeout(JobFailure):
    """Job excedeu a duração máxima (falha forçada)."""


# ---------------------------------------------------------------------------
# Executores
# ---------------------------------------------------------------------------

@dataclass(eq=False)
class ExecutorUnavailable(LatticeException):
    """Nenhum executor compatível com as tags do Job está disponível."""


@dataclass(eq=False)
class ExecutorTransientError(LatticeException):
    """Falha transitória de conexão com o executor (elegível a retry)."""


# ---------------------------------------------------------------------------
# Stores
# ---------------------------------------------------------------------------

@dataclass(eq=False)
class StoreIOError(LatticeException):
    """Falha de I/O no CacheStore, ArtifactStore ou HistoryStore."""


@dataclass(eq=False)
class ArtifactNotFound(LatticeException):
    """ArtifactSet de uma dependência declarada não existe no store."""
