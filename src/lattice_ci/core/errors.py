"""
Lattice CI — Canonical Error Structures (v1)

Este módulo define o padrão canônico de erros de execução do Lattice CI.
Falhas de Jobs são registradas no resultado do pipeline e no histórico,
e por isso devem ser:

- explícitas
- serializáveis
- rastreáveis
- acionáveis

Nenhuma decisão implícita é permitida.
"""

from __future__ import annotations

from dataclasses import dataclass, asdict
from typing import Any, Dict, Optional


# ---------------------------------------------------------------------------
# Payload canônico
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class LatticeErrorPayload:
    """
    Payload canônico de erro do Lattice CI.

    Campos:
    - type: código estável do erro (não é texto livre)
    - message: mensagem curta, humana e objetiva
    - details: dados estruturados relevantes para diagnóstico (job, stage, key)
    - hint: ação sugerida ao operador (onde corrigir)
    """

    type: str
    message: str
    details: Dict[str, Any]
    hint: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Retorna representação serializável do erro."""
        return asdict(self)


# ---------------------------------------------------------------------------
# Catálogo canônico de tipos de erro (v1)
# ---------------------------------------------------------------------------

# Jobs
JOB_SCRIPT_FAILED = "JOB_SCRIPT_FAILED"
JOB_TIMEOUT = "JOB_TIMEOUT"
DEPENDENCY_FAILED = "DEPENDENCY_FAILED"

# Executores
EXECUTOR_UNAVAILABLE = "EXECUTOR_UNAVAILABLE"

# Stores
ARTIFACT_NOT_FOUND = "ARTIFACT_NOT_FOUND"
STORE_IO_ERROR = "STORE_IO_ERROR"

# Engine / Execução
ENGINE_EXECUTION_ERROR = "ENGINE_EXECUTION_ERROR"
PIPELINE_CANCELED = "PIPELINE_CANCELED"


# ---------------------------------------------------------------------------
# Helpers de fábrica
# ---------------------------------------------------------------------------

def job_script_failed(
    *,
    job: str,
    stage: str,
    exit_code: int,
    hint: str = "Inspecione a saída capturada do Job; o script é opaco para o executor.",
) -> LatticeErrorPayload:
    return LatticeErrorPayload(
        type=JOB_SCRIPT_FAILED,
        message="Script do Job terminou com falha",
        details={"job": job, "stage": stage, "exit_code": exit_code},
        hint=hint,
    )


def job_timeout(
    *,
    job: str,
    stage: str,
    timeout_seconds: float,
    hint: str = "Aumente `timeout` do Job ou investigue a lentidão do script.",
) -> LatticeErrorPayload:
    return LatticeErrorPayload(
        type=JOB_TIMEOUT,
        message="Job excedeu a duração máxima",
        details={"job": job, "stage": stage, "timeout_seconds": timeout_seconds},
        hint=hint,
    )


def dependency_failed(*, job: str, stage: str, failed: str) -> LatticeErrorPayload:
    return LatticeErrorPayload(
        type=DEPENDENCY_FAILED,
        message="Job pulado devido a falha de dependência",
        details={"job": job, "stage": stage, "failed_dependency": failed},
        hint="Corrija o Job dependente que falhou ou marque-o com `allow_failure`.",
    )


def executor_unavailable(
    *,
    job: str,
    stage: str,
    tags: Any,
    reason: Optional[str] = None,
    hint: str = "Registre um executor cujas tags cubram as tags do Job.",
) -> LatticeErrorPayload:
    return LatticeErrorPayload(
        type=EXECUTOR_UNAVAILABLE,
        message="Nenhum executor disponível para o Job",
        details={"job": job, "stage": stage, "tags": sorted(tags or []), "reason": reason},
        hint=hint,
    )


def artifact_not_found(*, job: str, stage: str, producer: str, pipeline_id: str) -> LatticeErrorPayload:
    return LatticeErrorPayload(
        type=ARTIFACT_NOT_FOUND,
        message="Artefato de dependência declarada não encontrado",
        details={"job": job, "stage": stage, "producer": producer, "pipeline_id": pipeline_id},
        hint="Verifique o ArtifactStore; artefatos de `needs` são garantidos e sua ausência é fatal.",
    )


def pipeline_canceled(*, job: str, stage: str) -> LatticeErrorPayload:
    return LatticeErrorPayload(
        type=PIPELINE_CANCELED,
        message="Job cancelado por solicitação externa",
        details={"job": job, "stage": stage},
        hint=None,
    )


def engine_execution_error(
    *,
    job: Optional[str] = None,
    exc_type: Optional[str] = None,
    exc_message: Optional[str] = None,
    hint: str = "Verifique o histórico do pipeline para diagnosticar a falha. Nenhum fallback é aplicado.",
) -> LatticeErrorPayload:
    return LatticeErrorPayload(
        type=ENGINE_EXECUTION_ERROR,
        message="Falha inesperada durante a execução do Job",
        details={"job": job, "exc_type": exc_type, "exc_message": exc_message},
        hint=hint,
    )


def store_io_error(*, job: str, stage: str, operation: str, reason: str) -> LatticeErrorPayload:
    return LatticeErrorPayload(
        type=STORE_IO_ERROR,
        message="Falha de I/O no store de artefatos",
        details={"job": job, "stage": stage, "operation": operation, "reason": reason},
        hint="Verifique permissões e espaço do diretório de estado (`store.root`).",
    )
