# src/lattice_ci/core/traceability/__init__.py
"""
Pacote de rastreabilidade (traceability) do Lattice CI — Pipeline Record v1.

Este pacote define a API canônica do histórico de pipelines: um registro
por trigger, com estado terminal e timestamps de cada Job e um Event Log
ordenado.

API pública exposta:
    - PipelineRecord → estrutura canônica do registro
    - create_record  → criação explícita do registro
    - add_event      → registro explícito de eventos no Event Log
    - job_started    → marca início de execução de um Job
    - job_finished   → registra o estado terminal de um Job
    - job_failed     → registra falha com payload de erro
    - finalize       → registra o status final do pipeline
    - save_record    → persistência append-only em JSON
    - load_record    → restauração determinística
    - HistoryStore   → diretório de registros por pipeline_id

Invariantes:
    - O registro inicia com `jobs` e `events` vazios
    - Eventos nunca são reordenados automaticamente
    - Registros salvos nunca são sobrescritos
"""

from .record import (
    HistoryStore,
    PipelineRecord,
    add_event,
    create_record,
    finalize,
    job_failed,
    job_finished,
    job_started,
    load_record,
    save_record,
)

__all__ = [
    "HistoryStore",
    "PipelineRecord",
    "add_event",
    "create_record",
    "finalize",
    "job_failed",
    "job_finished",
    "job_started",
    "load_record",
    "save_record",
]
