# src/lattice_ci/core/engine/engine.py
"""
Engine de execução de pipelines do Lattice CI.

O Engine é a fachada que conecta as camadas do core para um trigger:

    documento → schema → Graph Builder → Scheduler → PipelineResult
                                             ↓
                                  PipelineRecord → HistoryStore

Responsabilidades:
    - validar o documento (erros de configuração são fatais, antes de
      qualquer Job ser agendado)
    - criar o RunContext e o PipelineRecord da execução
    - montar o pool de executores e as stores a partir da configuração
    - registrar eventos explícitos (pipeline_started, workflow, rules)
    - finalizar e persistir o registro no histórico append-only

Decisões arquiteturais:
    - ConfigError nunca é convertido em resultado: propaga ao chamador
    - Falhas de Jobs nunca propagam como exceção: viram JobResult
    - `on_scheduler` expõe o Scheduler a chamadores que precisam disparar
      Jobs manuais ou cancelar o pipeline a partir de outra thread

Limites explícitos:
    - Não interpreta scripts de Jobs
    - Não gera relatórios (ver report)
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, Optional, Union

from lattice_ci import __version__
from lattice_ci.core.config.hashing import compute_config_hash
from lattice_ci.core.config.loader import DEFAULT_RUNNER_CONFIG
from lattice_ci.core.config.schema import parse_pipeline_document
from lattice_ci.core.executor.base import ExecutorPool
from lattice_ci.core.executor.shell import ShellExecutor
from lattice_ci.core.pipeline.context import RunContext, TriggerContext
from lattice_ci.core.pipeline.types import PipelineResult
from lattice_ci.core.store.artifact_store import ArtifactStore
from lattice_ci.core.store.cache_store import CacheStore
from lattice_ci.core.traceability.record import (
    HistoryStore,
    PipelineRecord,
    add_event,
    create_record,
    finalize,
)

from .graph import ExecutionGraph, build_graph
from .scheduler import Scheduler


@dataclass(frozen=True)
class EngineRun:
    """Resultado de `Engine.run`: resultado, registro, contexto e caminho no histórico."""
    result: PipelineResult
    record: PipelineRecord
    ctx: RunContext
    history_path: Optional[Path] = None


def _section(config: Dict[str, Any], name: str) -> Dict[str, Any]:
    merged = dict(DEFAULT_RUNNER_CONFIG.get(name, {}))
    merged.update((config or {}).get(name, {}) or {})
    return merged


def default_pool(config: Dict[str, Any]) -> ExecutorPool:
    """Pool com um único ShellExecutor local configurado a partir de `executor`."""
    executor_cfg = _section(config, "executor")
    shell = ShellExecutor(
        tags=tuple(executor_cfg.get("tags", ()) or ()),
        run_untagged=bool(executor_cfg.get("run_untagged", True)),
        shell=str(executor_cfg.get("shell", "/bin/sh")),
    )
    return ExecutorPool(
        [shell],
        retry_attempts=int(executor_cfg.get("retry_attempts", 3)),
        retry_backoff=float(executor_cfg.get("retry_backoff", 0.5)),
    )


def _trigger_summary(trigger: TriggerContext) -> Dict[str, Any]:
    return {
        "source": trigger.source,
        "branch": trigger.branch,
        "tag": trigger.tag,
        "changed_files": sorted(trigger.changed_files) if trigger.changed_files is not None else None,
        "variables": sorted(trigger.variables),
    }


class Engine:
    """
    Engine canônico do Lattice CI (Graph Builder + Scheduler + histórico).

    Args:
        config: configuração resolvida do runner (ver `load_config`).
        pool: pool de executores (None → ShellExecutor local).
        persist_history: gravar o registro no HistoryStore ao final.
    """

    def __init__(
        self,
        *,
        config: Optional[Dict[str, Any]] = None,
        pool: Optional[ExecutorPool] = None,
        persist_history: bool = True,
    ):
        self.config: Dict[str, Any] = dict(config or DEFAULT_RUNNER_CONFIG)
        self.pool = pool if pool is not None else default_pool(self.config)
        self.persist_history = persist_history

        root = Path(str(_section(self.config, "store").get("root", ".lattice")))
        self.state_root = root
        self.cache_store = CacheStore(root)
        self.artifact_store = ArtifactStore(root)
        self.history = HistoryStore(root)

    def plan(self, document: Dict[str, Any], trigger: TriggerContext) -> ExecutionGraph:
        """
        Valida o documento e constrói o grafo de execução.

        Raises:
            ConfigError: documento inválido (nenhum Job é agendado).
        """
        spec = parse_pipeline_document(document)
        return build_graph(spec, trigger)

    def run(
        self,
        document: Dict[str, Any],
        trigger: TriggerContext,
        *,
        source_dir: Optional[Union[str, Path]] = None,
        workspace: Optional[Union[str, Path]] = None,
        manual: Iterable[str] = (),
        wait_for_manual: bool = False,
        on_scheduler: Optional[Callable[[Scheduler], None]] = None,
    ) -> EngineRun:
        """
        Executa um pipeline para um trigger.

        Args:
            document: documento de pipeline (dict).
            trigger: contexto imutável do trigger.
            source_dir: conteúdo copiado para o workdir de cada Job.
            workspace: diretório base dos workdirs (None → temporário).
            manual: Jobs manuais disparados desde o início.
            wait_for_manual: aguardar triggers de Jobs manuais pendentes.
            on_scheduler: callback chamado com o Scheduler antes da execução.

        Returns:
            EngineRun: resultado do pipeline e registro forense.

        Raises:
            ConfigError: documento inválido.
            StoreIOError: `pipeline_id` já registrado no histórico (antes de
                agendar Jobs) ou falha ao persistir o registro.
        """
        graph = self.plan(document, trigger)
        if self.persist_history:
            # append-only: falha antes de qualquer Job rodar
            self.history.ensure_new(trigger.pipeline_id)

        started_at = datetime.now(timezone.utc)
        ctx = RunContext(
            pipeline_id=trigger.pipeline_id,
            created_at=started_at,
            config=self.config,
            trigger=trigger,
        )
        record = create_record(
            pipeline_id=trigger.pipeline_id,
            started_at=started_at,
            lattice_version=__version__,
            config_hash=compute_config_hash(self.config),
            document_hash=compute_config_hash(document),
            trigger=_trigger_summary(trigger),
        )
        add_event(
            record,
            event_type="pipeline_started",
            ts=started_at,
            payload={"stages": list(graph.stages), "jobs": list(graph.order)},
        )
        add_event(record, event_type="workflow_evaluated", ts=started_at, payload={"decision": graph.workflow.value})
        for name in graph.skipped:
            add_event(record, event_type="job_excluded", ts=started_at, job_id=name, payload={"reason": "rules"})

        engine_cfg = _section(self.config, "engine")
        scheduler = Scheduler(
            graph,
            self.pool,
            ctx=ctx,
            cache_store=self.cache_store,
            artifact_store=self.artifact_store,
            max_concurrency=int(engine_cfg.get("max_concurrency", 4)),
            workspace=workspace,
            source_dir=source_dir,
            record=record,
            default_timeout=engine_cfg.get("default_timeout"),
            executor_wait_seconds=float(engine_cfg.get("executor_wait_seconds", 30.0)),
            poll_interval=float(engine_cfg.get("poll_interval", 0.05)),
        )
        for name in manual:
            scheduler.trigger_manual(name)
        if on_scheduler is not None:
            on_scheduler(scheduler)

        result = scheduler.run(wait_for_manual=wait_for_manual)

        finalize(record, status=result.status.value, ts=datetime.now(timezone.utc))
        history_path = self.history.save(record) if self.persist_history else None
        return EngineRun(result=result, record=record, ctx=ctx, history_path=history_path)
