# src/lattice_ci/core/engine/scheduler.py
"""
Scheduler do Lattice CI.

O Scheduler percorre o `ExecutionGraph` respeitando barreiras de Stage e
arestas de `needs`, despacha Jobs prontos para o pool de executores e
consolida o `PipelineResult`.

Máquina de estados por Job:
    PENDING → READY → RUNNING → {SUCCEEDED, FAILED, SKIPPED, CANCELED}
    PENDING → MANUAL_WAIT → (trigger_manual) → READY

Modelo de concorrência:
    - um único loop coordenador é dono de todas as transições de estado
    - Jobs rodam em threads de um ThreadPoolExecutor (até `max_concurrency`)
    - workers nunca alteram estado: publicam eventos de conclusão em uma
      `queue.Queue`, consumida pelo loop coordenador
    - `trigger_manual` e `cancel` também são eventos da fila, e podem ser
      chamados de qualquer thread

Políticas (v1):
    - READY: todas as dependências em estado não bloqueante
      (SUCCEEDED, FAILED com allow_failure, ou SKIPPED sem relação com falha)
    - prioridade de despacho: maior fan-out transitivo, depois nome
    - falha (sem allow_failure) → dependentes `on_success`/`manual` passam a
      SKIPPED imediatamente, em cascata; `when: always` roda assim que as
      dependências terminam; `when: on_failure` roda apenas se alguma
      dependência falhou
    - timeout por Job (ou default do runner) → FAILED com reason `timeout`
    - sem executor compatível o Job nunca fica READY: permanece PENDING e,
      após `executor_wait_seconds`, termina FAILED com reason
      `executor_unavailable`
    - `cancel()` → todos os Jobs não terminais passam a CANCELED, em ordem
      topológica; Jobs em execução recebem o hook de cancelamento do executor
    - Jobs encerrados pelo coordenador (timeout ou cancelamento) recebem um
      sinal de parada; o worker interrompe as etapas seguintes (script,
      cache push, publicação de artefatos)
    - quando restam apenas Jobs em MANUAL_WAIT (ou bloqueados por eles),
      `run()` retorna; `run(wait_for_manual=True)` continua aguardando

Etapas de um Job (thread worker):
    workdir → artefatos das dependências (garantidos) → dotenv → cache pull
    (best-effort) → script → after_script (sempre) → cache push (sucesso)
    → publicação de artefatos

Limites explícitos:
    - Não constrói o grafo
    - Não persiste o registro do pipeline (ver Engine)
"""

from __future__ import annotations

import queue
import re
import shutil
import tempfile
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Set, Tuple, Union

from lattice_ci.core import errors as error_catalog
from lattice_ci.core.exceptions import (
    ArtifactNotFound,
    ExecutorUnavailable,
    JobTimeout,
    LatticeException,
    StoreIOError,
)
from lattice_ci.core.executor.base import ExecutionRequest, ExecutorPool
from lattice_ci.core.pipeline.context import RunContext
from lattice_ci.core.pipeline.types import (
    JobResult,
    JobSpec,
    JobStatus,
    PipelineResult,
    PipelineStatus,
    WHEN_ALWAYS,
    WHEN_ON_FAILURE,
)
from lattice_ci.core.pipeline.variables import build_job_environment, expand_variables
from lattice_ci.core.store.artifact_store import ArtifactStore
from lattice_ci.core.store.cache_store import CacheStore
from lattice_ci.core.traceability.record import PipelineRecord, job_failed, job_finished, job_started

from .graph import ExecutionGraph


# Reasons canônicos de estados não bem-sucedidos
REASON_SCRIPT_FAILED = "script_failed"
REASON_TIMEOUT = "timeout"
REASON_DEPENDENCY_FAILED = "dependency_failed"
REASON_NO_FAILURE = "no_failure"
REASON_EXECUTOR_UNAVAILABLE = "executor_unavailable"
REASON_ARTIFACT_MISSING = "artifact_missing"
REASON_ARTIFACT_UPLOAD = "artifact_upload_failed"
REASON_CANCELED = "canceled"
REASON_RULES = "rules"
REASON_MANUAL = "manual"
REASON_BLOCKED = "blocked"
REASON_ENGINE_ERROR = "engine_error"

AFTER_SCRIPT_TIMEOUT = 300.0

_SLUG = re.compile(r"[^A-Za-z0-9_.-]+")


@dataclass(frozen=True)
class _Outcome:
    """Resultado produzido por um worker (convertido em transição pelo loop)."""
    status: JobStatus
    reason: Optional[str] = None
    exit_code: Optional[int] = None
    output: str = ""
    error: Optional[Dict[str, Any]] = None


@dataclass
class _Running:
    deadline: Optional[float]
    started_at: str
    stop: threading.Event = field(default_factory=threading.Event)


def _stopped(output: str = "") -> _Outcome:
    """Outcome de um Job já encerrado pelo coordenador (descartado no loop)."""
    return _Outcome(status=JobStatus.CANCELED, reason=REASON_CANCELED, output=output)


@dataclass
class _State:
    status: Dict[str, JobStatus] = field(default_factory=dict)
    results: Dict[str, JobResult] = field(default_factory=dict)
    running: Dict[str, _Running] = field(default_factory=dict)
    inflight: Set[str] = field(default_factory=set)
    unplaceable_since: Dict[str, float] = field(default_factory=dict)
    triggered: Set[str] = field(default_factory=set)
    canceled: bool = False


class Scheduler:
    """
    Executor do DAG de Jobs de um pipeline.

    Args:
        graph: grafo imutável do pipeline.
        pool: pool de executores.
        ctx: contexto da execução (log estruturado, warnings, trigger).
        cache_store: store de cache (opcional; ausente → sem cache).
        artifact_store: store de artefatos (opcional; ausente → sem artefatos).
        max_concurrency: máximo de Jobs simultâneos.
        workspace: diretório base dos workdirs (None → diretório temporário).
        source_dir: conteúdo copiado para o workdir de cada Job.
        record: registro do pipeline atualizado a cada transição.
        default_timeout: timeout de Jobs sem `timeout` próprio.
        executor_wait_seconds: espera máxima por um executor compatível.
        poll_interval: intervalo de verificação de timeouts (segundos).
        clock: relógio monotônico (injetável em testes).
    """

    def __init__(
        self,
        graph: ExecutionGraph,
        pool: ExecutorPool,
        *,
        ctx: RunContext,
        cache_store: Optional[CacheStore] = None,
        artifact_store: Optional[ArtifactStore] = None,
        max_concurrency: int = 4,
        workspace: Optional[Union[str, Path]] = None,
        source_dir: Optional[Union[str, Path]] = None,
        record: Optional[PipelineRecord] = None,
        default_timeout: Optional[float] = None,
        executor_wait_seconds: float = 30.0,
        poll_interval: float = 0.05,
        clock: Callable[[], float] = time.monotonic,
    ):
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be >= 1")
        self.graph = graph
        self.pool = pool
        self.ctx = ctx
        self.cache_store = cache_store
        self.artifact_store = artifact_store
        self.max_concurrency = int(max_concurrency)
        self.workspace = Path(workspace) if workspace is not None else None
        self.source_dir = Path(source_dir) if source_dir is not None else None
        self.record = record
        self.default_timeout = default_timeout
        self.executor_wait_seconds = float(executor_wait_seconds)
        self.poll_interval = float(poll_interval)
        self._clock = clock
        self._events: "queue.Queue[Tuple[str, Any]]" = queue.Queue()
        self._state = _State(status={name: JobStatus.PENDING for name in graph.jobs})
        self._fan_out = graph.fan_out()
        self._dependents = graph.dependents

    # ------------------------------------------------------------------
    # API thread-safe
    # ------------------------------------------------------------------
    def trigger_manual(self, name: str) -> None:
        """
        Dispara um Job manual (pode ser chamado de qualquer thread).

        Um trigger recebido antes de as dependências terminarem é guardado e
        aplicado quando o Job sair de PENDING.

        Raises:
            KeyError: Job inexistente no grafo.
            ValueError: Job não é manual.
        """
        job = self.graph.jobs.get(name)
        if job is None:
            raise KeyError(f"unknown job '{name}'")
        if not job.is_manual:
            raise ValueError(f"job '{name}' is not a manual job")
        self._events.put(("trigger", name))

    def cancel(self) -> None:
        """Solicita o cancelamento do pipeline (pode ser chamado de qualquer thread)."""
        self._events.put(("cancel", None))

    def status(self, name: str) -> JobStatus:
        return self._state.status[name]

    # ------------------------------------------------------------------
    # Loop coordenador
    # ------------------------------------------------------------------
    def run(self, *, wait_for_manual: bool = False) -> PipelineResult:
        """
        Executa o pipeline até um estado final.

        Args:
            wait_for_manual: continuar aguardando triggers de Jobs manuais.

        Returns:
            PipelineResult: status agregado e resultado de cada Job.
        """
        pipeline_id = self.ctx.pipeline_id
        if not self.graph.jobs:
            self.ctx.log(job_id=None, level="INFO", message="no jobs scheduled")
            return self._result(PipelineStatus.SKIPPED)

        with tempfile.TemporaryDirectory(prefix=f"lattice-{pipeline_id}-") as tmp:
            base = self.workspace if self.workspace is not None else Path(tmp)
            self._base = base / _SLUG.sub("_", pipeline_id)
            with ThreadPoolExecutor(max_workers=self.max_concurrency, thread_name_prefix="lattice-job") as executor:
                while True:
                    self._drain()
                    if not self._state.canceled:
                        self._advance()
                        self._check_timeouts()
                        self._dispatch(executor)
                    if self._finished(wait_for_manual) and self._events.empty():
                        break
                    try:
                        event = self._events.get(timeout=self.poll_interval)
                    except queue.Empty:
                        continue
                    self._handle(event)

        return self._result(self._pipeline_status())

    def _drain(self) -> None:
        while True:
            try:
                event = self._events.get_nowait()
            except queue.Empty:
                return
            self._handle(event)

    def _finished(self, wait_for_manual: bool) -> bool:
        statuses = self._state.status.values()
        if all(s.is_terminal for s in statuses):
            return not self._state.inflight or self._state.canceled
        if wait_for_manual:
            return False
        if self._state.unplaceable_since:
            # Jobs PENDING aguardando executor compatível
            return False
        busy = (JobStatus.READY, JobStatus.RUNNING)
        return not any(s in busy for s in statuses) and not self._state.inflight

    def _handle(self, event: Tuple[str, Any]) -> None:
        kind, payload = event
        if kind == "done":
            name, outcome = payload
            self._state.inflight.discard(name)
            if self._state.status.get(name) != JobStatus.RUNNING:
                # conclusão tardia de Job já encerrado (timeout, cancelamento)
                return
            self._finish(name, outcome)
        elif kind == "trigger":
            self._on_trigger(payload)
        elif kind == "cancel":
            self._cancel_all()

    # ------------------------------------------------------------------
    # Transições
    # ------------------------------------------------------------------
    def _dependency_state(self, dep: str) -> str:
        """Classifica uma dependência em `ok`, `failed` ou `waiting`."""
        status = self._state.status[dep]
        if not status.is_terminal:
            return "waiting"
        if status == JobStatus.SUCCEEDED:
            return "ok"
        result = self._state.results.get(dep)
        if status == JobStatus.FAILED:
            return "ok" if self.graph.jobs[dep].allow_failure else "failed"
        if status == JobStatus.SKIPPED:
            return "failed" if result is not None and result.reason == REASON_DEPENDENCY_FAILED else "ok"
        return "failed"

    def _advance(self) -> None:
        changed = True
        while changed:
            changed = False
            for name in self.graph.order:
                if self._state.status[name] != JobStatus.PENDING:
                    continue
                if self._advance_job(name):
                    changed = True

    def _advance_job(self, name: str) -> bool:
        job = self.graph.jobs[name]
        states = [(d, self._dependency_state(d)) for d in self.graph.dependencies.get(name, ())]
        failed = [d for d, s in states if s == "failed"]
        waiting = any(s == "waiting" for _, s in states)

        if job.when == WHEN_ALWAYS:
            if waiting:
                return False
            return self._set_ready(name)

        if job.when == WHEN_ON_FAILURE:
            if waiting:
                return False
            if failed:
                return self._set_ready(name)
            self._skip(name, REASON_NO_FAILURE, "no dependency failed")
            return True

        if failed:
            error = error_catalog.dependency_failed(job=name, stage=job.stage, failed=failed[0])
            self._skip(name, REASON_DEPENDENCY_FAILED, f"dependency '{failed[0]}' failed", error.to_dict())
            return True
        if waiting:
            return False

        if job.is_manual and name not in self._state.triggered:
            self._state.status[name] = JobStatus.MANUAL_WAIT
            self.ctx.log(job_id=name, level="INFO", message="waiting for manual trigger")
            return True
        return self._set_ready(name)

    def _set_ready(self, name: str) -> bool:
        """
        Promove o Job a READY se algum executor atende suas tags.

        Sem executor compatível o Job permanece PENDING; após
        `executor_wait_seconds` termina FAILED (`executor_unavailable`).

        Returns:
            bool: True se o estado do Job mudou.
        """
        job = self.graph.jobs[name]
        if not self.pool.has_match(job.tags):
            now = self._clock()
            since = self._state.unplaceable_since.setdefault(name, now)
            if since == now:
                self.ctx.add_warning(job_id=name, message=f"no executor matches tags {sorted(job.tags)}")
            if now - since < self.executor_wait_seconds:
                return False
            error = error_catalog.executor_unavailable(
                job=name, stage=job.stage, tags=job.tags, reason="no executor matches tags"
            )
            self._finish(
                name,
                _Outcome(status=JobStatus.FAILED, reason=REASON_EXECUTOR_UNAVAILABLE, error=error.to_dict()),
            )
            return True
        self._state.unplaceable_since.pop(name, None)
        self._state.status[name] = JobStatus.READY
        self.ctx.log(job_id=name, level="INFO", message="job ready")
        return True

    def _skip(self, name: str, reason: str, message: str, error: Optional[Dict[str, Any]] = None) -> None:
        self.ctx.log(job_id=name, level="INFO", message=f"job skipped: {message}", reason=reason)
        self._finish(name, _Outcome(status=JobStatus.SKIPPED, reason=reason, error=error))

    def _on_trigger(self, name: str) -> None:
        status = self._state.status[name]
        if status == JobStatus.MANUAL_WAIT:
            self._state.triggered.add(name)
            self.ctx.log(job_id=name, level="INFO", message="manual job triggered")
            if not self._set_ready(name):
                self._state.status[name] = JobStatus.PENDING
        elif status == JobStatus.PENDING:
            self._state.triggered.add(name)
            self.ctx.log(job_id=name, level="INFO", message="manual trigger recorded before dependencies finished")
        else:
            self.ctx.log(job_id=name, level="WARNING", message=f"manual trigger ignored in state {status.value}")

    def _check_timeouts(self) -> None:
        now = self._clock()
        for name, running in list(self._state.running.items()):
            if running.deadline is None or now < running.deadline:
                continue
            job = self.graph.jobs[name]
            running.stop.set()
            self.pool.cancel(name)
            timeout = job.timeout if job.timeout is not None else self.default_timeout
            error = error_catalog.job_timeout(job=name, stage=job.stage, timeout_seconds=float(timeout or 0))
            self.ctx.log(job_id=name, level="ERROR", message="job timed out")
            self._finish(name, _Outcome(status=JobStatus.FAILED, reason=REASON_TIMEOUT, error=error.to_dict()))

    def _dispatch(self, executor: ThreadPoolExecutor) -> None:
        ready = [n for n, s in self._state.status.items() if s == JobStatus.READY]
        ready.sort(key=lambda n: (-self._fan_out.get(n, 0), n))
        for name in ready:
            if len(self._state.inflight) >= self.max_concurrency:
                break
            self._start(name, executor)

    def _start(self, name: str, executor: ThreadPoolExecutor) -> None:
        job = self.graph.jobs[name]
        timeout = job.timeout if job.timeout is not None else self.default_timeout
        started_at = datetime.now(timezone.utc)
        self._state.status[name] = JobStatus.RUNNING
        running = _Running(
            deadline=None if timeout is None else self._clock() + timeout,
            started_at=started_at.isoformat(),
        )
        self._state.running[name] = running
        self._state.inflight.add(name)
        if self.record is not None:
            job_started(self.record, job_id=name, stage=job.stage, ts=started_at)
        self.ctx.log(job_id=name, level="INFO", message="job started", stage=job.stage)

        sources = [
            s for s in self.graph.artifact_sources(name)
            if self._state.status.get(s) == JobStatus.SUCCEEDED
        ]
        executor.submit(self._worker, job, sources, timeout, running.stop)

    def _finish(self, name: str, outcome: _Outcome) -> None:
        job = self.graph.jobs[name]
        running = self._state.running.pop(name, None)
        self._state.unplaceable_since.pop(name, None)
        finished_at = datetime.now(timezone.utc)
        result = JobResult(
            name=name,
            stage=job.stage,
            status=outcome.status,
            reason=outcome.reason,
            exit_code=outcome.exit_code,
            output=outcome.output,
            started_at=running.started_at if running else None,
            finished_at=finished_at.isoformat(),
            allow_failure=job.allow_failure,
            warnings=self.ctx.warnings_for(name),
            error=outcome.error,
        )
        self._state.status[name] = outcome.status
        self._state.results[name] = result
        if self.record is not None:
            job_finished(self.record, job_id=name, ts=finished_at, result=result.to_dict())
            if outcome.status == JobStatus.FAILED and outcome.error:
                job_failed(self.record, job_id=name, ts=finished_at, error=outcome.error)
        level = "ERROR" if outcome.status == JobStatus.FAILED and not job.allow_failure else "INFO"
        self.ctx.log(
            job_id=name,
            level=level,
            message=f"job {outcome.status.value}",
            reason=outcome.reason,
            exit_code=outcome.exit_code,
        )

    def _cancel_all(self) -> None:
        if self._state.canceled:
            return
        self._state.canceled = True
        self.ctx.log(job_id=None, level="WARNING", message="pipeline cancellation requested")
        for name in self.graph.order:
            status = self._state.status[name]
            if status.is_terminal:
                continue
            if status == JobStatus.RUNNING:
                self._state.running[name].stop.set()
                self.pool.cancel(name)
            job = self.graph.jobs[name]
            error = error_catalog.pipeline_canceled(job=name, stage=job.stage)
            self._finish(name, _Outcome(status=JobStatus.CANCELED, reason=REASON_CANCELED, error=error.to_dict()))

    # ------------------------------------------------------------------
    # Resultado
    # ------------------------------------------------------------------
    def _pipeline_status(self) -> PipelineStatus:
        if self._state.canceled:
            return PipelineStatus.CANCELED
        for name, status in self._state.status.items():
            if status == JobStatus.FAILED and not self.graph.jobs[name].allow_failure:
                return PipelineStatus.FAILED
        for name, status in self._state.status.items():
            if status == JobStatus.PENDING:
                return PipelineStatus.BLOCKED
            if status == JobStatus.MANUAL_WAIT and not self.graph.jobs[name].allow_failure:
                return PipelineStatus.BLOCKED
        return PipelineStatus.SUCCESS

    def _result(self, status: PipelineStatus) -> PipelineResult:
        jobs: Dict[str, JobResult] = {}
        for name, job in self.graph.jobs.items():
            result = self._state.results.get(name)
            if result is None:
                current = self._state.status[name]
                result = JobResult(
                    name=name,
                    stage=job.stage,
                    status=current,
                    reason=REASON_MANUAL if current == JobStatus.MANUAL_WAIT else REASON_BLOCKED,
                    allow_failure=job.allow_failure,
                    warnings=self.ctx.warnings_for(name),
                )
            jobs[name] = result
        for name, stage in self.graph.skipped.items():
            jobs[name] = JobResult(name=name, stage=stage, status=JobStatus.SKIPPED, reason=REASON_RULES)
        return PipelineResult(pipeline_id=self.ctx.pipeline_id, status=status, jobs=jobs)

    # ------------------------------------------------------------------
    # Worker (thread do pool)
    # ------------------------------------------------------------------
    def _worker(self, job: JobSpec, sources: List[str], timeout: Optional[float], stop: threading.Event) -> None:
        try:
            outcome = self._execute_job(job, sources, timeout, stop)
        except Exception as e:
            self.ctx.log(job_id=job.name, level="ERROR", message="unexpected error while running job", exc=str(e))
            error = error_catalog.engine_execution_error(
                job=job.name, exc_type=e.__class__.__name__, exc_message=str(e)
            )
            outcome = _Outcome(status=JobStatus.FAILED, reason=REASON_ENGINE_ERROR, error=error.to_dict())
        self._events.put(("done", (job.name, outcome)))

    def _workdir(self, job: JobSpec) -> Path:
        workdir = self._base / (_SLUG.sub("_", job.name).strip("_") or "job")
        workdir.mkdir(parents=True, exist_ok=True)
        if self.source_dir is not None:
            shutil.copytree(self.source_dir, workdir, dirs_exist_ok=True)
        return workdir

    def _execute_job(
        self, job: JobSpec, sources: List[str], timeout: Optional[float], stop: threading.Event
    ) -> _Outcome:
        pipeline_id = self.ctx.pipeline_id
        workdir = self._workdir(job)

        injected: Dict[str, str] = {}
        if self.artifact_store is not None:
            for producer in sources:
                try:
                    artifact_set = self.artifact_store.fetch(pipeline_id, producer)
                except ArtifactNotFound:
                    error = error_catalog.artifact_not_found(
                        job=job.name, stage=job.stage, producer=producer, pipeline_id=pipeline_id
                    )
                    self.ctx.log(job_id=job.name, level="ERROR", message=f"artifacts of '{producer}' not found")
                    return _Outcome(status=JobStatus.FAILED, reason=REASON_ARTIFACT_MISSING, error=error.to_dict())
                except StoreIOError as e:
                    error = error_catalog.store_io_error(
                        job=job.name, stage=job.stage, operation="artifact_fetch", reason=e.message
                    )
                    return _Outcome(status=JobStatus.FAILED, reason=REASON_ARTIFACT_MISSING, error=error.to_dict())
                artifact_set.extract(workdir)
                injected.update(artifact_set.dotenv)

        env = build_job_environment(
            job, trigger=self.ctx.trigger, global_variables=self.graph.variables, injected=injected
        )
        env["CI_PROJECT_DIR"] = str(workdir)

        self._pull_cache(job, env, workdir)
        if stop.is_set():
            return _stopped()

        request = ExecutionRequest(
            job_name=job.name,
            commands=tuple(job.commands),
            env=env,
            workdir=str(workdir),
            image=job.image,
            tags=frozenset(job.tags),
            timeout=timeout,
        )
        try:
            executed = self.pool.execute(request, self.ctx)
        except ExecutorUnavailable as e:
            error = error_catalog.executor_unavailable(
                job=job.name, stage=job.stage, tags=job.tags, reason=e.message
            )
            return _Outcome(status=JobStatus.FAILED, reason=REASON_EXECUTOR_UNAVAILABLE, error=error.to_dict())
        except JobTimeout:
            error = error_catalog.job_timeout(job=job.name, stage=job.stage, timeout_seconds=float(timeout or 0))
            return _Outcome(status=JobStatus.FAILED, reason=REASON_TIMEOUT, error=error.to_dict())

        if executed.canceled:
            return _Outcome(status=JobStatus.CANCELED, reason=REASON_CANCELED, output=executed.output)

        output = executed.output + self._after_script(job, env, workdir)
        succeeded = executed.exit_code == 0
        if stop.is_set():
            return _stopped(output)

        if succeeded:
            self._push_cache(job, env, workdir)
        if stop.is_set():
            return _stopped(output)

        upload_error = self._publish_artifacts(job, workdir, succeeded)
        if succeeded and upload_error is not None:
            return _Outcome(
                status=JobStatus.FAILED,
                reason=REASON_ARTIFACT_UPLOAD,
                exit_code=executed.exit_code,
                output=output,
                error=upload_error,
            )

        if succeeded:
            return _Outcome(status=JobStatus.SUCCEEDED, exit_code=0, output=output)
        error = error_catalog.job_script_failed(job=job.name, stage=job.stage, exit_code=executed.exit_code)
        return _Outcome(
            status=JobStatus.FAILED,
            reason=REASON_SCRIPT_FAILED,
            exit_code=executed.exit_code,
            output=output,
            error=error.to_dict(),
        )

    def _after_script(self, job: JobSpec, env: Dict[str, str], workdir: Path) -> str:
        if not job.after_script:
            return ""
        request = ExecutionRequest(
            job_name=job.name,
            commands=tuple(job.after_script),
            env=env,
            workdir=str(workdir),
            image=job.image,
            tags=frozenset(job.tags),
            timeout=AFTER_SCRIPT_TIMEOUT,
        )
        try:
            outcome = self.pool.execute(request, self.ctx)
        except LatticeException as e:
            self.ctx.add_warning(job_id=job.name, message=f"after_script did not run: {e.message}")
            return ""
        if outcome.exit_code != 0:
            self.ctx.add_warning(job_id=job.name, message=f"after_script exited with code {outcome.exit_code}")
        return outcome.output

    def _pull_cache(self, job: JobSpec, env: Dict[str, str], workdir: Path) -> None:
        if self.cache_store is None:
            return
        for spec in job.cache:
            if not spec.policy.pulls:
                continue
            key = expand_variables(spec.key, env)
            try:
                blob = self.cache_store.fetch(key)
            except StoreIOError as e:
                self.ctx.add_warning(job_id=job.name, message=f"cache '{key}' could not be read: {e.message}")
                continue
            if blob is None:
                self.ctx.log(job_id=job.name, level="INFO", message=f"cache miss for key '{key}'")
                continue
            try:
                blob.restore(workdir)
            except OSError as e:
                self.ctx.add_warning(job_id=job.name, message=f"cache '{key}' could not be restored: {e}")
                continue
            self.ctx.log(job_id=job.name, level="INFO", message=f"cache restored for key '{key}'")

    def _push_cache(self, job: JobSpec, env: Dict[str, str], workdir: Path) -> None:
        if self.cache_store is None:
            return
        for spec in job.cache:
            if not spec.policy.pushes:
                continue
            key = expand_variables(spec.key, env)
            try:
                self.cache_store.store(key, spec.paths, spec.policy, workdir)
            except (StoreIOError, OSError) as e:
                self.ctx.add_warning(job_id=job.name, message=f"cache '{key}' could not be saved: {e}")
                continue
            self.ctx.log(job_id=job.name, level="INFO", message=f"cache saved for key '{key}'")

    def _publish_artifacts(self, job: JobSpec, workdir: Path, succeeded: bool) -> Optional[Dict[str, Any]]:
        """Publica artefatos; retorna o payload de erro em caso de falha de escrita."""
        if self.artifact_store is None:
            return None
        spec = job.artifacts
        when = spec.when if spec is not None else "on_success"
        if succeeded and when == WHEN_ON_FAILURE:
            # dependentes sempre recebem um set, mesmo vazio
            spec_paths: Tuple[str, ...] = ()
        elif not succeeded and when not in (WHEN_ON_FAILURE, WHEN_ALWAYS):
            return None
        else:
            spec_paths = spec.paths if spec is not None else ()

        dotenv = spec.dotenv if spec is not None else None
        if dotenv and not (workdir / dotenv).is_file():
            self.ctx.add_warning(job_id=job.name, message=f"dotenv report '{dotenv}' was not produced")
        try:
            self.artifact_store.publish(
                self.ctx.pipeline_id,
                job.name,
                spec_paths,
                workdir,
                dotenv=dotenv,
                expire_in=spec.expire_in if spec is not None else None,
            )
        except (StoreIOError, OSError) as e:
            reason = e.message if isinstance(e, StoreIOError) else str(e)
            self.ctx.log(job_id=job.name, level="ERROR", message=f"artifact upload failed: {reason}")
            return error_catalog.store_io_error(
                job=job.name, stage=job.stage, operation="artifact_publish", reason=reason
            ).to_dict()
        return None
