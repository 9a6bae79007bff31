# src/lattice_ci/core/pipeline/context.py
"""
Contextos de trigger e de execução do pipeline.

Este módulo define as duas estruturas de contexto do Lattice CI:

    - `TriggerContext`: valor **imutável** que descreve o evento que disparou
      o pipeline (branch, tag, origem, arquivos alterados, variáveis do
      trigger, credenciais de registry). É passado explicitamente ao Rule
      Evaluator e à construção do ambiente dos Jobs; não existe estado global
      de variáveis predefinidas.

    - `RunContext`: contexto **mutável** de uma execução, que mantém
      identidade, configuração resolvida do runner, log estruturado de
      eventos e warnings agrupados por Job.

Princípios fundamentais:
    - Isolamento por execução (cada pipeline possui seu próprio RunContext)
    - Variáveis predefinidas são derivadas do TriggerContext, nunca do ambiente
    - Logs e warnings são estruturados e rastreáveis

Invariantes:
    - TriggerContext nunca é alterado após criado
    - Logs sempre incluem `pipeline_id` e `job_id`
    - Warnings são agrupados por `job_id`
    - Escritas no RunContext são seguras entre threads

Limites explícitos:
    - Não executa Jobs
    - Não avalia rules
    - Não persiste dados automaticamente
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, FrozenSet, List, Mapping, Optional


@dataclass(frozen=True)
class RegistryCredentials:
    """Credenciais de registry de imagens expostas aos Jobs."""
    registry: str
    user: str
    password: str


@dataclass(frozen=True)
class TriggerContext:
    """
    Descrição imutável do evento que disparou um pipeline.

    Campos:
        - pipeline_id: identificador único do pipeline
        - source: origem do evento (push, merge_request_event, schedule, web, api, trigger)
        - branch: branch do commit (None para pipelines de tag)
        - tag: tag do commit (None para pipelines de branch)
        - changed_files: arquivos alterados; None significa "diff desconhecido"
        - files: arquivos existentes no repositório (para `rules:exists`)
        - variables: variáveis passadas no trigger (maior precedência)
        - default_branch: branch padrão do projeto
        - registry: credenciais de registry (opcionais)

    Decisões arquiteturais:
        - `changed_files=None` faz `changes` avaliar como verdadeiro, como em
          pipelines sem diff disponível (schedules, branches novas)
        - Variáveis predefinidas são calculadas sob demanda, nunca armazenadas
    """
    pipeline_id: str
    source: str = "push"
    branch: Optional[str] = None
    tag: Optional[str] = None
    changed_files: Optional[FrozenSet[str]] = None
    files: FrozenSet[str] = frozenset()
    variables: Mapping[str, str] = field(default_factory=dict)
    default_branch: str = "main"
    registry: Optional[RegistryCredentials] = None

    @property
    def ref_name(self) -> str:
        return self.tag or self.branch or ""

    def predefined_variables(self) -> Dict[str, str]:
        """Retorna as variáveis predefinidas (`CI_*`) derivadas do trigger."""
        out: Dict[str, str] = {
            "CI": "true",
            "CI_PIPELINE_ID": self.pipeline_id,
            "CI_PIPELINE_SOURCE": self.source,
            "CI_COMMIT_REF_NAME": self.ref_name,
            "CI_DEFAULT_BRANCH": self.default_branch,
        }
        if self.branch is not None:
            out["CI_COMMIT_BRANCH"] = self.branch
        if self.tag is not None:
            out["CI_COMMIT_TAG"] = self.tag
        if self.registry is not None:
            out["CI_REGISTRY"] = self.registry.registry
            out["CI_REGISTRY_USER"] = self.registry.user
            out["CI_REGISTRY_PASSWORD"] = self.registry.password
        return out


@dataclass
class RunContext:
    """
    Contexto de execução compartilhado de um pipeline.

    O RunContext consolida:
        - identidade da execução (pipeline_id, created_at)
        - configuração resolvida do runner
        - o TriggerContext imutável
        - log estruturado de eventos
        - warnings associados a Jobs específicos

    Decisões arquiteturais:
        - Scheduler, stores e executores registram eventos apenas via RunContext
        - Não existe logger global; o log é parte do resultado da execução
        - Um lock interno serializa escritas vindas de threads de workers

    Invariantes:
        - Cada pipeline possui um RunContext único
        - Logs incluem sempre `pipeline_id` e `job_id`
        - Warnings são associados explicitamente a um Job

    Limites explícitos:
        - Não executa Jobs
        - Não decide políticas de execução
        - Não persiste dados automaticamente
    """
    pipeline_id: str
    created_at: datetime
    config: Dict[str, Any]
    trigger: TriggerContext
    meta: Dict[str, Any] = field(default_factory=dict)

    events: List[Dict[str, Any]] = field(default_factory=list, init=False)
    warnings: Dict[str, List[str]] = field(default_factory=dict, init=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)

    # -----------------------------
    # Logging & warnings
    # -----------------------------
    def log(self, *, job_id: Optional[str], level: str, message: str, **extra: Any) -> None:
        event = {
            "pipeline_id": self.pipeline_id,
            "job_id": job_id,
            "level": level,
            "message": message,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
        event.update(extra)
        with self._lock:
            self.events.append(event)

    def add_warning(self, *, job_id: str, message: str) -> None:
        with self._lock:
            if job_id not in self.warnings:
                self.warnings[job_id] = []
            self.warnings[job_id].append(message)
        self.log(job_id=job_id, level="WARNING", message=message)

    def warnings_for(self, job_id: str) -> List[str]:
        with self._lock:
            return list(self.warnings.get(job_id, []))
