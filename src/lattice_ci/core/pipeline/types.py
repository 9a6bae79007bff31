# src/lattice_ci/core/pipeline/types.py
"""
Tipos canônicos do pipeline do Lattice CI.

Este módulo define as estruturas e enums fundamentais que padronizam
a comunicação entre schema, Graph Builder, Rule Evaluator, Scheduler e
camadas de rastreabilidade.

Os tipos aqui definidos representam:
    - estados de Jobs e decisões de rules
    - especificações imutáveis de cache, artefatos, rules e Jobs
    - o documento de pipeline já validado (`PipelineSpec`)
    - o resultado imutável de cada Job e do pipeline

Componentes principais:
    - JobStatus      → máquina de estados do Job
    - Decision       → resultado da avaliação de rules (RUN, SKIP, MANUAL)
    - CachePolicy    → pull-push, pull, push
    - JobDefinition  → atributos declarados (antes de `extends`)
    - JobSpec        → Job resolvido, tipado e imutável
    - JobResult      → resultado imutável de um Job
    - PipelineResult → resultado agregado de um pipeline

Princípios fundamentais:
    - Tipos são estáveis e serializáveis
    - Jobs são imutáveis após a construção do grafo
    - Templates nunca são Jobs executáveis (flag explícita `is_template`)

Limites explícitos:
    - Não executa Jobs
    - Não valida o documento (ver core.config.schema)
    - Não avalia rules
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


class JobStatus(str, Enum):
    """
    Estados possíveis de um Job durante a execução de um pipeline.

    Máquina de estados:
        PENDING → READY → RUNNING → {SUCCEEDED, FAILED, SKIPPED, CANCELED}
        PENDING → MANUAL_WAIT → (trigger) → READY

    Os valores são strings para facilitar:
        - serialização em JSON
        - persistência no histórico de pipelines
        - inspeção e relatórios

    Decisões arquiteturais:
        - MANUAL_WAIT é terminal até a chegada de um trigger explícito
        - SKIPPED é usado tanto para propagação de falha quanto para
          `when: on_failure` sem falhas anteriores
        - CANCELED é exclusivo de cancelamento externo

    Invariantes:
        - Um Job terminal nunca volta a um estado não terminal
        - O valor textual do enum é estável e canônico
    """
    PENDING = "pending"
    READY = "ready"
    RUNNING = "running"
    MANUAL_WAIT = "manual"
    SUCCEEDED = "success"
    FAILED = "failed"
    SKIPPED = "skipped"
    CANCELED = "canceled"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL_STATUSES


_TERMINAL_STATUSES = frozenset(
    {JobStatus.SUCCEEDED, JobStatus.FAILED, JobStatus.SKIPPED, JobStatus.CANCELED}
)


class Decision(str, Enum):
    """
    Decisão produzida pela avaliação de um conjunto de rules.

    Valores:
        - RUN: o Job (ou pipeline) é incluído
        - SKIP: o Job (ou pipeline) é excluído
        - MANUAL: o Job é incluído, mas aguarda trigger explícito

    Invariantes:
        - A avaliação é fail-closed: nenhuma rule casada e nenhum default
          produz SKIP
    """
    RUN = "run"
    SKIP = "skip"
    MANUAL = "manual"


class CachePolicy(str, Enum):
    """Política de acesso ao cache de um Job."""
    PULL_PUSH = "pull-push"
    PULL = "pull"
    PUSH = "push"

    @property
    def pulls(self) -> bool:
        return self is not CachePolicy.PUSH

    @property
    def pushes(self) -> bool:
        return self is not CachePolicy.PULL


class PipelineStatus(str, Enum):
    """Estado final agregado de um pipeline."""
    SUCCESS = "success"
    FAILED = "failed"
    CANCELED = "canceled"
    SKIPPED = "skipped"
    BLOCKED = "blocked"


# Valores aceitos em `when` (Job ou rule)
WHEN_ON_SUCCESS = "on_success"
WHEN_ON_FAILURE = "on_failure"
WHEN_ALWAYS = "always"
WHEN_MANUAL = "manual"
WHEN_NEVER = "never"

JOB_WHEN_VALUES = frozenset({WHEN_ON_SUCCESS, WHEN_ON_FAILURE, WHEN_ALWAYS, WHEN_MANUAL, WHEN_NEVER})


@dataclass(frozen=True)
class Rule:
    """
    Par (condição, ação) de uma sequência de rules.

    Uma rule casa quando todas as condições declaradas são verdadeiras:
        - `condition`: expressão `if` (ou None quando ausente)
        - `changes`: globs casados contra os arquivos alterados
        - `exists`: globs casados contra os arquivos do repositório

    Uma rule sem nenhuma condição é o default final da sequência.

    Campos de ação:
        - when: on_success | always | on_failure | manual | never
        - variables: variáveis adicionadas ao Job quando a rule casa
        - allow_failure: sobrescreve `allow_failure` do Job quando casa
    """
    condition: Optional[str] = None
    changes: Tuple[str, ...] = ()
    exists: Tuple[str, ...] = ()
    when: str = WHEN_ON_SUCCESS
    variables: Dict[str, str] = field(default_factory=dict)
    allow_failure: Optional[bool] = None

    @property
    def is_default(self) -> bool:
        return self.condition is None and not self.changes and not self.exists


@dataclass(frozen=True)
class CacheSpec:
    """Especificação de cache de um Job (chave templada + paths + política)."""
    key: str
    paths: Tuple[str, ...] = ()
    policy: CachePolicy = CachePolicy.PULL_PUSH


@dataclass(frozen=True)
class ArtifactSpec:
    """Especificação de artefatos de um Job."""
    paths: Tuple[str, ...] = ()
    dotenv: Optional[str] = None
    when: str = WHEN_ON_SUCCESS
    expire_in: Optional[str] = None


@dataclass(frozen=True)
class Need:
    """Aresta explícita de `needs`."""
    job: str
    artifacts: bool = True
    optional: bool = False


@dataclass(frozen=True)
class JobDefinition:
    """
    Definição declarada de um Job ou Template, antes da resolução de `extends`.

    `attributes` contém exatamente as chaves declaradas no documento;
    a ausência de uma chave é significativa para o merge de `extends`.
    """
    name: str
    attributes: Dict[str, Any]
    is_template: bool = False


@dataclass(frozen=True)
class JobSpec:
    """
    Job resolvido, tipado e imutável.

    Campos:
        - name / stage: identidade e Stage proprietário
        - script / before_script / after_script: linhas opacas
        - variables: variáveis resolvidas (global → templates → Job)
        - needs: None = dependência implícita da barreira de Stage;
          tupla (possivelmente vazia) = arestas explícitas
        - rules: sequência ordenada (only/except já compilados)
        - cache / artifacts: especificações de store
        - tags: restrições de posicionamento em executores
        - when: política de execução após as rules
        - allow_failure: falha não bloqueia dependentes
        - timeout: duração máxima em segundos (None = default do runner)
        - image / environment: identificadores opacos

    Invariantes:
        - Um JobSpec nunca é um Template
        - Um JobSpec nunca é alterado após a construção do grafo
    """
    name: str
    stage: str
    script: Tuple[str, ...]
    before_script: Tuple[str, ...] = ()
    after_script: Tuple[str, ...] = ()
    variables: Dict[str, str] = field(default_factory=dict)
    needs: Optional[Tuple[Need, ...]] = None
    rules: Tuple[Rule, ...] = ()
    cache: Tuple[CacheSpec, ...] = ()
    artifacts: Optional[ArtifactSpec] = None
    tags: Tuple[str, ...] = ()
    when: str = WHEN_ON_SUCCESS
    allow_failure: bool = False
    timeout: Optional[float] = None
    image: Optional[str] = None
    environment: Optional[str] = None

    @property
    def is_manual(self) -> bool:
        return self.when == WHEN_MANUAL

    @property
    def commands(self) -> List[str]:
        return list(self.before_script) + list(self.script)


@dataclass(frozen=True)
class PipelineSpec:
    """
    Documento de pipeline validado estruturalmente.

    `definitions` preserva a ordem de declaração e contém Jobs e Templates;
    `default` contém os atributos herdados por todos os Jobs.
    """
    stages: List[str]
    variables: Dict[str, str] = field(default_factory=dict)
    workflow: Optional[Tuple[Rule, ...]] = None
    default: Dict[str, Any] = field(default_factory=dict)
    definitions: Dict[str, JobDefinition] = field(default_factory=dict)

    @property
    def jobs(self) -> List[JobDefinition]:
        return [d for d in self.definitions.values() if not d.is_template]

    @property
    def templates(self) -> List[JobDefinition]:
        return [d for d in self.definitions.values() if d.is_template]


@dataclass(frozen=True)
class JobResult:
    """
    Resultado imutável de um Job em um pipeline.

    `reason` descreve a causa de estados não bem-sucedidos
    (ex.: script_failed, timeout, dependency_failed, executor_unavailable,
    artifact_missing, canceled, blocked).
    """
    name: str
    stage: str
    status: JobStatus
    reason: Optional[str] = None
    exit_code: Optional[int] = None
    output: str = ""
    started_at: Optional[str] = None
    finished_at: Optional[str] = None
    allow_failure: bool = False
    warnings: List[str] = field(default_factory=list)
    error: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "stage": self.stage,
            "status": self.status.value,
            "reason": self.reason,
            "exit_code": self.exit_code,
            "started_at": self.started_at,
            "finished_at": self.finished_at,
            "allow_failure": self.allow_failure,
            "warnings": list(self.warnings),
            "error": dict(self.error) if self.error else None,
        }


@dataclass(frozen=True)
class PipelineResult:
    """Resultado agregado da execução de um pipeline."""
    pipeline_id: str
    status: PipelineStatus
    jobs: Dict[str, JobResult] = field(default_factory=dict)

    def status_of(self, job_name: str) -> JobStatus:
        return self.jobs[job_name].status
