# src/lattice_ci/core/executor/base.py
"""
Contrato de Executor Adapter e pool de executores do Lattice CI.

O Executor Adapter é a fronteira com os backends de execução (shell local,
container, orquestrador). O core entrega a ele uma lista opaca de comandos,
um ambiente de variáveis, uma imagem opcional e restrições de tags, e
recebe de volta um exit code e a saída capturada.

Responsabilidades deste módulo:
    - `ExecutionRequest` / `ExecutionOutcome`: tipos da fronteira
    - `ExecutorAdapter`: protocolo estrutural (@runtime_checkable)
    - `ExecutorPool`: seleção por tags, retry de falhas transitórias com
      backoff exponencial e roteamento do hook de cancelamento

Política de tags (v1):
    - Job com tags → executores cujas tags contêm todas as tags do Job
    - Job sem tags → executores com `run_untagged = True`

Política de retry (v1):
    - apenas `ExecutorTransientError` é repetido
    - até `retry_attempts` novas tentativas, com espera
      `retry_backoff * 2**tentativa`, alternando entre executores compatíveis
    - esgotadas as tentativas → `ExecutorUnavailable`

Limites explícitos:
    - Não interpreta scripts
    - Não decide o estado do Job (responsabilidade do Scheduler)
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, FrozenSet, Iterable, List, Optional, Protocol, Tuple, runtime_checkable

from lattice_ci.core.exceptions import ExecutorTransientError, ExecutorUnavailable
from lattice_ci.core.pipeline.context import RunContext


@dataclass(frozen=True)
class ExecutionRequest:
    """Pedido de execução entregue a um executor."""
    job_name: str
    commands: Tuple[str, ...]
    env: Dict[str, str] = field(default_factory=dict)
    workdir: Optional[str] = None
    image: Optional[str] = None
    tags: FrozenSet[str] = frozenset()
    timeout: Optional[float] = None


@dataclass(frozen=True)
class ExecutionOutcome:
    """Resultado de uma execução: exit code e saída capturada."""
    exit_code: int
    output: str = ""
    canceled: bool = False

    @property
    def succeeded(self) -> bool:
        return self.exit_code == 0 and not self.canceled


@runtime_checkable
class ExecutorAdapter(Protocol):
    """
    Contrato canônico de um executor do Lattice CI.

    Atributos obrigatórios:
        - name: identificador do executor
        - tags: tags de posicionamento oferecidas
        - run_untagged: aceita Jobs sem tags

    Decisões arquiteturais:
        - Comandos são executados em sequência; o primeiro exit code
          diferente de zero encerra a execução
        - `cancel` é best-effort e pode ser chamado de outra thread
        - Falhas de conexão devem ser levantadas como ExecutorTransientError
    """

    name: str
    tags: FrozenSet[str]
    run_untagged: bool

    def supports(self, request: ExecutionRequest) -> bool:
        """Indica se o executor aceita o pedido (ex.: imagem suportada)."""
        ...

    def execute(self, request: ExecutionRequest) -> ExecutionOutcome:
        """Executa os comandos do pedido e retorna o resultado."""
        ...

    def cancel(self, job_name: str) -> None:
        """Solicita a interrupção de um Job em execução (best-effort)."""
        ...


def tags_satisfied(offered: Iterable[str], run_untagged: bool, required: Iterable[str]) -> bool:
    required_set = set(required)
    if not required_set:
        return bool(run_untagged)
    return required_set <= set(offered)


class ExecutorPool:
    """
    Pool de executores registrados.

    Args:
        adapters: executores disponíveis, em ordem de preferência.
        retry_attempts: novas tentativas após falha transitória.
        retry_backoff: espera base (segundos) do backoff exponencial.
        sleep: função de espera (injetável em testes).
    """

    def __init__(
        self,
        adapters: Iterable[ExecutorAdapter] = (),
        *,
        retry_attempts: int = 3,
        retry_backoff: float = 0.5,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.adapters: List[ExecutorAdapter] = []
        self.retry_attempts = int(retry_attempts)
        self.retry_backoff = float(retry_backoff)
        self._sleep = sleep
        self._running: Dict[str, ExecutorAdapter] = {}
        self._lock = threading.Lock()
        for adapter in adapters:
            self.register(adapter)

    def register(self, adapter: ExecutorAdapter) -> None:
        if not isinstance(adapter, ExecutorAdapter):
            raise TypeError(f"{adapter!r} does not implement ExecutorAdapter")
        self.adapters.append(adapter)

    def matching(self, tags: Iterable[str]) -> List[ExecutorAdapter]:
        required = list(tags)
        return [a for a in self.adapters if tags_satisfied(a.tags, a.run_untagged, required)]

    def has_match(self, tags: Iterable[str]) -> bool:
        return bool(self.matching(tags))

    def acquire(self, tags: Iterable[str]) -> ExecutorAdapter:
        """
        Retorna o primeiro executor cujas tags cobrem `tags`.

        Raises:
            ExecutorUnavailable: nenhum executor compatível.
        """
        required = sorted(set(tags))
        candidates = self.matching(required)
        if not candidates:
            raise ExecutorUnavailable(
                f"no executor matches tags {required}",
                details={"tags": required},
                hint="Registre um executor cujas tags cubram as tags do Job.",
            )
        return candidates[0]

    def execute(self, request: ExecutionRequest, ctx: Optional[RunContext] = None) -> ExecutionOutcome:
        """
        Executa um pedido em um executor compatível, com retry de falhas transitórias.

        Raises:
            ExecutorUnavailable: nenhum executor compatível, ou tentativas esgotadas.
        """
        self.acquire(request.tags)
        candidates = [a for a in self.matching(request.tags) if a.supports(request)]
        if not candidates:
            raise ExecutorUnavailable(
                f"no executor supports job '{request.job_name}'",
                details={"job": request.job_name, "tags": sorted(request.tags), "image": request.image},
            )

        last_error: Optional[ExecutorTransientError] = None
        for attempt in range(self.retry_attempts + 1):
            adapter = candidates[attempt % len(candidates)]
            with self._lock:
                self._running[request.job_name] = adapter
            try:
                return adapter.execute(request)
            except ExecutorTransientError as e:
                last_error = e
                if attempt >= self.retry_attempts:
                    break
                delay = self.retry_backoff * (2 ** attempt)
                if ctx is not None:
                    ctx.log(
                        job_id=request.job_name,
                        level="WARNING",
                        message=f"transient executor error on '{adapter.name}', retrying in {delay:.2f}s",
                        attempt=attempt + 1,
                        reason=str(e),
                    )
                self._sleep(delay)
            finally:
                with self._lock:
                    self._running.pop(request.job_name, None)

        raise ExecutorUnavailable(
            f"executor unavailable for job '{request.job_name}' after {self.retry_attempts + 1} attempts",
            details={
                "job": request.job_name,
                "attempts": self.retry_attempts + 1,
                "reason": str(last_error) if last_error else None,
            },
        )

    def cancel(self, job_name: str) -> None:
        """Encaminha o cancelamento ao executor que está rodando o Job."""
        with self._lock:
            adapter = self._running.get(job_name)
        if adapter is not None:
            adapter.cancel(job_name)
