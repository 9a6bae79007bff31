# tests/conftest.py
"""
Fixtures compartilhados para testes do Lattice CI.

Este módulo define fixtures reutilizáveis que fornecem:
- configurações mínimas e determinísticas do runner
- TriggerContext e RunContext controlados
- um executor falso (duck-typed) que cumpre o contrato ExecutorAdapter
- fábricas de Engine isoladas em diretórios temporários

O objetivo destas fixtures é permitir testes do core (config, rules,
engine, store e traceability) sem depender de:
- processos reais (exceto nos testes do ShellExecutor)
- variáveis de ambiente
- estado compartilhado entre testes

Decisões arquiteturais:
    - Fixtures são mantidas simples e explícitas
    - O executor falso é retornado como *classe*, instanciada por cada teste
    - Imports do core são realizados de forma lazy para melhorar a clareza
      de erros durante falhas

Invariantes:
    - Nenhuma fixture executa pipeline real
    - Todo estado persistente fica sob `tmp_path`

Limites explícitos:
    - Não substituir testes de integração do ShellExecutor
    - Não conter lógica de domínio
"""

import threading
from datetime import datetime, timezone

import pytest


# =====================================================
# Config fixtures
# =====================================================

@pytest.fixture
def project_like_config_defaults_yaml() -> str:
    """
    YAML de defaults do runner semelhante ao uso real do projeto.

    Representa o conteúdo típico de um `lattice.defaults.yaml`, base sobre
    a qual overrides locais são aplicados via deep-merge.

    Returns:
        str: Conteúdo YAML de defaults.
    """
    return """\
engine:
  max_concurrency: 2
  default_timeout: 600
executor:
  retry_attempts: 1
  shell: /bin/sh
store:
  root: .lattice
"""


@pytest.fixture
def project_like_config_local_yaml() -> str:
    """YAML de overrides locais (apenas chaves alteradas)."""
    return """\
engine:
  max_concurrency: 8
store:
  root: /var/lib/lattice
"""


@pytest.fixture
def runner_config(tmp_path) -> dict:
    """
    Configuração resolvida mínima do runner, isolada em `tmp_path`.

    Decisões arquiteturais:
        - `poll_interval` baixo para manter os testes rápidos
        - `executor_wait_seconds` baixo para exercitar `executor_unavailable`
        - retry sem espera real (backoff zero)

    Returns:
        dict: Configuração pronta para `Engine(config=...)`.
    """
    return {
        "engine": {
            "max_concurrency": 4,
            "default_timeout": 30.0,
            "executor_wait_seconds": 0.2,
            "poll_interval": 0.01,
        },
        "executor": {"retry_attempts": 2, "retry_backoff": 0.0, "shell": "/bin/sh"},
        "store": {"root": str(tmp_path / "state")},
    }


# =====================================================
# Pipeline fixtures (TriggerContext + RunContext)
# =====================================================

@pytest.fixture
def make_trigger():
    """
    Fábrica de TriggerContext com defaults de um push na branch `main`.

    Returns:
        Callable[..., TriggerContext]
    """
    from lattice_ci.core.pipeline.context import TriggerContext

    def _make(**overrides):
        params = {"pipeline_id": "pl-test-001", "source": "push", "branch": "main"}
        params.update(overrides)
        return TriggerContext(**params)

    return _make


@pytest.fixture
def trigger(make_trigger):
    """TriggerContext determinístico (push em `main`, diff desconhecido)."""
    return make_trigger()


@pytest.fixture
def run_ctx(trigger, runner_config):
    """
    RunContext determinístico para testes.

    `pipeline_id` e `created_at` são fixos para garantir determinismo.
    """
    from lattice_ci.core.pipeline.context import RunContext

    return RunContext(
        pipeline_id=trigger.pipeline_id,
        created_at=datetime(2026, 1, 16, 0, 0, 0, tzinfo=timezone.utc),
        config=runner_config,
        trigger=trigger,
        meta={"source": "pytest"},
    )


# =====================================================
# Executor fixtures
# =====================================================

@pytest.fixture
def FakeExecutor():
    """
    Fixture factory que fornece um executor falso e duck-typed.

    A classe retornada cumpre o contrato `ExecutorAdapter`:
    - `name`, `tags`, `run_untagged`
    - `supports(request)`, `execute(request)`, `cancel(job_name)`

    Comportamento:
    - `behaviors[job_name]` define o resultado de cada Job: um inteiro
      (exit code) ou um callable `(request) -> int | ExecutionOutcome`
    - Jobs sem comportamento terminam com exit code 0
    - `block` contém Jobs que só terminam quando cancelados
    - todas as chamadas ficam registradas em `requests` (thread-safe)

    Invariantes:
        - `cancel` libera imediatamente um Job bloqueado
        - Não executa processos nem acessa a rede

    Returns:
        type: Classe _FakeExecutor.
    """
    from lattice_ci.core.executor.base import ExecutionOutcome

    class _FakeExecutor:
        def __init__(self, behaviors=None, *, name="fake", tags=(), run_untagged=True, block=()):
            self.name = name
            self.tags = frozenset(tags)
            self.run_untagged = run_untagged
            self.behaviors = dict(behaviors or {})
            self.block = set(block)
            self.requests = []
            self.running = set()
            self.max_parallel = 0
            self.canceled = []
            self._lock = threading.Lock()
            self._cancel_events = {}

        def supports(self, request):
            return True

        def calls_for(self, job_name):
            with self._lock:
                return [r for r in self.requests if r.job_name == job_name]

        def ran(self, job_name):
            return bool(self.calls_for(job_name))

        def execute(self, request):
            event = threading.Event()
            with self._lock:
                self.requests.append(request)
                self._cancel_events[request.job_name] = event
                self.running.add(request.job_name)
                self.max_parallel = max(self.max_parallel, len(self.running))
            try:
                if request.job_name in self.block:
                    event.wait(timeout=10)
                    return ExecutionOutcome(exit_code=130, output="", canceled=event.is_set())
                behavior = self.behaviors.get(request.job_name, 0)
                outcome = behavior(request) if callable(behavior) else behavior
                if isinstance(outcome, ExecutionOutcome):
                    return outcome
                return ExecutionOutcome(exit_code=int(outcome or 0), output=f"ran {request.job_name}\n")
            finally:
                with self._lock:
                    self.running.discard(request.job_name)

        def cancel(self, job_name):
            with self._lock:
                self.canceled.append(job_name)
                event = self._cancel_events.get(job_name)
            if event is not None:
                event.set()

    return _FakeExecutor


@pytest.fixture
def make_engine(runner_config):
    """
    Fábrica de Engine com pool de executores injetado.

    Returns:
        Callable[[adapter, ...], Engine]
    """
    from lattice_ci.core.engine.engine import Engine
    from lattice_ci.core.executor.base import ExecutorPool

    def _make(*adapters, config=None, **pool_kwargs):
        pool_kwargs.setdefault("retry_backoff", 0.0)
        pool = ExecutorPool(adapters, **pool_kwargs)
        return Engine(config=config or runner_config, pool=pool)

    return _make
