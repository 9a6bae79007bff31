# tests/core/executor/test_executor_pool.py
"""
Testes do ExecutorPool.

Os testes asseguram que:
- apenas objetos que cumprem o contrato ExecutorAdapter são registrados
- a seleção por tags segue a política documentada
- falhas transitórias são repetidas com backoff exponencial
- tentativas esgotadas viram ExecutorUnavailable
- o cancelamento é roteado ao executor que está rodando o Job
"""

import pytest

try:
    from lattice_ci.core.exceptions import ExecutorTransientError, ExecutorUnavailable
    from lattice_ci.core.executor.base import ExecutionRequest, ExecutorPool, tags_satisfied
except Exception as e:  # noqa: BLE001
    ExecutorPool = None
    _IMPORT_ERR = e
else:
    _IMPORT_ERR = None


def _require_imports():
    if _IMPORT_ERR is not None:
        pytest.fail(
            "Missing executor contract. Implement:\n"
            "- src/lattice_ci/core/executor/base.py (ExecutorAdapter, ExecutorPool)\n"
            f"Import error: {_IMPORT_ERR}"
        )


def _request(job="unit", tags=()):
    return ExecutionRequest(job_name=job, commands=("true",), tags=frozenset(tags))


@pytest.mark.parametrize(
    "offered,run_untagged,required,expected",
    [
        ({"docker", "linux"}, False, {"docker"}, True),
        ({"docker"}, False, {"docker", "gpu"}, False),
        ({"docker"}, True, set(), True),
        ({"docker"}, False, set(), False),
    ],
)
def test_tags_satisfied(offered, run_untagged, required, expected):
    _require_imports()
    assert tags_satisfied(offered, run_untagged, required) is expected


def test_register_rejects_non_adapters():
    _require_imports()
    with pytest.raises(TypeError):
        ExecutorPool([object()])


def test_tagged_jobs_go_to_matching_executor(FakeExecutor):
    _require_imports()
    cpu = FakeExecutor(name="cpu", tags=["docker"])
    gpu = FakeExecutor(name="gpu", tags=["docker", "gpu"], run_untagged=False)
    pool = ExecutorPool([cpu, gpu], retry_backoff=0.0)

    pool.execute(_request("train", tags=["gpu"]))
    pool.execute(_request("lint"))

    assert gpu.ran("train") and not cpu.ran("train")
    assert cpu.ran("lint") and not gpu.ran("lint")
    assert pool.has_match(["docker"])
    assert not pool.has_match(["arm64"])


def test_no_matching_executor_raises(FakeExecutor):
    _require_imports()
    pool = ExecutorPool([FakeExecutor(tags=["docker"])])
    with pytest.raises(ExecutorUnavailable) as exc:
        pool.execute(_request(tags=["gpu"]))
    assert exc.value.details["tags"] == ["gpu"]


def test_transient_errors_retry_with_exponential_backoff(FakeExecutor):
    _require_imports()
    calls = []

    def flaky(request):
        calls.append(request.job_name)
        if len(calls) < 3:
            raise ExecutorTransientError("connection reset")
        return 0

    delays = []
    pool = ExecutorPool([FakeExecutor({"unit": flaky})], retry_attempts=3, retry_backoff=0.5, sleep=delays.append)
    outcome = pool.execute(_request())

    assert outcome.succeeded
    assert delays == [0.5, 1.0]


def test_retries_alternate_between_compatible_executors(FakeExecutor):
    _require_imports()

    def down(request):
        raise ExecutorTransientError("down")

    first = FakeExecutor({"unit": down}, name="first")
    second = FakeExecutor(name="second")
    pool = ExecutorPool([first, second], retry_attempts=1, sleep=lambda _: None)

    assert pool.execute(_request()).exit_code == 0
    assert first.ran("unit") and second.ran("unit")


def test_exhausted_retries_raise_executor_unavailable(FakeExecutor):
    _require_imports()

    def down(request):
        raise ExecutorTransientError("down")

    pool = ExecutorPool([FakeExecutor({"unit": down})], retry_attempts=2, sleep=lambda _: None)
    with pytest.raises(ExecutorUnavailable) as exc:
        pool.execute(_request())
    assert exc.value.details["attempts"] == 3
    assert exc.value.details["reason"] == "down"


def test_cancel_without_running_job_is_a_noop(FakeExecutor):
    _require_imports()
    fake = FakeExecutor()
    ExecutorPool([fake]).cancel("unit")
    assert fake.canceled == []
