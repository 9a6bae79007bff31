# tests/core/engine/test_scheduler_manual_cancel.py
"""
Testes de Jobs manuais, cancelamento e concorrência do Scheduler.

Os testes asseguram que:
- Jobs manuais aguardam trigger explícito (MANUAL_WAIT)
- manuais não bloqueantes não impedem o sucesso do pipeline
- manuais bloqueantes deixam o pipeline BLOCKED
- triggers podem chegar antes da execução ou de outra thread
- `cancel()` leva todo Job não terminal a CANCELED e aciona o executor
- `max_concurrency` limita Jobs simultâneos
- a prioridade de despacho favorece Jobs com maior fan-out
"""

import copy
import threading
import time

import pytest

try:
    from lattice_ci.core.pipeline.types import JobStatus, PipelineStatus
except Exception as e:  # noqa: BLE001
    JobStatus = None
    _IMPORT_ERR = e
else:
    _IMPORT_ERR = None


def _require_imports():
    if _IMPORT_ERR is not None:
        pytest.fail(f"Missing scheduler/engine modules: {_IMPORT_ERR}")


def _deploy_doc(**ship):
    job = {"stage": "deploy", "script": ["make ship"], "when": "manual"}
    job.update(ship)
    return {
        "stages": ["build", "deploy"],
        "compile": {"stage": "build", "script": ["make"]},
        "ship": job,
    }


def test_non_blocking_manual_job_waits_without_failing(FakeExecutor, make_engine, trigger):
    _require_imports()
    fake = FakeExecutor()
    result = make_engine(fake).run(_deploy_doc(), trigger).result

    assert result.status == PipelineStatus.SUCCESS
    assert result.jobs["ship"].status == JobStatus.MANUAL_WAIT
    assert result.jobs["ship"].reason == "manual"
    assert not fake.ran("ship")


def test_blocking_manual_job_blocks_the_pipeline(FakeExecutor, make_engine, trigger):
    _require_imports()
    doc = _deploy_doc(allow_failure=False)
    doc["announce"] = {"stage": ".post", "script": ["notify"]}
    fake = FakeExecutor()
    result = make_engine(fake).run(doc, trigger).result

    assert result.status == PipelineStatus.BLOCKED
    assert result.jobs["ship"].status == JobStatus.MANUAL_WAIT
    assert result.jobs["announce"].status == JobStatus.PENDING
    assert result.jobs["announce"].reason == "blocked"


def test_manual_trigger_before_run(FakeExecutor, make_engine, trigger):
    """Um trigger recebido antes de as dependências terminarem é aplicado depois."""
    _require_imports()
    fake = FakeExecutor()
    run = make_engine(fake).run(_deploy_doc(), trigger, manual=["ship"])

    assert run.result.status_of("ship") == JobStatus.SUCCEEDED
    assert fake.ran("ship")
    messages = [e["message"] for e in run.ctx.events if e.get("job_id") == "ship"]
    assert "manual trigger recorded before dependencies finished" in messages


def test_manual_trigger_from_another_thread(FakeExecutor, make_engine, trigger):
    _require_imports()
    fake = FakeExecutor()

    def later(scheduler):
        threading.Timer(0.1, scheduler.trigger_manual, args=("ship",)).start()

    result = make_engine(fake).run(
        _deploy_doc(), trigger, wait_for_manual=True, on_scheduler=later
    ).result

    assert result.status == PipelineStatus.SUCCESS
    assert result.status_of("ship") == JobStatus.SUCCEEDED


def test_trigger_manual_validates_the_job(FakeExecutor, make_engine, trigger):
    _require_imports()
    seen = []

    def probe(scheduler):
        with pytest.raises(KeyError):
            scheduler.trigger_manual("ghost")
        with pytest.raises(ValueError):
            scheduler.trigger_manual("compile")
        seen.append(scheduler.status("ship"))

    make_engine(FakeExecutor()).run(_deploy_doc(), trigger, on_scheduler=probe)
    assert seen == [JobStatus.PENDING]


def test_cancel_marks_every_non_terminal_job(FakeExecutor, make_engine, trigger):
    """
    `cancel()` durante a execução.

    Invariantes:
        - o Job em execução recebe o hook de cancelamento do executor
        - Jobs ainda não iniciados passam a CANCELED sem executar
        - o pipeline termina CANCELED
    """
    _require_imports()
    doc = {
        "stages": ["build", "test"],
        "slow": {"stage": "build", "script": ["sleep 60"]},
        "unit": {"stage": "test", "script": ["pytest"]},
    }
    fake = FakeExecutor(block=["slow"])

    def cancel_when_running(scheduler):
        def watch():
            deadline = time.monotonic() + 5
            while "slow" not in fake.running and time.monotonic() < deadline:
                time.sleep(0.01)
            scheduler.cancel()

        threading.Thread(target=watch, daemon=True).start()

    run = make_engine(fake).run(doc, trigger, on_scheduler=cancel_when_running)
    result = run.result

    assert result.status == PipelineStatus.CANCELED
    assert result.jobs["slow"].status == JobStatus.CANCELED
    assert result.jobs["unit"].status == JobStatus.CANCELED
    assert result.jobs["unit"].error["type"] == "PIPELINE_CANCELED"
    assert fake.canceled == ["slow"]
    assert not fake.ran("unit")
    assert run.record.pipeline["status"] == "canceled"


def test_max_concurrency_is_respected(FakeExecutor, make_engine, runner_config, trigger):
    _require_imports()
    config = copy.deepcopy(runner_config)
    config["engine"]["max_concurrency"] = 2

    def slow(request):
        time.sleep(0.05)
        return 0

    names = [f"unit{i}" for i in range(6)]
    doc = {name: {"script": ["pytest"]} for name in names}
    fake = FakeExecutor({name: slow for name in names})
    result = make_engine(fake, config=config).run(doc, trigger).result

    assert result.status == PipelineStatus.SUCCESS
    assert 1 <= fake.max_parallel <= 2


def test_dispatch_prefers_larger_fan_out(FakeExecutor, make_engine, runner_config, trigger):
    _require_imports()
    config = copy.deepcopy(runner_config)
    config["engine"]["max_concurrency"] = 1
    doc = {
        "stages": ["build", "test"],
        "a_leaf": {"stage": "build", "script": ["true"]},
        "z_core": {"stage": "build", "script": ["true"]},
        "unit": {"stage": "test", "script": ["true"], "needs": ["z_core"]},
    }
    fake = FakeExecutor()
    make_engine(fake, config=config).run(doc, trigger)

    assert fake.requests[0].job_name == "z_core"
