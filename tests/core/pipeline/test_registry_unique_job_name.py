# tests/core/pipeline/test_registry_unique_job_name.py
"""
Testes do JobRegistry.

Os testes asseguram que:
- nomes de Jobs são únicos
- palavras-chave do documento não podem nomear Jobs
- a ordem de registro é preservada
"""

import pytest

try:
    from lattice_ci.core.config.errors import ReservedJobNameError
    from lattice_ci.core.pipeline.registry import DuplicateJobNameError, JobRegistry
    from lattice_ci.core.pipeline.types import JobDefinition
except Exception as e:  # noqa: BLE001
    JobRegistry = None
    _IMPORT_ERR = e
else:
    _IMPORT_ERR = None


def _require_imports():
    if _IMPORT_ERR is not None:
        pytest.fail(f"Missing registry module: {_IMPORT_ERR}")


def test_registry_preserves_order_and_filters_templates():
    _require_imports()
    reg = JobRegistry()
    reg.add(JobDefinition(name="build", attributes={"script": ["make"]}))
    reg.add(JobDefinition(name=".base", attributes={}, is_template=True))
    reg.add(JobDefinition(name="test", attributes={"script": ["make test"]}))

    assert [d.name for d in reg.list()] == ["build", ".base", "test"]
    assert [d.name for d in reg.jobs()] == ["build", "test"]
    assert "build" in reg
    assert reg.get(".base").is_template


def test_duplicate_job_name_raises():
    _require_imports()
    reg = JobRegistry()
    reg.add(JobDefinition(name="build", attributes={}))
    with pytest.raises(DuplicateJobNameError):
        reg.add(JobDefinition(name="build", attributes={}))


@pytest.mark.parametrize("name", ["stages", "variables", "workflow", "default", "include"])
def test_reserved_names_raise(name):
    _require_imports()
    with pytest.raises(ReservedJobNameError):
        JobRegistry().add(JobDefinition(name=name, attributes={"script": ["x"]}))
