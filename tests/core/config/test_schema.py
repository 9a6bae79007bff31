# tests/core/config/test_schema.py
"""
Testes do schema do documento de pipeline.

Este módulo valida a conversão do documento declarativo em estruturas
tipadas (`PipelineSpec`, `JobSpec`), garantindo que:
- chaves globais nunca são tratadas como Jobs
- Templates (nomes iniciados por `.`) carregam a flag `is_template`
- `.pre` e `.post` envolvem os Stages declarados
- atributos inválidos ou não suportados são erros fatais
- `only`/`except` são compilados em rules equivalentes

Limites explícitos:
    - Não valida `extends` nem `needs` entre Jobs (ver testes do grafo)
"""

import pytest

try:
    from lattice_ci.core.config.schema import (
        DEFAULT_STAGES,
        materialize_job,
        parse_duration,
        parse_pipeline_document,
        parse_variables,
    )
    from lattice_ci.core.config.errors import (
        InvalidJobDefinitionError,
        ReservedJobNameError,
        RuleEvaluationError,
    )
    from lattice_ci.core.pipeline.types import CachePolicy, Need, WHEN_NEVER
except Exception as e:  # noqa: BLE001
    parse_pipeline_document = None
    _IMPORT_ERR = e
else:
    _IMPORT_ERR = None


def _require_imports():
    if _IMPORT_ERR is not None:
        pytest.fail(
            "Missing schema module. Implement:\n"
            "- src/lattice_ci/core/config/schema.py (parse_pipeline_document, materialize_job)\n"
            f"Import error: {_IMPORT_ERR}"
        )


STAGES = [".pre", "build", "test", "deploy", ".post"]


def test_document_separates_globals_jobs_and_templates():
    """
    Chaves globais, Jobs e Templates são separados preservando a ordem de declaração.

    Invariantes:
        - `variables`, `stages` e `default` nunca viram Jobs
        - Templates nunca são Jobs executáveis
        - Chaves ocultas que não são mapas (âncoras YAML) são ignoradas
    """
    _require_imports()
    doc = {
        "stages": ["build", "test"],
        "variables": {"GLOBAL": "1", "FLAG": True},
        ".anchors": ["echo anchor"],
        ".base": {"tags": ["linux"]},
        "compile": {"stage": "build", "script": "make"},
        "unit": {"script": ["pytest"]},
    }

    spec = parse_pipeline_document(doc)

    assert spec.stages == [".pre", "build", "test", ".post"]
    assert spec.variables == {"GLOBAL": "1", "FLAG": "true"}
    assert list(spec.definitions) == [".base", "compile", "unit"]
    assert [d.name for d in spec.templates] == [".base"]
    assert [d.name for d in spec.jobs] == ["compile", "unit"]


def test_default_stages_when_absent():
    _require_imports()
    spec = parse_pipeline_document({"job": {"script": ["true"]}})
    assert spec.stages == DEFAULT_STAGES


def test_types_is_an_alias_of_stages():
    _require_imports()
    spec = parse_pipeline_document({"types": ["lint"], "job": {"stage": "lint", "script": ["true"]}})
    assert spec.stages == [".pre", "lint", ".post"]


def test_global_keyword_used_as_job_is_rejected():
    _require_imports()
    with pytest.raises(ReservedJobNameError):
        parse_pipeline_document({"variables": {"script": ["echo"]}})


def test_variable_named_script_is_not_a_job():
    """Uma variável global chamada `script` é só uma variável."""
    _require_imports()
    spec = parse_pipeline_document(
        {"variables": {"script": "deploy.sh"}, "deploy": {"script": ["sh $script"]}}
    )
    assert spec.variables == {"script": "deploy.sh"}
    assert list(spec.definitions) == ["deploy"]


def test_unsupported_global_include_is_rejected():
    _require_imports()
    with pytest.raises(InvalidJobDefinitionError):
        parse_pipeline_document({"include": "other.yml", "job": {"script": ["true"]}})


def test_legacy_global_keys_fold_into_default():
    _require_imports()
    spec = parse_pipeline_document(
        {
            "image": "python:3.12",
            "default": {"tags": ["docker"]},
            "job": {"script": ["true"]},
        }
    )
    assert spec.default == {"tags": ["docker"], "image": "python:3.12"}


def test_materialize_job_defaults():
    """
    Um Job mínimo recebe os defaults canônicos.

    Decisões arquiteturais:
        - Stage default: `test`
        - `needs` ausente: None (barreira de Stage)
        - sem rules: uma rule default com ação `on_success`
    """
    _require_imports()
    job = materialize_job("unit", {"script": ["pytest -q"]}, STAGES)

    assert job.stage == "test"
    assert job.script == ("pytest -q",)
    assert job.needs is None
    assert job.when == "on_success"
    assert job.allow_failure is False
    assert len(job.rules) == 1 and job.rules[0].is_default


def test_materialize_job_full_attributes():
    _require_imports()
    job = materialize_job(
        "deploy",
        {
            "stage": "deploy",
            "before_script": ["set -e", ["echo nested"]],
            "script": "./deploy.sh",
            "after_script": ["echo done"],
            "variables": {"TARGET": {"value": "prod", "description": "where"}},
            "needs": ["build", {"job": "lint", "artifacts": False, "optional": True}],
            "cache": {"key": "deps-$CI_COMMIT_REF_NAME", "paths": ["vendor/"], "policy": "pull"},
            "artifacts": {"paths": ["out/"], "reports": {"dotenv": "build.env"}, "expire_in": "1 week"},
            "tags": ["prod"],
            "timeout": "1h 30m",
            "image": {"name": "alpine:3"},
            "environment": "production",
        },
        STAGES,
    )

    assert job.before_script == ("set -e", "echo nested")
    assert job.commands == ["set -e", "echo nested", "./deploy.sh"]
    assert job.variables == {"TARGET": "prod"}
    assert job.needs == (Need("build"), Need("lint", artifacts=False, optional=True))
    assert job.cache[0].policy == CachePolicy.PULL
    assert job.artifacts.dotenv == "build.env"
    assert job.artifacts.expire_in == "1 week"
    assert job.timeout == 5400.0
    assert job.image == "alpine:3"
    assert job.environment == "production"


def test_manual_job_allows_failure_by_default():
    _require_imports()
    job = materialize_job("release", {"script": ["x"], "when": "manual"}, STAGES)
    assert job.allow_failure is True

    with_rules = materialize_job(
        "release", {"script": ["x"], "rules": [{"when": "manual"}]}, STAGES
    )
    assert with_rules.allow_failure is False


@pytest.mark.parametrize(
    "attributes",
    [
        {},
        {"script": []},
        {"script": ["x"], "stage": "unknown"},
        {"script": ["x"], "when": "sometimes"},
        {"script": ["x"], "retry": 2},
        {"script": ["x"], "colour": "blue"},
        {"script": ["x"], "timeout": "soon"},
        {"script": ["x"], "needs": ["a", "a"]},
        {"script": ["x"], "cache": {"key": "k", "policy": "push-pull"}},
        {"script": ["x"], "artifacts": {"reports": {"dotenv": ["a.env", "b.env"]}}},
        {"script": ["x"], "rules": [{"if": "$A"}], "only": ["main"]},
        {"script": ["x"], "variables": {"bad-name": "1"}},
    ],
)
def test_invalid_job_definitions_are_rejected(attributes):
    _require_imports()
    with pytest.raises(InvalidJobDefinitionError):
        materialize_job("job", attributes, STAGES)


def test_malformed_rule_expression_names_the_job():
    _require_imports()
    with pytest.raises(RuleEvaluationError) as exc:
        materialize_job("lint", {"script": ["x"], "rules": [{"if": '$A == "1" &&'}]}, STAGES)
    assert exc.value.job == "lint"
    assert "lint" in str(exc.value)


def test_only_except_are_compiled_into_rules():
    _require_imports()
    job = materialize_job(
        "deploy",
        {"script": ["x"], "only": ["main"], "except": {"variables": ['$SKIP == "1"']}},
        STAGES,
    )
    assert [r.when for r in job.rules] == [WHEN_NEVER, "on_success"]
    assert job.rules[0].condition == '$SKIP == "1"'
    assert job.rules[1].condition == '$CI_COMMIT_REF_NAME == "main"'


@pytest.mark.parametrize(
    "value,expected",
    [(30, 30.0), ("90", 90.0), ("2m30s", 150.0), ("1h 30m", 5400.0), ("1 day", 86400.0)],
)
def test_parse_duration(value, expected):
    _require_imports()
    assert parse_duration(value) == expected


def test_parse_duration_rejects_non_positive():
    _require_imports()
    with pytest.raises(InvalidJobDefinitionError):
        parse_duration(0)


def test_parse_variables_normalizes_scalars():
    _require_imports()
    out = parse_variables({"A": 1, "B": None, "C": False, "D": 1.5}, owner="job")
    assert out == {"A": "1", "B": "", "C": "false", "D": "1.5"}
