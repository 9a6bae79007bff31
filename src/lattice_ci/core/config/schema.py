# src/lattice_ci/core/config/schema.py
"""
Schema do documento de pipeline do Lattice CI.

Este módulo converte o documento declarativo (dict carregado de YAML/JSON)
nas estruturas tipadas do Config Model:

    - `parse_pipeline_document(doc) -> PipelineSpec`
        separa chaves globais (stages, variables, workflow, default) das
        definições de Jobs e Templates, preservando a ordem de declaração
    - `materialize_job(name, attributes, stages) -> JobSpec`
        valida e tipa os atributos já resolvidos (após `extends`) de um Job

Chaves suportadas por Job (v1):
    script, before_script, after_script, stage, variables, needs, rules,
    only, except, cache, artifacts, tags, when, allow_failure, timeout,
    image, environment, extends

Decisões arquiteturais:
    - Templates são identificados pelo prefixo `.` apenas durante o parse;
      a partir daqui carregam a flag explícita `is_template`
    - Chaves globais legadas (`image`, `before_script`, `after_script`,
      `cache`) são tratadas como atributos de `default`
    - `stages` ausente → `.pre, build, test, deploy, .post`; `.pre` é sempre
      o primeiro Stage e `.post` o último
    - Job sem `stage` → `test`
    - `when: manual` sem rules implica `allow_failure: true` (não bloqueante),
      salvo declaração explícita
    - `only`/`except` são compilados para rules; combinar com `rules` é erro
    - Chaves desconhecidas ou fora do escopo (ex.: `include`, `services`,
      `retry`) são rejeitadas explicitamente

Invariantes:
    - Nenhum atributo inválido é corrigido silenciosamente
    - Toda mensagem de erro identifica o Job (ou a chave global) ofensivo

Limites explícitos:
    - Não resolve `extends` (ver core.engine.graph)
    - Não avalia rules
"""

from __future__ import annotations

import re
from typing import Any, Dict, List, Optional, Sequence, Tuple

from lattice_ci.core.pipeline.types import (
    ArtifactSpec,
    CachePolicy,
    CacheSpec,
    JOB_WHEN_VALUES,
    JobDefinition,
    JobSpec,
    Need,
    PipelineSpec,
    Rule,
    WHEN_ALWAYS,
    WHEN_MANUAL,
    WHEN_ON_FAILURE,
    WHEN_ON_SUCCESS,
)
from lattice_ci.core.rules.evaluator import compile_only_except, validate_rule

from .errors import (
    InvalidConfigRootTypeError,
    InvalidJobDefinitionError,
    ReservedJobNameError,
)


DEFAULT_STAGES: List[str] = [".pre", "build", "test", "deploy", ".post"]
DEFAULT_JOB_STAGE = "test"

# Chaves globais do documento (nunca são Jobs)
GLOBAL_KEYWORDS = frozenset(
    {"stages", "types", "variables", "workflow", "default", "include",
     "image", "services", "before_script", "after_script", "cache"}
)

# Chaves globais legadas equivalentes a `default:<chave>`
LEGACY_DEFAULT_KEYS = ("image", "before_script", "after_script", "cache")

DEFAULT_KEYS = frozenset(
    {"before_script", "after_script", "image", "tags", "cache", "artifacts", "timeout"}
)

JOB_KEYS = frozenset(
    {"script", "before_script", "after_script", "stage", "variables", "needs",
     "rules", "only", "except", "cache", "artifacts", "tags", "when",
     "allow_failure", "timeout", "image", "environment", "extends"}
)

UNSUPPORTED_KEYS = frozenset({"include", "services", "retry", "parallel", "trigger"})

RULE_KEYS = frozenset({"if", "changes", "exists", "when", "variables", "allow_failure"})

_VARIABLE_NAME = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


# ---------------------------------------------------------------------------
# Helpers de tipo
# ---------------------------------------------------------------------------

def _fail(owner: str, message: str) -> InvalidJobDefinitionError:
    return InvalidJobDefinitionError(f"Job '{owner}': {message}")


def _string_list(value: Any, *, owner: str, key: str) -> Tuple[str, ...]:
    if isinstance(value, str):
        return (value,)
    if isinstance(value, list) and all(isinstance(v, str) for v in value):
        return tuple(value)
    raise _fail(owner, f"'{key}' must be a string or a list of strings")


def _script_lines(value: Any, *, owner: str, key: str) -> Tuple[str, ...]:
    """Normaliza linhas de script; listas aninhadas (âncoras YAML) são achatadas."""
    if isinstance(value, str):
        return (value,)
    if not isinstance(value, list):
        raise _fail(owner, f"'{key}' must be a string or a list of strings")
    lines: List[str] = []
    for item in value:
        if isinstance(item, list):
            lines.extend(_script_lines(item, owner=owner, key=key))
        elif isinstance(item, str):
            lines.append(item)
        else:
            raise _fail(owner, f"'{key}' entries must be strings, got {type(item).__name__}")
    return tuple(lines)


def parse_variables(value: Any, *, owner: str) -> Dict[str, str]:
    """
    Normaliza um bloco `variables`.

    Valores aceitos: string, número, booleano, null ou mapa `{value: ...}`.
    Todos os valores resultantes são strings.
    """
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise _fail(owner, "'variables' must be a mapping")
    out: Dict[str, str] = {}
    for name, raw in value.items():
        if not isinstance(name, str) or not _VARIABLE_NAME.match(name):
            raise _fail(owner, f"invalid variable name {name!r}")
        if isinstance(raw, dict):
            if "value" not in raw:
                raise _fail(owner, f"variable '{name}' mapping must define 'value'")
            raw = raw["value"]
        if raw is None:
            out[name] = ""
        elif isinstance(raw, bool):
            out[name] = "true" if raw else "false"
        elif isinstance(raw, (str, int, float)):
            out[name] = str(raw)
        else:
            raise _fail(owner, f"variable '{name}' must be a scalar, got {type(raw).__name__}")
    return out


_DURATION_UNITS = {
    "s": 1, "sec": 1, "secs": 1, "second": 1, "seconds": 1,
    "m": 60, "min": 60, "mins": 60, "minute": 60, "minutes": 60,
    "h": 3600, "hr": 3600, "hrs": 3600, "hour": 3600, "hours": 3600,
    "d": 86400, "day": 86400, "days": 86400,
    "w": 604800, "wk": 604800, "week": 604800, "weeks": 604800,
}
_DURATION_TOKEN = re.compile(r"(\d+(?:\.\d+)?)\s*([a-z]*)")


def parse_duration(value: Any, *, owner: str = "timeout") -> float:
    """
    Converte uma duração em segundos.

    Formatos aceitos:
        - número (segundos): 90, 1.5
        - string numérica: "3600"
        - string com unidades: "1h 30m", "10 minutes", "2m30s", "1 day"

    Raises:
        InvalidJobDefinitionError: formato desconhecido ou duração não positiva.
    """
    if isinstance(value, bool):
        raise _fail(owner, f"invalid duration {value!r}")
    if isinstance(value, (int, float)):
        seconds = float(value)
    elif isinstance(value, str):
        text = value.strip().lower()
        pos = 0
        seconds = 0.0
        matched = False
        while pos < len(text):
            if text[pos] in " ,":
                pos += 1
                continue
            m = _DURATION_TOKEN.match(text, pos)
            if not m:
                raise _fail(owner, f"invalid duration {value!r}")
            unit = m.group(2) or "s"
            if unit not in _DURATION_UNITS:
                raise _fail(owner, f"unknown duration unit {unit!r} in {value!r}")
            seconds += float(m.group(1)) * _DURATION_UNITS[unit]
            matched = True
            pos = m.end()
        if not matched:
            raise _fail(owner, f"invalid duration {value!r}")
    else:
        raise _fail(owner, f"invalid duration {value!r}")

    if seconds <= 0:
        raise _fail(owner, f"duration must be positive, got {value!r}")
    return seconds


# ---------------------------------------------------------------------------
# Rules
# ---------------------------------------------------------------------------

def _paths_value(value: Any, *, owner: str, key: str) -> Tuple[str, ...]:
    if isinstance(value, dict):
        extra = sorted(set(value) - {"paths"})
        if extra:
            raise _fail(owner, f"unsupported '{key}' keys: {extra}")
        value = value.get("paths", [])
    return _string_list(value, owner=owner, key=key)


def parse_rule(raw: Any, *, owner: str) -> Rule:
    """Converte uma entrada de `rules` em `Rule` (ação default: on_success)."""
    if not isinstance(raw, dict):
        raise _fail(owner, "each rule must be a mapping")
    unknown = sorted(set(raw) - RULE_KEYS)
    if unknown:
        raise _fail(owner, f"unsupported rule keys: {unknown}")

    condition = raw.get("if")
    if condition is not None and not isinstance(condition, str):
        raise _fail(owner, "rule 'if' must be a string")

    allow_failure = raw.get("allow_failure")
    if allow_failure is not None and not isinstance(allow_failure, bool):
        raise _fail(owner, "rule 'allow_failure' must be a boolean")

    rule = Rule(
        condition=condition,
        changes=_paths_value(raw.get("changes", []), owner=owner, key="changes"),
        exists=_paths_value(raw.get("exists", []), owner=owner, key="exists"),
        when=raw.get("when", WHEN_ON_SUCCESS),
        variables=parse_variables(raw.get("variables"), owner=owner),
        allow_failure=allow_failure,
    )
    validate_rule(rule, owner=owner)
    return rule


def parse_rules(value: Any, *, owner: str) -> Tuple[Rule, ...]:
    if not isinstance(value, list):
        raise _fail(owner, "'rules' must be a list")
    return tuple(parse_rule(r, owner=owner) for r in value)


# ---------------------------------------------------------------------------
# Cache / artifacts / needs
# ---------------------------------------------------------------------------

def _parse_cache_entry(raw: Any, *, owner: str) -> CacheSpec:
    if not isinstance(raw, dict):
        raise _fail(owner, "'cache' entries must be mappings")
    unknown = sorted(set(raw) - {"key", "paths", "policy"})
    if unknown:
        raise _fail(owner, f"unsupported cache keys: {unknown}")
    key = raw.get("key", "default")
    if isinstance(key, (int, float)) and not isinstance(key, bool):
        key = str(key)
    if not isinstance(key, str) or not key.strip():
        raise _fail(owner, "cache 'key' must be a non-empty string")
    try:
        policy = CachePolicy(raw.get("policy", CachePolicy.PULL_PUSH.value))
    except ValueError:
        raise _fail(owner, f"unsupported cache policy {raw.get('policy')!r}") from None
    return CacheSpec(
        key=key,
        paths=_string_list(raw.get("paths", []), owner=owner, key="cache:paths"),
        policy=policy,
    )


def parse_cache(value: Any, *, owner: str) -> Tuple[CacheSpec, ...]:
    if value is None:
        return ()
    if isinstance(value, dict):
        return (_parse_cache_entry(value, owner=owner),)
    if isinstance(value, list):
        return tuple(_parse_cache_entry(v, owner=owner) for v in value)
    raise _fail(owner, "'cache' must be a mapping or a list of mappings")


def parse_artifacts(value: Any, *, owner: str) -> Optional[ArtifactSpec]:
    if value is None:
        return None
    if not isinstance(value, dict):
        raise _fail(owner, "'artifacts' must be a mapping")
    unknown = sorted(set(value) - {"paths", "reports", "when", "expire_in"})
    if unknown:
        raise _fail(owner, f"unsupported artifacts keys: {unknown}")

    dotenv: Optional[str] = None
    reports = value.get("reports")
    if reports is not None:
        if not isinstance(reports, dict):
            raise _fail(owner, "'artifacts:reports' must be a mapping")
        extra = sorted(set(reports) - {"dotenv"})
        if extra:
            raise _fail(owner, f"unsupported artifact reports: {extra}")
        if "dotenv" in reports:
            files = _string_list(reports["dotenv"], owner=owner, key="artifacts:reports:dotenv")
            if len(files) != 1:
                raise _fail(owner, "'artifacts:reports:dotenv' must name exactly one file")
            dotenv = files[0]

    when = value.get("when", WHEN_ON_SUCCESS)
    if when not in (WHEN_ON_SUCCESS, WHEN_ON_FAILURE, WHEN_ALWAYS):
        raise _fail(owner, f"unsupported artifacts 'when' {when!r}")

    expire_in = value.get("expire_in")
    if expire_in is not None:
        if isinstance(expire_in, str) and expire_in.strip().lower() == "never":
            expire_in = "never"
        else:
            parse_duration(expire_in, owner=owner)
            expire_in = str(expire_in)

    return ArtifactSpec(
        paths=_string_list(value.get("paths", []), owner=owner, key="artifacts:paths"),
        dotenv=dotenv,
        when=when,
        expire_in=expire_in,
    )


def parse_needs(value: Any, *, owner: str) -> Optional[Tuple[Need, ...]]:
    """`needs` ausente → None (barreira de Stage); lista vazia → início imediato."""
    if value is None:
        return None
    if not isinstance(value, list):
        raise _fail(owner, "'needs' must be a list")
    needs: List[Need] = []
    seen = set()
    for entry in value:
        if isinstance(entry, str):
            need = Need(job=entry)
        elif isinstance(entry, dict):
            unknown = sorted(set(entry) - {"job", "artifacts", "optional"})
            if unknown:
                raise _fail(owner, f"unsupported needs keys: {unknown}")
            job = entry.get("job")
            if not isinstance(job, str) or not job:
                raise _fail(owner, "needs entry must declare 'job'")
            artifacts = entry.get("artifacts", True)
            optional = entry.get("optional", False)
            if not isinstance(artifacts, bool) or not isinstance(optional, bool):
                raise _fail(owner, "needs 'artifacts'/'optional' must be booleans")
            need = Need(job=job, artifacts=artifacts, optional=optional)
        else:
            raise _fail(owner, "needs entries must be job names or mappings")
        if need.job in seen:
            raise _fail(owner, f"duplicate needs entry '{need.job}'")
        seen.add(need.job)
        needs.append(need)
    return tuple(needs)


def _name_field(value: Any, *, owner: str, key: str) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, dict):
        value = value.get("name")
    if not isinstance(value, str) or not value:
        raise _fail(owner, f"'{key}' must be a string or a mapping with 'name'")
    return value


# ---------------------------------------------------------------------------
# Job
# ---------------------------------------------------------------------------

def materialize_job(name: str, attributes: Dict[str, Any], stages: Sequence[str]) -> JobSpec:
    """
    Valida e tipa os atributos resolvidos de um Job.

    Args:
        name: nome do Job.
        attributes: atributos após a resolução de `default` e `extends`.
        stages: Stages declarados no documento (ordem canônica).

    Returns:
        JobSpec: Job tipado e imutável.

    Raises:
        InvalidJobDefinitionError: atributo ausente, inválido ou não suportado.
        RuleEvaluationError: rule com expressão malformada ou ação inválida.
    """
    unsupported = sorted(set(attributes) & UNSUPPORTED_KEYS)
    if unsupported:
        raise _fail(name, f"unsupported keywords: {unsupported}")
    unknown = sorted(set(attributes) - JOB_KEYS)
    if unknown:
        raise _fail(name, f"unknown keywords: {unknown}")

    if "script" not in attributes:
        raise _fail(name, "'script' is required")
    script = _script_lines(attributes["script"], owner=name, key="script")
    if not script:
        raise _fail(name, "'script' must not be empty")

    stage = attributes.get("stage", DEFAULT_JOB_STAGE)
    if not isinstance(stage, str) or stage not in stages:
        raise _fail(name, f"stage {stage!r} is not declared in stages {list(stages)}")

    when = attributes.get("when", WHEN_ON_SUCCESS)
    if when not in JOB_WHEN_VALUES:
        raise _fail(name, f"unsupported 'when' {when!r}")

    allow_failure = attributes.get("allow_failure")
    if allow_failure is None:
        allow_failure = when == WHEN_MANUAL and "rules" not in attributes
    elif not isinstance(allow_failure, bool):
        raise _fail(name, "'allow_failure' must be a boolean")

    if "rules" in attributes and ("only" in attributes or "except" in attributes):
        raise _fail(name, "'rules' cannot be combined with 'only'/'except'")
    if "rules" in attributes:
        rules = parse_rules(attributes["rules"], owner=name)
    else:
        rules = compile_only_except(attributes.get("only"), attributes.get("except"), when=when, job=name)

    timeout = attributes.get("timeout")

    return JobSpec(
        name=name,
        stage=stage,
        script=script,
        before_script=_script_lines(attributes.get("before_script", []), owner=name, key="before_script"),
        after_script=_script_lines(attributes.get("after_script", []), owner=name, key="after_script"),
        variables=parse_variables(attributes.get("variables"), owner=name),
        needs=parse_needs(attributes.get("needs"), owner=name),
        rules=rules,
        cache=parse_cache(attributes.get("cache"), owner=name),
        artifacts=parse_artifacts(attributes.get("artifacts"), owner=name),
        tags=_string_list(attributes.get("tags", []), owner=name, key="tags"),
        when=when,
        allow_failure=allow_failure,
        timeout=parse_duration(timeout, owner=name) if timeout is not None else None,
        image=_name_field(attributes.get("image"), owner=name, key="image"),
        environment=_name_field(attributes.get("environment"), owner=name, key="environment"),
    )


# ---------------------------------------------------------------------------
# Documento
# ---------------------------------------------------------------------------

def _parse_stages(doc: Dict[str, Any]) -> List[str]:
    raw = doc.get("stages", doc.get("types"))
    if raw is None:
        return list(DEFAULT_STAGES)
    if not isinstance(raw, list) or not all(isinstance(s, str) and s for s in raw):
        raise InvalidJobDefinitionError("'stages' must be a list of non-empty strings")
    if len(set(raw)) != len(raw):
        raise InvalidJobDefinitionError(f"'stages' contains duplicates: {raw}")
    middle = [s for s in raw if s not in (".pre", ".post")]
    return [".pre"] + middle + [".post"]


def _parse_workflow(value: Any) -> Optional[Tuple[Rule, ...]]:
    if value is None:
        return None
    if not isinstance(value, dict):
        raise InvalidJobDefinitionError("'workflow' must be a mapping")
    unknown = sorted(set(value) - {"rules", "name"})
    if unknown:
        raise InvalidJobDefinitionError(f"unsupported workflow keys: {unknown}")
    if "rules" not in value:
        return None
    return parse_rules(value["rules"], owner="workflow")


def _parse_default(doc: Dict[str, Any]) -> Dict[str, Any]:
    default = doc.get("default") or {}
    if not isinstance(default, dict):
        raise InvalidJobDefinitionError("'default' must be a mapping")
    unknown = sorted(set(default) - DEFAULT_KEYS)
    if unknown:
        raise InvalidJobDefinitionError(f"unsupported default keys: {unknown}")
    merged = dict(default)
    for key in LEGACY_DEFAULT_KEYS:
        if key in doc and key not in merged:
            merged[key] = doc[key]
    return merged


def _is_job_shaped(keyword: str, value: Any) -> bool:
    """
    Indica se uma palavra-chave global foi escrita como um Job.

    `variables` aceita qualquer nome de variável, inclusive `script`; só é
    um Job mal nomeado quando `script` traz uma lista de comandos, valor que
    nenhuma variável aceita.
    """
    if not isinstance(value, dict) or "script" not in value:
        return False
    if keyword == "variables":
        return isinstance(value["script"], list)
    return True


def parse_pipeline_document(doc: Dict[str, Any]) -> PipelineSpec:
    """
    Converte um documento de pipeline em `PipelineSpec`.

    Args:
        doc: documento carregado (YAML/JSON) como dict.

    Returns:
        PipelineSpec: stages, variáveis globais, workflow, default e
        definições de Jobs/Templates em ordem de declaração.

    Raises:
        InvalidConfigRootTypeError: raiz não é um mapeamento.
        InvalidJobDefinitionError: chave global ou definição inválida.
        ReservedJobNameError: palavra-chave usada como nome de Job.
        RuleEvaluationError: rule de workflow malformada.
    """
    if not isinstance(doc, dict):
        raise InvalidConfigRootTypeError(
            f"Pipeline root deve ser dict, recebido: {type(doc).__name__}"
        )

    for key in ("include", "services"):
        if key in doc:
            raise InvalidJobDefinitionError(f"global keyword '{key}' is not supported")

    definitions: Dict[str, JobDefinition] = {}
    for name, value in doc.items():
        if not isinstance(name, str):
            raise InvalidJobDefinitionError(f"job names must be strings, got {name!r}")
        if name in GLOBAL_KEYWORDS:
            if _is_job_shaped(name, value):
                raise ReservedJobNameError(f"Job name '{name}' is a reserved keyword")
            continue
        if name.startswith("."):
            # chaves ocultas que não são mapas servem apenas de âncora YAML
            if isinstance(value, dict):
                definitions[name] = JobDefinition(name=name, attributes=dict(value), is_template=True)
            continue
        if not isinstance(value, dict):
            raise InvalidJobDefinitionError(f"Job '{name}' must be a mapping")
        definitions[name] = JobDefinition(name=name, attributes=dict(value), is_template=False)

    return PipelineSpec(
        stages=_parse_stages(doc),
        variables=parse_variables(doc.get("variables"), owner="variables"),
        workflow=_parse_workflow(doc.get("workflow")),
        default=_parse_default(doc),
        definitions=definitions,
    )
