# src/lattice_ci/core/rules/evaluator.py
"""
Rule Evaluator do Lattice CI.

Este módulo decide a inclusão de Jobs e do pipeline inteiro a partir de
sequências ordenadas de rules, avaliadas contra um `RuleContext`
(variáveis visíveis, arquivos alterados, arquivos do repositório).

Semântica (v1):
    - a sequência é percorrida em ordem; a primeira rule casada decide
    - uma rule casa quando todas as suas condições (`if`, `changes`,
      `exists`) são verdadeiras; uma rule sem condições sempre casa
    - nenhuma rule casada → SKIP (fail-closed)
    - ação: `on_success`/`always`/`on_failure` → RUN, `manual` → MANUAL,
      `never` → SKIP

Gate de workflow:
    - avaliado antes de qualquer rule de Job
    - ausência de workflow → RUN
    - `manual` não é uma ação válida de workflow (RuleEvaluationError)

`only`/`except` (legado):
    - compilados para uma sequência de rules equivalente
      (`compile_only_except`), avaliada pelo mesmo mecanismo

Decisões arquiteturais:
    - A avaliação é pura: o mesmo contexto sempre produz a mesma decisão
    - Expressões malformadas levantam RuleEvaluationError com o nome do Job
    - `changes` com diff desconhecido (`changed_files=None`) é verdadeiro

Limites explícitos:
    - Não constrói o grafo (ver core.engine.graph)
    - Não altera Jobs; apenas retorna a rule casada
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, FrozenSet, List, Mapping, Optional, Sequence, Tuple

from lattice_ci.core.config.errors import InvalidJobDefinitionError, RuleEvaluationError
from lattice_ci.core.pipeline.context import TriggerContext
from lattice_ci.core.pipeline.types import (
    Decision,
    Rule,
    WHEN_ALWAYS,
    WHEN_MANUAL,
    WHEN_NEVER,
    WHEN_ON_SUCCESS,
)
from lattice_ci.core.pipeline.variables import expand_variables

from .expression import ExpressionSyntaxError, compile_expression, evaluate_expression
from .globbing import any_match


@dataclass(frozen=True)
class RuleContext:
    """
    Contexto imutável de avaliação de rules.

    Campos:
        - variables: variáveis visíveis às expressões `if`
        - changed_files: arquivos alterados (None = diff desconhecido)
        - files: arquivos existentes no repositório
    """
    variables: Mapping[str, str]
    changed_files: Optional[FrozenSet[str]] = None
    files: FrozenSet[str] = frozenset()

    @classmethod
    def from_trigger(cls, trigger: TriggerContext, variables: Mapping[str, str]) -> "RuleContext":
        return cls(variables=dict(variables), changed_files=trigger.changed_files, files=trigger.files)


@dataclass(frozen=True)
class RuleMatch:
    """Decisão de uma sequência de rules e a rule que a produziu (se houver)."""
    decision: Decision
    rule: Optional[Rule] = None


_DECISIONS = {
    WHEN_ON_SUCCESS: Decision.RUN,
    WHEN_ALWAYS: Decision.RUN,
    "on_failure": Decision.RUN,
    WHEN_MANUAL: Decision.MANUAL,
    WHEN_NEVER: Decision.SKIP,
}


def validate_rule(rule: Rule, *, owner: str) -> None:
    """Valida ação e sintaxe de uma rule (usado na construção do schema)."""
    if rule.when not in _DECISIONS:
        raise RuleEvaluationError(f"unsupported rule action when={rule.when!r}", job=owner)
    if rule.condition is not None:
        try:
            compile_expression(rule.condition)
        except ExpressionSyntaxError as e:
            raise RuleEvaluationError(f"invalid expression {rule.condition!r}: {e}", job=owner) from e


def rule_matches(rule: Rule, ctx: RuleContext, *, owner: Optional[str] = None) -> bool:
    """Retorna True se todas as condições declaradas na rule são verdadeiras."""
    if rule.condition is not None:
        try:
            if not evaluate_expression(rule.condition, ctx.variables):
                return False
        except ExpressionSyntaxError as e:
            raise RuleEvaluationError(f"invalid expression {rule.condition!r}: {e}", job=owner) from e

    if rule.changes and ctx.changed_files is not None:
        globs = [expand_variables(g, ctx.variables) for g in rule.changes]
        if not any_match(globs, ctx.changed_files):
            return False

    if rule.exists:
        globs = [expand_variables(g, ctx.variables) for g in rule.exists]
        if not any_match(globs, ctx.files):
            return False

    return True


def match_rules(rules: Sequence[Rule], ctx: RuleContext, *, owner: Optional[str] = None) -> RuleMatch:
    """
    Avalia uma sequência de rules (first-match-wins, fail-closed).

    Args:
        rules: sequência ordenada de rules.
        ctx: contexto de avaliação.
        owner: nome do Job (ou `workflow`) para mensagens de erro.

    Returns:
        RuleMatch: decisão e rule casada (None quando nenhuma casou).

    Raises:
        RuleEvaluationError: expressão malformada ou ação não suportada.
    """
    for rule in rules:
        if rule.when not in _DECISIONS:
            raise RuleEvaluationError(f"unsupported rule action when={rule.when!r}", job=owner)
        if rule_matches(rule, ctx, owner=owner):
            return RuleMatch(_DECISIONS[rule.when], rule)
    return RuleMatch(Decision.SKIP, None)


def evaluate(rules: Sequence[Rule], ctx: RuleContext, *, owner: Optional[str] = None) -> Decision:
    """Retorna apenas a decisão de uma sequência de rules."""
    return match_rules(rules, ctx, owner=owner).decision


def evaluate_workflow(workflow: Optional[Sequence[Rule]], ctx: RuleContext) -> RuleMatch:
    """
    Avalia o gate de workflow do pipeline.

    Ausência de workflow → RUN. `manual` não é aceito como ação de workflow.
    """
    if workflow is None:
        return RuleMatch(Decision.RUN, None)
    for rule in workflow:
        if rule.when == WHEN_MANUAL:
            raise RuleEvaluationError("when=manual is not allowed in workflow rules", job="workflow")
    return match_rules(workflow, ctx, owner="workflow")


# ---------------------------------------------------------------------------
# only / except
# ---------------------------------------------------------------------------

# Palavras-chave de refs e a expressão equivalente
_REF_KEYWORDS = {
    "branches": "$CI_COMMIT_BRANCH",
    "tags": "$CI_COMMIT_TAG",
    "merge_requests": '$CI_PIPELINE_SOURCE == "merge_request_event"',
    "pushes": '$CI_PIPELINE_SOURCE == "push"',
    "schedules": '$CI_PIPELINE_SOURCE == "schedule"',
    "web": '$CI_PIPELINE_SOURCE == "web"',
    "api": '$CI_PIPELINE_SOURCE == "api"',
    "triggers": '$CI_PIPELINE_SOURCE == "trigger"',
    "pipelines": '$CI_PIPELINE_SOURCE == "pipeline"',
    "external": '$CI_PIPELINE_SOURCE == "external"',
}

_ONLY_EXCEPT_KEYS = frozenset({"refs", "changes", "variables"})


def _quote(value: str) -> str:
    return '"' + value.replace("\\", "\\\\").replace('"', '\\"') + '"'


def _ref_condition(ref: str) -> str:
    if ref in _REF_KEYWORDS:
        return _REF_KEYWORDS[ref]
    if len(ref) >= 2 and ref.startswith("/") and ref.rfind("/") > 0:
        return f"$CI_COMMIT_REF_NAME =~ {ref}"
    return f"$CI_COMMIT_REF_NAME == {_quote(ref)}"


def _as_str_list(value: Any, *, job: str, key: str) -> List[str]:
    if isinstance(value, str):
        return [value]
    if isinstance(value, list) and all(isinstance(v, str) for v in value):
        return list(value)
    raise InvalidJobDefinitionError(f"Job '{job}': '{key}' must be a string or a list of strings")


def _any_of(conditions: List[str]) -> Optional[str]:
    if not conditions:
        return None
    if len(conditions) == 1:
        return conditions[0]
    return " || ".join(f"({c})" for c in conditions)


def _compile_filter(value: Any, *, job: str, key: str) -> Optional[Rule]:
    """Compila um bloco `only`/`except` em uma rule (ação definida pelo chamador)."""
    if value is None:
        return None
    if isinstance(value, (str, list)):
        value = {"refs": value}
    if not isinstance(value, dict):
        raise InvalidJobDefinitionError(f"Job '{job}': '{key}' must be a list or a mapping")
    unknown = sorted(set(value) - _ONLY_EXCEPT_KEYS)
    if unknown:
        raise InvalidJobDefinitionError(f"Job '{job}': unsupported '{key}' keys: {unknown}")

    parts: List[str] = []
    refs = _any_of([_ref_condition(r) for r in _as_str_list(value.get("refs", []), job=job, key=f"{key}:refs")])
    if refs:
        parts.append(refs)
    variables = _any_of(_as_str_list(value.get("variables", []), job=job, key=f"{key}:variables"))
    if variables:
        parts.append(variables)

    changes = value.get("changes", [])
    if isinstance(changes, dict):
        changes = changes.get("paths", [])
    changes = tuple(_as_str_list(changes, job=job, key=f"{key}:changes"))

    if len(parts) > 1:
        condition: Optional[str] = " && ".join(f"({p})" for p in parts)
    else:
        condition = parts[0] if parts else None
    return Rule(condition=condition, changes=changes)


def compile_only_except(only: Any, except_: Any, *, when: str, job: str) -> Tuple[Rule, ...]:
    """
    Compila filtros legados `only`/`except` para uma sequência de rules.

    Tradução (v1):
        - `except` casado → `never` (avaliado primeiro)
        - `only` casado → ação `when` do Job
        - sem `only` → rule default final com ação `when`
        - com `only` e nenhum casamento → SKIP (fail-closed)

    Dentro de um bloco, `refs`, `variables` e `changes` são combinados por
    conjunção; cada lista é uma disjunção de suas entradas.

    Exemplo:
        only: [main, /^release-.*$/]
        except: {variables: ['$SKIP == "1"']}

        → [ Rule(if='$SKIP == "1"', when=never),
            Rule(if='($CI_COMMIT_REF_NAME == "main") || ($CI_COMMIT_REF_NAME =~ /^release-.*$/)', when=<when>) ]
    """
    rules: List[Rule] = []
    excluded = _compile_filter(except_, job=job, key="except")
    if excluded is not None and not excluded.is_default:
        rules.append(Rule(condition=excluded.condition, changes=excluded.changes, when=WHEN_NEVER))

    included = _compile_filter(only, job=job, key="only")
    if included is None or included.is_default:
        rules.append(Rule(when=when))
    else:
        rules.append(Rule(condition=included.condition, changes=included.changes, when=when))

    for rule in rules:
        validate_rule(rule, owner=job)
    return tuple(rules)
