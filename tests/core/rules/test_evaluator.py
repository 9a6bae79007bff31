# tests/core/rules/test_evaluator.py
"""
Testes do Rule Evaluator.

Este módulo valida a avaliação de sequências de rules, do gate de
workflow e da compilação de filtros legados `only`/`except`.

Os testes asseguram que:
- a primeira rule casada decide (first-match-wins)
- nenhuma rule casada produz SKIP (fail-closed)
- `changes` é verdadeiro quando o diff é desconhecido
- `exists` é avaliado contra os arquivos do repositório
- workflow ausente produz RUN e `when: manual` é rejeitado no workflow
- `only`/`except` se comportam como as rules equivalentes

Decisões arquiteturais:
    - A avaliação é pura: o contexto é passado explicitamente
    - Erros de expressão são erros de configuração (RuleEvaluationError)
"""

import pytest

try:
    from lattice_ci.core.config.errors import RuleEvaluationError
    from lattice_ci.core.pipeline.types import Decision, Rule
    from lattice_ci.core.pipeline.variables import rule_variables
    from lattice_ci.core.rules.evaluator import (
        RuleContext,
        compile_only_except,
        evaluate,
        evaluate_workflow,
        match_rules,
    )
except Exception as e:  # noqa: BLE001
    evaluate = None
    _IMPORT_ERR = e
else:
    _IMPORT_ERR = None


def _require_imports():
    if _IMPORT_ERR is not None:
        pytest.fail(
            "Missing evaluator module. Implement:\n"
            "- src/lattice_ci/core/rules/evaluator.py (evaluate, evaluate_workflow, compile_only_except)\n"
            f"Import error: {_IMPORT_ERR}"
        )


def _ctx(trigger, **extra_vars):
    return RuleContext.from_trigger(trigger, rule_variables(trigger, extra_vars))


def test_never_rule_before_always_skips_when_condition_matches(make_trigger):
    """
    rules [(cond, never), (always)] → SKIP quando cond casa; RUN caso contrário.
    """
    _require_imports()
    rules = [Rule(condition='$CI_COMMIT_BRANCH == "main"', when="never"), Rule(when="always")]

    assert evaluate(rules, _ctx(make_trigger(branch="main"))) == Decision.SKIP
    assert evaluate(rules, _ctx(make_trigger(branch="feature/x"))) == Decision.RUN


def test_no_matching_rule_is_fail_closed(trigger):
    _require_imports()
    rules = [Rule(condition='$CI_PIPELINE_SOURCE == "schedule"')]
    match = match_rules(rules, _ctx(trigger))
    assert match.decision == Decision.SKIP
    assert match.rule is None


def test_empty_rule_sequence_skips(trigger):
    _require_imports()
    assert evaluate([], _ctx(trigger)) == Decision.SKIP


def test_manual_rule_returns_manual_and_the_matched_rule(trigger):
    _require_imports()
    rule = Rule(condition="$CI_COMMIT_BRANCH", when="manual", variables={"X": "1"}, allow_failure=True)
    match = match_rules([rule], _ctx(trigger))
    assert match.decision == Decision.MANUAL
    assert match.rule is rule


def test_changes_true_when_diff_is_unknown(make_trigger):
    _require_imports()
    rules = [Rule(changes=("docs/**/*",))]
    assert evaluate(rules, _ctx(make_trigger(changed_files=None))) == Decision.RUN


def test_changes_matches_changed_files(make_trigger):
    """
    `changes` casa quando algum arquivo alterado casa com algum glob.

    Globs aceitam variáveis (expandidas antes do casamento).
    """
    _require_imports()
    rules = [Rule(changes=("$SERVICE/**/*.py",))]
    touched = make_trigger(changed_files=frozenset({"api/handlers/users.py"}))
    untouched = make_trigger(changed_files=frozenset({"README.md"}))

    assert evaluate(rules, _ctx(touched, SERVICE="api")) == Decision.RUN
    assert evaluate(rules, _ctx(untouched, SERVICE="api")) == Decision.SKIP


def test_exists_matches_repository_files(make_trigger):
    _require_imports()
    rules = [Rule(exists=("Dockerfile",))]
    assert evaluate(rules, _ctx(make_trigger(files=frozenset({"Dockerfile"})))) == Decision.RUN
    assert evaluate(rules, _ctx(make_trigger(files=frozenset({"Makefile"})))) == Decision.SKIP


def test_all_conditions_of_a_rule_must_hold(make_trigger):
    _require_imports()
    rules = [Rule(condition='$CI_COMMIT_BRANCH == "main"', changes=("src/*",))]
    ok = make_trigger(changed_files=frozenset({"src/a.py"}))
    wrong_branch = make_trigger(branch="dev", changed_files=frozenset({"src/a.py"}))
    assert evaluate(rules, _ctx(ok)) == Decision.RUN
    assert evaluate(rules, _ctx(wrong_branch)) == Decision.SKIP


def test_runtime_pattern_error_names_the_job(trigger):
    _require_imports()
    rules = [Rule(condition="$CI_COMMIT_BRANCH =~ $PATTERN")]
    with pytest.raises(RuleEvaluationError) as exc:
        evaluate(rules, _ctx(trigger, PATTERN="not-a-regex"), owner="lint")
    assert exc.value.job == "lint"


def test_workflow_absent_runs(trigger):
    _require_imports()
    assert evaluate_workflow(None, _ctx(trigger)).decision == Decision.RUN


def test_workflow_skip_and_run(make_trigger):
    _require_imports()
    workflow = [
        Rule(condition='$CI_PIPELINE_SOURCE == "merge_request_event"', when="never"),
        Rule(condition="$CI_COMMIT_BRANCH", variables={"DEPLOY": "yes"}),
    ]
    mr = make_trigger(source="merge_request_event")
    tag = make_trigger(branch=None, tag="v1.0.0")

    assert evaluate_workflow(workflow, _ctx(make_trigger())).rule.variables == {"DEPLOY": "yes"}
    assert evaluate_workflow(workflow, _ctx(mr)).decision == Decision.SKIP
    assert evaluate_workflow(workflow, _ctx(tag)).decision == Decision.SKIP


def test_workflow_rejects_manual(trigger):
    _require_imports()
    with pytest.raises(RuleEvaluationError):
        evaluate_workflow([Rule(when="manual")], _ctx(trigger))


def test_only_refs_with_regex_and_keywords(make_trigger):
    """
    `only: [main, /^release-.*$/, tags]` inclui a branch main, branches de
    release e qualquer tag; demais refs são excluídas (fail-closed).
    """
    _require_imports()
    rules = compile_only_except(["main", "/^release-.*$/", "tags"], None, when="on_success", job="deploy")

    assert evaluate(rules, _ctx(make_trigger(branch="main"))) == Decision.RUN
    assert evaluate(rules, _ctx(make_trigger(branch="release-2.0"))) == Decision.RUN
    assert evaluate(rules, _ctx(make_trigger(branch=None, tag="v2.0.0"))) == Decision.RUN
    assert evaluate(rules, _ctx(make_trigger(branch="feature/x"))) == Decision.SKIP


def test_except_wins_over_only(make_trigger):
    _require_imports()
    rules = compile_only_except(
        {"refs": ["branches"]},
        {"refs": ["main"], "variables": ['$SKIP_DEPLOY == "1"']},
        when="manual",
        job="deploy",
    )
    assert evaluate(rules, _ctx(make_trigger(branch="dev"))) == Decision.MANUAL
    assert evaluate(rules, _ctx(make_trigger(branch="main"))) == Decision.MANUAL
    both = make_trigger(branch="main", variables={"SKIP_DEPLOY": "1"})
    assert evaluate(rules, _ctx(both)) == Decision.SKIP


def test_without_only_the_job_runs_with_its_when(trigger):
    _require_imports()
    rules = compile_only_except(None, None, when="always", job="cleanup")
    assert len(rules) == 1
    assert evaluate(rules, _ctx(trigger)) == Decision.RUN
