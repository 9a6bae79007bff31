"""
# Rules — Lattice CI

Este pacote decide a inclusão de Jobs e do pipeline a partir de rules
ordenadas (`rules`, `workflow:rules`) e dos filtros legados `only`/`except`.

## Componentes

- **expression**: linguagem de condições `if` (`$VAR`, `==`, `=~`, `&&`, `||`)
- **globbing**: casamento de globs para `changes` e `exists`
- **evaluator**: first-match-wins, gate de workflow, compilação de `only`/`except`

## Invariantes

- Nenhuma rule casada e nenhum default → SKIP (fail-closed)
- Expressões malformadas são erros de configuração (RuleEvaluationError)
"""

from .evaluator import (
    RuleContext,
    RuleMatch,
    compile_only_except,
    evaluate,
    evaluate_workflow,
    match_rules,
)

__all__ = [
    "RuleContext",
    "RuleMatch",
    "compile_only_except",
    "evaluate",
    "evaluate_workflow",
    "match_rules",
]
