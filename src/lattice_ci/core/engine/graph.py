# src/lattice_ci/core/engine/graph.py
"""
Graph Builder do Lattice CI.

Este módulo transforma um `PipelineSpec` validado estruturalmente em um
`ExecutionGraph`: o DAG imutável de Jobs que o Scheduler percorre.

Etapas da construção (nesta ordem):
    1. Registro de definições (nomes únicos e não reservados)
    2. Resolução de `default` + cadeias de `extends`
    3. Materialização dos Jobs (`materialize_job`)
    4. Validação estrutural de `needs` (existência, Stage, ciclos)
    5. Gate de workflow (SKIP → nenhum Job avaliado nem agendado)
    6. Avaliação das rules de cada Job (RUN, MANUAL, SKIP)
    7. Validação de `needs` contra Jobs excluídos pelas próprias rules
    8. Arestas: `needs` explícitos ou barreira implícita de Stage

Política de `extends`:
    - ancestrais aplicados em ordem de declaração (o último vence)
    - atributos do próprio Job vencem todos os ancestrais
    - escalares: last-write-wins; listas e mapas: substituição integral
    - `variables`: merge aditivo por chave (exceção documentada)
    - `default` é a camada mais baixa, abaixo de todos os ancestrais
    - profundidade máxima: 11 níveis

Barreira implícita de Stage:
    - um Job sem `needs` depende de todos os Jobs agendados de Stages
      anteriores, exceto Jobs manuais não bloqueantes
      (`when: manual` com `allow_failure: true`)
    - `needs: []` significa "iniciar imediatamente"

Invariantes:
    - O grafo é acíclico
    - Templates nunca são nós do grafo
    - Todo `needs` aponta para um Job existente, agendado e de Stage
      igual ou anterior (ou é opcional e foi descartado)
    - Jobs são imutáveis após a construção

Limites explícitos:
    - Não executa Jobs
    - Não aloca executores
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Mapping, Optional, Tuple

from lattice_ci.core.config.errors import (
    InvalidJobDefinitionError,
    UnknownNeedsError,
    UnknownTemplateError,
)
from lattice_ci.core.config.merge import merge_extends
from lattice_ci.core.config.schema import materialize_job
from lattice_ci.core.pipeline.context import TriggerContext
from lattice_ci.core.pipeline.registry import JobRegistry
from lattice_ci.core.pipeline.types import (
    Decision,
    JobDefinition,
    JobSpec,
    PipelineSpec,
)
from lattice_ci.core.pipeline.variables import rule_variables
from lattice_ci.core.rules.evaluator import RuleContext, evaluate_workflow, match_rules

from .planner import plan_execution


MAX_EXTENDS_DEPTH = 11


@dataclass(frozen=True)
class ExecutionGraph:
    """
    DAG imutável de Jobs de um pipeline.

    Campos:
        - stages: Stages em ordem canônica
        - variables: variáveis globais efetivas (documento + workflow)
        - workflow: decisão do gate de workflow
        - jobs: Jobs agendados (RUN ou MANUAL), em ordem de declaração
        - decisions: decisão das rules por Job agendado
        - dependencies: arestas `dependência → dependente`, indexadas pelo dependente
        - skipped: Jobs excluídos pelas próprias rules (nome → Stage)
        - order: ordem topológica determinística
    """
    stages: List[str]
    variables: Dict[str, str] = field(default_factory=dict)
    workflow: Decision = Decision.RUN
    jobs: Dict[str, JobSpec] = field(default_factory=dict)
    decisions: Dict[str, Decision] = field(default_factory=dict)
    dependencies: Dict[str, Tuple[str, ...]] = field(default_factory=dict)
    skipped: Dict[str, str] = field(default_factory=dict)
    order: Tuple[str, ...] = ()

    @property
    def dependents(self) -> Dict[str, Tuple[str, ...]]:
        out: Dict[str, List[str]] = {name: [] for name in self.jobs}
        for name, deps in self.dependencies.items():
            for dep in deps:
                out[dep].append(name)
        return {k: tuple(sorted(v)) for k, v in out.items()}

    def transitive_dependents(self, name: str) -> List[str]:
        dependents = self.dependents
        seen: List[str] = []
        stack = list(dependents.get(name, ()))
        while stack:
            current = stack.pop()
            if current in seen:
                continue
            seen.append(current)
            stack.extend(dependents.get(current, ()))
        return sorted(seen)

    def fan_out(self) -> Dict[str, int]:
        """Número de dependentes transitivos de cada Job (heurística de prioridade)."""
        return {name: len(self.transitive_dependents(name)) for name in self.jobs}

    def artifact_sources(self, name: str) -> Tuple[str, ...]:
        """Dependências das quais o Job recebe artefatos."""
        job = self.jobs[name]
        if job.needs is None:
            return self.dependencies.get(name, ())
        return tuple(n.job for n in job.needs if n.artifacts and n.job in self.jobs)


# ---------------------------------------------------------------------------
# extends
# ---------------------------------------------------------------------------

def _extends_of(definition: JobDefinition) -> List[str]:
    raw = definition.attributes.get("extends")
    if raw is None:
        return []
    if isinstance(raw, str):
        return [raw]
    if isinstance(raw, list) and all(isinstance(v, str) for v in raw):
        return list(raw)
    raise InvalidJobDefinitionError(
        f"Job '{definition.name}': 'extends' must be a string or a list of strings"
    )


def resolve_extends(
    definitions: Mapping[str, JobDefinition],
    *,
    default: Optional[Mapping[str, Any]] = None,
) -> Dict[str, Dict[str, Any]]:
    """
    Resolve `default` e as cadeias de `extends` de todos os Jobs executáveis.

    Exemplo:
        .base: {tags: [a, b], variables: {X: "1"}}
        job:   {extends: .base, tags: [c], variables: {Y: "2"}}
        → job: {tags: [c], variables: {X: "1", Y: "2"}}

    Args:
        definitions: Jobs e Templates declarados, em ordem de declaração.
        default: atributos de `default` (camada mais baixa).

    Returns:
        Dict[str, Dict[str, Any]]: atributos resolvidos por Job (sem Templates).

    Raises:
        UnknownTemplateError: ancestral inexistente, cadeia circular ou
            profundidade acima de MAX_EXTENDS_DEPTH.
        InvalidJobDefinitionError: `extends` não é um nome nem lista de nomes.
    """
    cache: Dict[str, Dict[str, Any]] = {}

    def resolve(name: str, chain: Tuple[str, ...]) -> Dict[str, Any]:
        if name in chain:
            path = " -> ".join(chain[chain.index(name):] + (name,))
            raise UnknownTemplateError(f"Circular extends chain: {path}")
        if len(chain) > MAX_EXTENDS_DEPTH:
            raise UnknownTemplateError(
                f"Job '{chain[0]}': extends chain exceeds {MAX_EXTENDS_DEPTH} levels"
            )
        if name in cache:
            return cache[name]

        definition = definitions[name]
        base: Dict[str, Any] = {}
        for parent in _extends_of(definition):
            if parent not in definitions:
                raise UnknownTemplateError(f"Job '{name}' extends unknown template '{parent}'")
            base = merge_extends(base, resolve(parent, chain + (name,)))
        resolved = merge_extends(base, definition.attributes)
        cache[name] = resolved
        return resolved

    out: Dict[str, Dict[str, Any]] = {}
    for name, definition in definitions.items():
        if definition.is_template:
            continue
        out[name] = merge_extends(dict(default or {}), resolve(name, ()))
    return out


# ---------------------------------------------------------------------------
# needs
# ---------------------------------------------------------------------------

def _validate_needs(jobs: Mapping[str, JobSpec], stages: List[str]) -> None:
    explicit: Dict[str, List[str]] = {}
    for name, job in jobs.items():
        explicit[name] = []
        for need in job.needs or ():
            if need.job not in jobs:
                raise UnknownNeedsError(f"Job '{name}' needs unknown job '{need.job}'")
            if stages.index(jobs[need.job].stage) > stages.index(job.stage):
                raise UnknownNeedsError(
                    f"Job '{name}' (stage '{job.stage}') needs '{need.job}' "
                    f"from later stage '{jobs[need.job].stage}'"
                )
            explicit[name].append(need.job)
    # CycleDetectedError carrega o caminho do ciclo
    plan_execution(explicit)


def _blocks_stage(job: JobSpec) -> bool:
    return not (job.is_manual and job.allow_failure)


def _dependencies(jobs: Mapping[str, JobSpec], stages: List[str]) -> Dict[str, Tuple[str, ...]]:
    deps: Dict[str, Tuple[str, ...]] = {}
    for name, job in jobs.items():
        if job.needs is not None:
            deps[name] = tuple(n.job for n in job.needs)
            continue
        index = stages.index(job.stage)
        deps[name] = tuple(
            other for other, spec in jobs.items()
            if stages.index(spec.stage) < index and _blocks_stage(spec)
        )
    return deps


# ---------------------------------------------------------------------------
# build
# ---------------------------------------------------------------------------

def build_graph(spec: PipelineSpec, trigger: TriggerContext) -> ExecutionGraph:
    """
    Constrói o grafo de execução de um pipeline.

    Args:
        spec: documento validado estruturalmente.
        trigger: contexto imutável do trigger.

    Returns:
        ExecutionGraph: grafo imutável (vazio quando o workflow decide SKIP).

    Raises:
        ConfigError: nome reservado/duplicado, template desconhecido, `needs`
            inválido, ciclo, atributo inválido ou rule malformada.
    """
    registry = JobRegistry()
    for definition in spec.definitions.values():
        registry.add(definition)

    resolved = resolve_extends(spec.definitions, default=spec.default)
    declared: Dict[str, JobSpec] = {
        name: materialize_job(name, attrs, spec.stages) for name, attrs in resolved.items()
    }
    _validate_needs(declared, spec.stages)

    workflow_ctx = RuleContext.from_trigger(trigger, rule_variables(trigger, spec.variables))
    workflow = evaluate_workflow(spec.workflow, workflow_ctx)
    global_variables = dict(spec.variables)
    if workflow.rule is not None:
        global_variables.update(workflow.rule.variables)

    if workflow.decision == Decision.SKIP:
        return ExecutionGraph(stages=list(spec.stages), variables=global_variables, workflow=Decision.SKIP)

    jobs: Dict[str, JobSpec] = {}
    decisions: Dict[str, Decision] = {}
    skipped: Dict[str, str] = {}
    for name, job in declared.items():
        ctx = RuleContext.from_trigger(trigger, rule_variables(trigger, global_variables, job.variables))
        match = match_rules(job.rules, ctx, owner=name)
        if match.decision == Decision.SKIP:
            skipped[name] = job.stage
            continue
        rule = match.rule
        if rule is not None:
            job = replace(
                job,
                when=rule.when,
                variables={**job.variables, **rule.variables},
                allow_failure=job.allow_failure if rule.allow_failure is None else rule.allow_failure,
            )
        jobs[name] = job
        decisions[name] = match.decision

    for name, job in list(jobs.items()):
        if job.needs is None:
            continue
        kept = []
        for need in job.needs:
            if need.job in jobs:
                kept.append(need)
            elif need.optional:
                continue
            else:
                raise UnknownNeedsError(
                    f"Job '{name}' needs '{need.job}', which is excluded by its own rules"
                )
        jobs[name] = replace(job, needs=tuple(kept))

    dependencies = _dependencies(jobs, spec.stages)
    order = plan_execution(dependencies)

    return ExecutionGraph(
        stages=list(spec.stages),
        variables=global_variables,
        workflow=Decision.RUN,
        jobs=jobs,
        decisions=decisions,
        dependencies=dependencies,
        skipped=skipped,
        order=tuple(order),
    )
