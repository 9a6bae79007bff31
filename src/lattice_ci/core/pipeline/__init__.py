"""
# Pipeline Core — Lattice CI

Este pacote define os **contratos canônicos** e as **estruturas fundamentais**
que compõem um pipeline no Lattice CI.

Um pipeline é modelado como um **DAG explícito de Jobs**, agrupados em Stages
que funcionam como barreiras de ordenação:
- cada Job declara nome, Stage, script opaco, dependências e rules
- Templates existem apenas como fonte de herança (`extends`)
- a execução é coordenada exclusivamente pelo Scheduler

## Componentes

- **types**
  - `JobStatus`, `Decision`, `CachePolicy`, `PipelineStatus`
  - `Rule`, `CacheSpec`, `ArtifactSpec`, `Need`
  - `JobDefinition` (declarado) e `JobSpec` (resolvido, imutável)
  - `JobResult`, `PipelineResult`

- **context**
  - `TriggerContext`: descrição imutável do evento de trigger
  - `RunContext`: log estruturado e warnings de uma execução

- **variables**
  - expansão de `$VAR` e construção do ambiente dos Jobs

- **registry**
  - `JobRegistry`: unicidade de nomes e denylist de nomes reservados

## Invariantes

- Cada Job possui um nome único e não reservado
- Templates nunca entram no grafo de execução
- Jobs são imutáveis após a construção do grafo
"""
