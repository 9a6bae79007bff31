# src/lattice_ci/core/__init__.py
"""
Core do Lattice CI.

Este pacote contém a implementação canônica do executor de pipelines,
reunindo as responsabilidades essenciais para validar, planejar,
agendar e rastrear a execução de Jobs.

O core é projetado para ser:
    - determinístico
    - testável de forma isolada (executores e stores são injetáveis)
    - livre de estado global (o contexto de trigger é passado explicitamente)
    - orientado a contratos explícitos

Componentes principais:
    - config       → documento de pipeline, configuração do runner, merge e hashing
    - pipeline     → tipos imutáveis, contexto de trigger, RunContext e registry
    - rules        → expressões `if`, `changes`/`exists`, workflow e only/except
    - engine       → Graph Builder, planner, Scheduler e Engine
    - store        → CacheStore, ArtifactStore e parsing de dotenv
    - executor     → contrato ExecutorAdapter, ExecutorPool e ShellExecutor
    - traceability → PipelineRecord e HistoryStore

Princípios fundamentais:
    - Nenhuma decisão silenciosa: erros de configuração são fatais
    - Cache degrada graciosamente; artefatos são garantidos
    - Transições de estado de Jobs ocorrem em um único ponto de coordenação
"""
