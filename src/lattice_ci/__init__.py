# src/lattice_ci/__init__.py
"""
Lattice CI — executor declarativo e self-hosted de pipelines de CI/CD.

Este pacote raiz define o namespace público do Lattice CI, um executor
de pipelines descritos em documentos declarativos no estilo `.gitlab-ci.yml`
(stages, jobs, `needs`, `rules`, `cache`, `artifacts`, `extends`).

Princípios centrais:
    - O pipeline é um DAG explícito de Jobs, com barreiras de Stage
    - Decisões de inclusão (rules, workflow, only/except) são determinísticas
    - Scripts de Jobs são payloads opacos entregues aos executores
    - Rastreabilidade (histórico de pipelines) é um requisito de primeira classe

Arquitetura em alto nível:
    - core.config       → carregamento, merge, hashing e schema do documento
    - core.pipeline     → tipos, contexto de trigger/execução e registry de Jobs
    - core.rules        → linguagem de condições e avaliação de rules
    - core.engine       → construção do grafo, agendamento e execução
    - core.store        → cache (best-effort) e artefatos (garantidos)
    - core.executor     → contrato de executores e backend shell local
    - core.traceability → histórico append-only de pipelines
    - report            → relatório Markdown derivado do histórico

Limites explícitos:
    - Não interpreta scripts de Jobs
    - Não implementa backends de container/orquestrador
    - Não depende da plataforma GitLab
"""

__version__ = "0.1.0"

__all__ = ["__version__"]
