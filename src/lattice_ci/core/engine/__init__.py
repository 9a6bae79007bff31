# src/lattice_ci/core/engine/__init__.py
"""
Engine do Lattice CI.

Este pacote contém a implementação responsável por **construir**,
**agendar** e **executar** pipelines, respeitando barreiras de Stage,
arestas de `needs`, rules e a configuração resolvida do runner.

Componentes principais:
    - planner   → ordenação topológica determinística e detecção de ciclos
    - graph     → Graph Builder (`extends`, rules, `needs`, barreiras de Stage)
    - scheduler → máquina de estados dos Jobs, concorrência e cancelamento
    - engine    → fachada: documento → grafo → execução → histórico

Princípios fundamentais:
    - Construção e execução são responsabilidades separadas
    - A ordem topológica é determinística para o mesmo grafo
    - Nenhuma decisão silenciosa é tomada durante a execução

Invariantes:
    - Jobs só são executados após suas dependências
    - Cada Job é executado no máximo uma vez por pipeline
    - O resultado reflete explicitamente o estado de cada Job

Limites explícitos:
    - Não interpreta scripts de Jobs
    - Não implementa backends de execução
"""
