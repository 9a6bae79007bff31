# src/lattice_ci/core/config/__init__.py

"""
Camada de configuração do Lattice CI.

Este pacote contém as estruturas e utilitários responsáveis por carregar,
mesclar, validar estruturalmente e identificar as entradas declarativas
do Lattice CI:

    - a configuração do runner (concorrência, timeouts, retry, estado)
    - o documento de pipeline (stages, Jobs, Templates, rules, workflow)

Responsabilidades do pacote:
    - Carregamento de arquivos YAML/JSON (defaults + overrides locais)
    - Resolução da configuração do runner via deep-merge determinístico
    - Política explícita de merge de `extends`
    - Validação estrutural do documento de pipeline (schema)
    - Geração de hash canônico para rastreabilidade

Princípios fundamentais:
    - Configuração não contém lógica de execução
    - Nenhuma heurística implícita durante merge
    - Erros de configuração são fatais e reportados antes de qualquer Job

Limites explícitos:
    - Não constrói o grafo de execução
    - Não executa Jobs
"""
