# src/lattice_ci/core/config/errors.py
"""
Exceções canônicas da camada de configuração do Lattice CI.

Este módulo define a hierarquia oficial de exceções levantadas durante
o carregamento, a validação estrutural e a resolução do documento de
pipeline e da configuração do runner.

As exceções aqui definidas representam **violações de configuração
explícitas**: todas são fatais, são reportadas antes de qualquer Job
executar e impedem que o pipeline seja iniciado.

Princípios fundamentais:
    - Exceções são tipadas e semânticas
    - Mensagens identificam o Job, Stage ou chave ofensiva
    - Nenhum erro de configuração é ignorado ou corrigido silenciosamente

Invariantes:
    - Todas as exceções de configuração herdam de `ConfigError`
    - `RuleEvaluationError` é tratado como erro de configuração

Limites explícitos:
    - Não representa falhas de execução de Jobs (ver core.exceptions)
    - Não realiza fallback ou recovery
"""

from __future__ import annotations

from typing import Optional, Sequence


class ConfigError(Exception):
    """
    Exceção base para erros de configuração do Lattice CI.

    Todas as exceções levantadas durante carregamento, validação estrutural
    e construção do grafo de execução devem herdar desta classe.

    Esta hierarquia permite:
        - captura genérica de erros de configuração (CLI, Engine)
        - distinção clara entre falhas estruturais e falhas de execução

    Limites explícitos:
        - Não representa falha de Job
        - Não representa indisponibilidade de executor
    """


class ConfigFileNotFoundError(ConfigError):
    """
    Exceção levantada quando um arquivo obrigatório (documento de pipeline
    ou defaults do runner) não é encontrado.

    Decisões arquiteturais:
        - Arquivos obrigatórios devem existir no momento do carregamento
        - Nenhum documento vazio é presumido
    """


class UnsupportedConfigFormatError(ConfigError):
    """
    Exceção levantada quando o formato do arquivo não é suportado.

    Formatos suportados (v1):
        - YAML (.yaml, .yml)
        - JSON (.json)
    """


class InvalidConfigRootTypeError(ConfigError):
    """
    Exceção levantada quando o conteúdo raiz de um arquivo não é um
    mapeamento (`dict`).
    """


class ConfigTypeConflictError(ConfigError):
    """
    Exceção levantada quando ocorre conflito de tipos durante o deep-merge
    da configuração do runner.

    Exemplo de conflito:
        - base:     {"engine": {"max_concurrency": 4}}
        - override: {"engine": "fast"}
    """


class InvalidJobDefinitionError(ConfigError):
    """
    Exceção levantada quando a definição de um Job (ou de chaves globais)
    é estruturalmente inválida.

    Exemplos:
        - `script` ausente em um Job executável
        - Stage não declarado em `stages`
        - `timeout` com formato desconhecido
        - `when` com valor não suportado
    """


class ReservedJobNameError(ConfigError):
    """
    Exceção levantada quando um Job utiliza um nome reservado
    (palavra-chave do documento, ex.: `stages`, `variables`, `workflow`).
    """


class UnknownTemplateError(ConfigError):
    """
    Exceção levantada quando `extends` referencia um Job/Template inexistente,
    ou quando a cadeia de `extends` é circular ou profunda demais.
    """


class UnknownNeedsError(ConfigError):
    """
    Exceção levantada quando `needs` referencia um Job inexistente,
    um Job de Stage posterior ou um Job excluído pelas próprias rules.
    """


class CycleDetectedError(ConfigError):
    """
    Exceção levantada quando as arestas de `needs` formam um ciclo
    (incluindo auto-referência).

    O caminho do ciclo é exposto em `cycle` (ex.: ["a", "b", "a"]).
    """

    def __init__(self, message: str, cycle: Optional[Sequence[str]] = None):
        super().__init__(message)
        self.cycle = list(cycle or [])


class RuleEvaluationError(ConfigError):
    """
    Exceção levantada quando uma expressão de rule é malformada ou uma
    ação (`when`) não é suportada.

    Decisões arquiteturais:
        - É detectada na construção do grafo, nunca durante a execução
        - É tratada como erro de configuração (fatal para o pipeline)
        - Carrega o nome do Job (ou `workflow`) que contém a rule
    """

    def __init__(self, message: str, job: Optional[str] = None):
        super().__init__(f"{job}: {message}" if job else message)
        self.job = job
