# src/lattice_ci/core/engine/planner.py
"""
Planejador estrutural do DAG de Jobs.

Este módulo é responsável por validar a aciclicidade das dependências
entre Jobs e produzir uma ordem topológica determinística.

O planner opera exclusivamente em nível estrutural, analisando:
    - nomes de Jobs
    - dependências declaradas (`needs`) e implícitas (barreiras de Stage)
    - formação de ciclos

Princípios fundamentais:
    - O pipeline deve formar um DAG válido
    - A ordenação é determinística para a mesma entrada
    - Nenhuma decisão silenciosa ou heurística implícita

Decisões arquiteturais:
    - Utiliza ordenação topológica determinística (Kahn modificado)
    - Empates são resolvidos por ordem lexicográfica do nome do Job
    - Ciclos são reportados com o caminho completo (`a -> b -> a`)

Invariantes:
    - Nenhum Job aparece antes de suas dependências
    - Todos os Jobs aparecem exatamente uma vez
    - A mesma definição de grafo produz sempre a mesma ordem

Limites explícitos:
    - Não executa Jobs
    - Não avalia rules
    - Não decide políticas de execução
"""

from __future__ import annotations

from typing import Dict, Iterable, List, Mapping, Optional, Set

from lattice_ci.core.config.errors import CycleDetectedError, UnknownNeedsError


def _validate(dependencies: Mapping[str, Iterable[str]]) -> Dict[str, List[str]]:
    deps: Dict[str, List[str]] = {}
    for name, dlist in dependencies.items():
        d = list(dlist or [])
        for dep in d:
            if dep not in dependencies:
                raise UnknownNeedsError(f"Job '{name}' needs unknown job '{dep}'")
        deps[name] = d
    return deps


def find_cycle(dependencies: Mapping[str, Iterable[str]]) -> Optional[List[str]]:
    """
    Procura um ciclo no grafo de dependências.

    A busca é uma DFS determinística (nós e arestas em ordem lexicográfica).

    Returns:
        Optional[List[str]]: caminho do ciclo, com o primeiro nó repetido no
        final (ex.: ["a", "b", "a"]; auto-referência: ["a", "a"]), ou None.
    """
    deps = {name: sorted(set(d or [])) for name, d in dependencies.items()}
    WHITE, GRAY, BLACK = 0, 1, 2
    color: Dict[str, int] = {name: WHITE for name in deps}
    stack: List[str] = []

    def visit(node: str) -> Optional[List[str]]:
        color[node] = GRAY
        stack.append(node)
        for dep in deps.get(node, []):
            if dep not in color:
                continue
            if color[dep] == GRAY:
                start = stack.index(dep)
                # o caminho segue a direção "precisa de"
                return stack[start:] + [dep]
            if color[dep] == WHITE:
                found = visit(dep)
                if found:
                    return found
        stack.pop()
        color[node] = BLACK
        return None

    for name in sorted(deps):
        if color[name] == WHITE:
            found = visit(name)
            if found:
                return found
    return None


def plan_execution(dependencies: Mapping[str, Iterable[str]]) -> List[str]:
    """
    Valida e produz uma ordem topológica determinística de Jobs.

    A ordenação é determinística: sempre que múltiplos Jobs estiverem
    prontos, a escolha é feita por ordem lexicográfica do nome.

    Args:
        dependencies: mapa `job -> dependências` (todas devem existir no mapa).

    Returns:
        List[str]: nomes de Jobs em ordem topológica.

    Raises:
        UnknownNeedsError: se um Job depender de um Job inexistente.
        CycleDetectedError: se houver ciclo (com o caminho em `.cycle`).
    """
    deps = _validate(dependencies)

    # Kahn's algorithm (deterministic)
    incoming_count: Dict[str, int] = {name: 0 for name in deps}
    outgoing: Dict[str, Set[str]] = {name: set() for name in deps}

    for name, dlist in deps.items():
        incoming_count[name] = len(set(dlist))
        for dep in set(dlist):
            outgoing[dep].add(name)

    ready: List[str] = sorted([n for n, c in incoming_count.items() if c == 0])
    order: List[str] = []

    while ready:
        name = ready.pop(0)  # smallest lexicographic
        order.append(name)
        for child in sorted(outgoing[name]):
            incoming_count[child] -= 1
            if incoming_count[child] == 0:
                ready.append(child)
                ready.sort()

    if len(order) != len(deps):
        cycle = find_cycle(deps) or []
        raise CycleDetectedError(
            f"Cycle detected in job dependency graph: {' -> '.join(cycle)}",
            cycle=cycle,
        )

    return order
