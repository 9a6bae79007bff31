# src/lattice_ci/core/rules/globbing.py
"""
Casamento de globs de caminhos para `rules:changes` e `rules:exists`.

Semântica (v1):
    - `*` casa qualquer sequência sem `/`
    - `?` casa um caractere diferente de `/`
    - `**/` casa zero ou mais diretórios
    - `**` (fora de `**/`) casa qualquer sequência, inclusive `/`
    - `{a,b}` casa uma das alternativas
    - `[...]` é uma classe de caracteres
    - o glob casa o caminho completo (relativo à raiz do repositório)

Caminhos são normalizados com `/` e sem prefixo `./`.
"""

from __future__ import annotations

import re
from functools import lru_cache
from typing import Iterable


def normalize_path(path: str) -> str:
    p = path.replace("\\", "/")
    while p.startswith("./"):
        p = p[2:]
    return p.lstrip("/")


def _translate(glob: str) -> str:
    out = []
    i = 0
    n = len(glob)
    depth = 0  # profundidade de `{...}`
    while i < n:
        ch = glob[i]
        if ch == "*":
            if glob.startswith("**/", i):
                out.append("(?:.*/)?")
                i += 3
                continue
            if glob.startswith("**", i):
                out.append(".*")
                i += 2
                continue
            out.append("[^/]*")
        elif ch == "?":
            out.append("[^/]")
        elif ch == "[":
            end = glob.find("]", i + 1)
            if end == -1:
                out.append(re.escape(ch))
            else:
                body = glob[i + 1:end]
                if body.startswith("!"):
                    body = "^" + body[1:]
                out.append(f"[{body}]")
                i = end
        elif ch == "{":
            depth += 1
            out.append("(?:")
        elif ch == "}" and depth:
            depth -= 1
            out.append(")")
        elif ch == "," and depth:
            out.append("|")
        else:
            out.append(re.escape(ch))
        i += 1
    if depth:
        raise ValueError(f"unbalanced '{{' in glob: {glob!r}")
    return "".join(out)


@lru_cache(maxsize=1024)
def compile_glob(glob: str) -> "re.Pattern[str]":
    return re.compile(rf"^{_translate(normalize_path(glob))}$")


def glob_match(glob: str, path: str) -> bool:
    """Retorna True se `path` casa com `glob`."""
    return compile_glob(glob).match(normalize_path(path)) is not None


def any_match(globs: Iterable[str], paths: Iterable[str]) -> bool:
    """Retorna True se algum caminho casa com algum glob."""
    patterns = [compile_glob(g) for g in globs]
    for path in paths:
        norm = normalize_path(path)
        if any(p.match(norm) for p in patterns):
            return True
    return False
