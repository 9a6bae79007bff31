# src/lattice_ci/core/store/dotenv.py
"""
Parser de artefatos dotenv (`artifacts:reports:dotenv`).

Formato aceito (v1), uma atribuição por linha:
    KEY=VALUE
    export KEY=VALUE
    KEY="valor com espaços e \\n escapes"
    KEY='valor literal'
    # comentários e linhas em branco são ignorados

Valores sem aspas são usados como estão (espaços nas bordas removidos).
Linhas que não são atribuições válidas levantam `DotenvParseError`
com o número da linha.
"""

from __future__ import annotations

import re
from typing import Dict


class DotenvParseError(ValueError):
    """Linha de dotenv malformada."""


_KEY = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
_ESCAPES = {"n": "\n", "t": "\t", "r": "\r", '"': '"', "\\": "\\", "$": "$"}


def _unescape(value: str) -> str:
    out = []
    i = 0
    while i < len(value):
        ch = value[i]
        if ch == "\\" and i + 1 < len(value) and value[i + 1] in _ESCAPES:
            out.append(_ESCAPES[value[i + 1]])
            i += 2
            continue
        out.append(ch)
        i += 1
    return "".join(out)


def parse_dotenv(text: str) -> Dict[str, str]:
    """Converte o conteúdo de um arquivo dotenv em mapa de variáveis."""
    out: Dict[str, str] = {}
    for lineno, raw in enumerate(text.splitlines(), start=1):
        line = raw.strip()
        if not line or line.startswith("#"):
            continue
        if line.startswith("export "):
            line = line[len("export "):].lstrip()
        if "=" not in line:
            raise DotenvParseError(f"line {lineno}: expected KEY=VALUE, got {raw!r}")
        key, value = line.split("=", 1)
        key = key.strip()
        if not _KEY.match(key):
            raise DotenvParseError(f"line {lineno}: invalid variable name {key!r}")
        value = value.strip()
        if len(value) >= 2 and value[0] == value[-1] and value[0] in ("'", '"'):
            quote = value[0]
            value = value[1:-1]
            if quote == '"':
                value = _unescape(value)
        out[key] = value
    return out
