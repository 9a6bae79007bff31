# src/lattice_ci/core/store/files.py
"""
Captura e restauração de arquivos do diretório de trabalho de um Job.

Regras (v1):
    - cada entrada de `paths` é um glob relativo ao workdir (`**` recursivo)
    - diretórios casados são capturados recursivamente
    - caminhos fora do workdir são ignorados
    - as chaves do snapshot são caminhos relativos POSIX, em ordem estável
"""

from __future__ import annotations

import os
import tempfile
from pathlib import Path
from typing import Any, Dict, Iterable, Mapping, Union

import joblib

from lattice_ci.core.exceptions import StoreIOError


def _inside(root: Path, candidate: Path) -> bool:
    try:
        candidate.resolve().relative_to(root.resolve())
    except ValueError:
        return False
    return True


def capture_paths(workdir: Union[str, Path], paths: Iterable[str]) -> Dict[str, bytes]:
    """Lê os arquivos casados por `paths` dentro de `workdir`."""
    root = Path(workdir)
    captured: Dict[str, bytes] = {}
    for pattern in paths:
        pattern = pattern.replace("\\", "/").rstrip("/")
        while pattern.startswith("./"):
            pattern = pattern[2:]
        if not pattern or pattern.startswith("/"):
            continue
        for match in sorted(root.glob(pattern)):
            if not _inside(root, match):
                continue
            files = [match] if match.is_file() else sorted(p for p in match.rglob("*") if p.is_file())
            for f in files:
                captured[f.relative_to(root).as_posix()] = f.read_bytes()
    return dict(sorted(captured.items()))


def restore_files(workdir: Union[str, Path], files: Mapping[str, bytes]) -> None:
    """Escreve um snapshot de arquivos dentro de `workdir`."""
    root = Path(workdir)
    for rel, content in files.items():
        target = root / rel
        if not _inside(root, target):
            continue
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(content)


def atomic_dump(obj: Any, path: Path) -> None:
    """
    Persiste `obj` com joblib de forma atômica (arquivo temporário + os.replace).

    Raises:
        StoreIOError: falha de escrita.
    """
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=str(path.parent))
        os.close(fd)
        try:
            joblib.dump(obj, tmp)
            os.replace(tmp, path)
        finally:
            if os.path.exists(tmp):
                os.remove(tmp)
    except OSError as e:
        raise StoreIOError(f"failed to write {path}", details={"path": str(path), "reason": str(e)}) from e


def load_blob(path: Path) -> Any:
    """
    Carrega um blob persistido com joblib.

    Raises:
        FileNotFoundError: o blob não existe.
        StoreIOError: o blob existe mas não pode ser lido.
    """
    if not path.exists():
        raise FileNotFoundError(str(path))
    try:
        return joblib.load(path)
    except Exception as e:
        raise StoreIOError(f"failed to read {path}", details={"path": str(path), "reason": str(e)}) from e
