# src/lattice_ci/core/store/cache_store.py
"""
CacheStore do Lattice CI (best-effort, entre pipelines).

No Lattice CI o cache é uma otimização: sua ausência nunca falha um Job.
Esta Store persiste snapshots de arquivos indexados por chave, com
escrita atômica por chave.

Decisões (v1):
    - Formato: joblib
    - Caminho determinístico: <root>/cache/<sha256(chave)>.joblib
    - A chave já chega expandida (variáveis substituídas pelo chamador)
    - `policy=pull` nunca escreve; `policy=push` nunca é lido pelo Scheduler
    - Último escritor vence

Limites explícitos:
    - Não decide se uma falha deve ser ignorada: erros de I/O são levantados
      como StoreIOError e o Scheduler os registra como warning
    - Não expira entradas
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Iterable, Optional, Union

from lattice_ci.core.pipeline.types import CachePolicy

from .files import atomic_dump, capture_paths, load_blob, restore_files


@dataclass(frozen=True)
class CacheBlob:
    """Snapshot de arquivos associado a uma chave de cache."""
    key: str
    files: Dict[str, bytes] = field(default_factory=dict)
    created_at: Optional[str] = None

    def restore(self, workdir: Union[str, Path]) -> None:
        restore_files(workdir, self.files)


class CacheStore:
    """Store canônica (v1) de cache entre pipelines."""

    def __init__(self, root: Union[str, Path]):
        self.root = Path(root)

    def path_for(self, key: str) -> Path:
        digest = hashlib.sha256(key.encode("utf-8")).hexdigest()
        return self.root / "cache" / f"{digest}.joblib"

    def fetch(self, key: str) -> Optional[CacheBlob]:
        """
        Retorna o blob da chave, ou None em caso de miss.

        Raises:
            StoreIOError: blob existente mas ilegível.
        """
        try:
            blob = load_blob(self.path_for(key))
        except FileNotFoundError:
            return None
        if not isinstance(blob, CacheBlob) or blob.key != key:
            return None
        return blob

    def store(
        self,
        key: str,
        paths: Iterable[str],
        policy: CachePolicy,
        workdir: Union[str, Path],
    ) -> Optional[CacheBlob]:
        """
        Captura `paths` do workdir e grava sob `key` (quando a política permite).

        Returns:
            Optional[CacheBlob]: blob gravado, ou None para `policy=pull`.

        Raises:
            StoreIOError: falha de escrita.
        """
        if not policy.pushes:
            return None
        blob = CacheBlob(
            key=key,
            files=capture_paths(workdir, paths),
            created_at=datetime.now(timezone.utc).isoformat(),
        )
        atomic_dump(blob, self.path_for(key))
        return blob
