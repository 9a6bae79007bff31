"""
# Store — Lattice CI

Persistência de cache (best-effort, entre pipelines) e de artefatos
(garantidos, por pipeline), com escrita atômica por chave via joblib.

- **cache_store**: `CacheStore.fetch(key)` / `CacheStore.store(key, paths, policy, workdir)`
- **artifact_store**: `ArtifactStore.publish(...)` / `ArtifactStore.fetch(pipeline_id, job_name)`
- **dotenv**: parser de relatórios `KEY=VALUE`
- **files**: captura/restauração de arquivos e escrita atômica
"""

from .artifact_store import ArtifactSet, ArtifactStore
from .cache_store import CacheBlob, CacheStore
from .dotenv import DotenvParseError, parse_dotenv

__all__ = [
    "ArtifactSet",
    "ArtifactStore",
    "CacheBlob",
    "CacheStore",
    "DotenvParseError",
    "parse_dotenv",
]
