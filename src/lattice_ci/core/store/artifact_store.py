# src/lattice_ci/core/store/artifact_store.py
"""
ArtifactStore do Lattice CI (garantido, escopo de pipeline).

Artefatos são a saída de um Job entregue aos seus dependentes. Ao contrário
do cache, a ausência de um artefato de dependência declarada é fatal para o
Job consumidor.

Decisões (v1):
    - Formato: joblib
    - Chave: (pipeline_id, job_name); nunca compartilhado entre pipelines
    - Caminho: <root>/artifacts/<pipeline_id>/<job_slug>-<hash>.joblib
    - Todo Job bem-sucedido publica um ArtifactSet (possivelmente vazio)
    - Relatórios dotenv são interpretados na publicação e carregados no set

Invariantes:
    - `fetch` de um set inexistente levanta ArtifactNotFound
    - Escritas são atômicas por chave

Limites explícitos:
    - Não expira artefatos (`expire_in` é apenas registrado)
"""

from __future__ import annotations

import hashlib
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Iterable, Optional, Union

from lattice_ci.core.exceptions import ArtifactNotFound, StoreIOError

from .dotenv import DotenvParseError, parse_dotenv
from .files import atomic_dump, capture_paths, load_blob, restore_files


@dataclass(frozen=True)
class ArtifactSet:
    """Artefatos publicados por um Job em um pipeline."""
    pipeline_id: str
    job_name: str
    files: Dict[str, bytes] = field(default_factory=dict)
    dotenv: Dict[str, str] = field(default_factory=dict)
    created_at: Optional[str] = None
    expire_in: Optional[str] = None

    def extract(self, workdir: Union[str, Path]) -> None:
        restore_files(workdir, self.files)


_SLUG = re.compile(r"[^A-Za-z0-9_.-]+")


class ArtifactStore:
    """Store canônica (v1) de artefatos por pipeline."""

    def __init__(self, root: Union[str, Path]):
        self.root = Path(root)

    def path_for(self, pipeline_id: str, job_name: str) -> Path:
        digest = hashlib.sha256(job_name.encode("utf-8")).hexdigest()[:12]
        slug = _SLUG.sub("_", job_name).strip("_") or "job"
        pipeline_dir = _SLUG.sub("_", pipeline_id) or "pipeline"
        return self.root / "artifacts" / pipeline_dir / f"{slug}-{digest}.joblib"

    def publish(
        self,
        pipeline_id: str,
        job_name: str,
        paths: Iterable[str],
        workdir: Union[str, Path],
        dotenv: Optional[str] = None,
        expire_in: Optional[str] = None,
    ) -> ArtifactSet:
        """
        Captura e publica os artefatos de um Job.

        Args:
            pipeline_id: pipeline produtor.
            job_name: Job produtor.
            paths: globs relativos ao workdir.
            workdir: diretório de trabalho do Job.
            dotenv: caminho relativo do relatório dotenv (opcional; ausente → vazio).
            expire_in: retenção declarada (registrada, não aplicada).

        Returns:
            ArtifactSet: set publicado.

        Raises:
            StoreIOError: falha de escrita ou relatório dotenv malformado.
        """
        variables: Dict[str, str] = {}
        if dotenv:
            report = Path(workdir) / dotenv
            if report.is_file():
                try:
                    variables = parse_dotenv(report.read_text(encoding="utf-8"))
                except (DotenvParseError, UnicodeDecodeError) as e:
                    raise StoreIOError(
                        f"invalid dotenv report {dotenv!r} of job '{job_name}'",
                        details={"job": job_name, "path": dotenv, "reason": str(e)},
                    ) from e

        artifact_set = ArtifactSet(
            pipeline_id=pipeline_id,
            job_name=job_name,
            files=capture_paths(workdir, paths),
            dotenv=variables,
            created_at=datetime.now(timezone.utc).isoformat(),
            expire_in=expire_in,
        )
        atomic_dump(artifact_set, self.path_for(pipeline_id, job_name))
        return artifact_set

    def fetch(self, pipeline_id: str, job_name: str) -> ArtifactSet:
        """
        Recupera o ArtifactSet de um Job do mesmo pipeline.

        Raises:
            ArtifactNotFound: nenhum set publicado para (pipeline_id, job_name).
            StoreIOError: set existente mas ilegível.
        """
        try:
            artifact_set = load_blob(self.path_for(pipeline_id, job_name))
        except FileNotFoundError:
            raise ArtifactNotFound(
                f"no artifacts published by job '{job_name}' in pipeline {pipeline_id}",
                details={"pipeline_id": pipeline_id, "job": job_name},
            ) from None
        if (
            not isinstance(artifact_set, ArtifactSet)
            or artifact_set.pipeline_id != pipeline_id
            or artifact_set.job_name != job_name
        ):
            raise ArtifactNotFound(
                f"artifact blob for job '{job_name}' does not belong to pipeline {pipeline_id}",
                details={"pipeline_id": pipeline_id, "job": job_name},
            )
        return artifact_set
