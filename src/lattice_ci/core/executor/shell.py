# src/lattice_ci/core/executor/shell.py
"""
Executor de shell local (subprocess).

Cada comando é executado como `<shell> -c <comando>` no workdir do Job,
em sequência; o primeiro exit code diferente de zero encerra o Job.
O ambiente do processo é o ambiente do runner sobreposto pelo ambiente
do Job.

Cada comando roda em uma sessão própria: timeout e cancelamento
sinalizam o grupo de processos inteiro, incluindo netos que herdam o
pipe de saída.

A imagem (`image`) é um identificador opaco ignorado por este backend.
"""

from __future__ import annotations

import os
import signal
import subprocess
import threading
import time
from typing import Dict, FrozenSet, Iterable, Optional

from lattice_ci.core.exceptions import JobTimeout

from .base import ExecutionOutcome, ExecutionRequest


def _signal_group(proc: subprocess.Popen, sig: int) -> None:
    try:
        os.killpg(proc.pid, sig)
    except ProcessLookupError:
        # grupo já encerrado
        pass


class ShellExecutor:
    """Backend local baseado em subprocess."""

    def __init__(
        self,
        *,
        name: str = "local-shell",
        tags: Iterable[str] = (),
        run_untagged: bool = True,
        shell: str = "/bin/sh",
        inherit_env: bool = True,
    ):
        self.name = name
        self.tags: FrozenSet[str] = frozenset(tags)
        self.run_untagged = run_untagged
        self.shell = shell
        self.inherit_env = inherit_env
        self._procs: Dict[str, subprocess.Popen] = {}
        self._canceled: Dict[str, bool] = {}
        self._lock = threading.Lock()

    def supports(self, request: ExecutionRequest) -> bool:
        return True

    def _environment(self, request: ExecutionRequest) -> Dict[str, str]:
        env = dict(os.environ) if self.inherit_env else {}
        env.update(request.env)
        return env

    def execute(self, request: ExecutionRequest) -> ExecutionOutcome:
        deadline: Optional[float] = None
        if request.timeout is not None:
            deadline = time.monotonic() + request.timeout

        with self._lock:
            self._canceled[request.job_name] = False

        output = []
        exit_code = 0
        try:
            for command in request.commands:
                with self._lock:
                    if self._canceled.get(request.job_name):
                        return ExecutionOutcome(exit_code=-1, output="".join(output), canceled=True)
                output.append(f"$ {command}\n")
                proc = subprocess.Popen(
                    [self.shell, "-c", command],
                    cwd=request.workdir,
                    env=self._environment(request),
                    stdout=subprocess.PIPE,
                    stderr=subprocess.STDOUT,
                    text=True,
                    start_new_session=True,
                )
                with self._lock:
                    self._procs[request.job_name] = proc
                    canceled_early = self._canceled.get(request.job_name, False)
                if canceled_early:
                    _signal_group(proc, signal.SIGTERM)
                remaining = None if deadline is None else max(0.0, deadline - time.monotonic())
                try:
                    out, _ = proc.communicate(timeout=remaining)
                except subprocess.TimeoutExpired:
                    _signal_group(proc, signal.SIGKILL)
                    out, _ = proc.communicate()
                    output.append(out or "")
                    raise JobTimeout(
                        f"job '{request.job_name}' exceeded {request.timeout}s",
                        details={"job": request.job_name, "timeout_seconds": request.timeout},
                    ) from None
                finally:
                    with self._lock:
                        self._procs.pop(request.job_name, None)
                output.append(out or "")
                exit_code = proc.returncode
                with self._lock:
                    canceled = self._canceled.get(request.job_name, False)
                if canceled:
                    return ExecutionOutcome(exit_code=exit_code, output="".join(output), canceled=True)
                if exit_code != 0:
                    break
        finally:
            with self._lock:
                self._canceled.pop(request.job_name, None)

        return ExecutionOutcome(exit_code=exit_code, output="".join(output))

    def cancel(self, job_name: str) -> None:
        with self._lock:
            if job_name in self._canceled:
                self._canceled[job_name] = True
            proc = self._procs.get(job_name)
        if proc is not None:
            _signal_group(proc, signal.SIGTERM)
