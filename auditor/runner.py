import subprocess
import sys
import threading
import time
from pathlib import Path
from typing import List, Optional, Sequence

import psutil

from metrics.record import METRICS_FILENAME
from orchestrator.errors import CollaboratorFailure, TrialCancelled
from orchestrator.log import get_logger

logger = get_logger(__name__)

DEFAULT_COMMAND = [
    "{python}", "-m", "auditor.throttle", "{url}",
    "--throttling", "{condition}",
    "--output-dir", "{output_dir}",
]
LOG_FILENAME = "collaborator.log"


class AuditCollaborator:
    """Runs the external audit command for one trial and waits for it.

    The command is a list of argument templates; ``{python}``, ``{url}``,
    ``{condition}`` and ``{output_dir}`` are substituted per trial. Output is
    captured in ``collaborator.log`` inside the trial directory.
    """

    def __init__(self, command: Optional[Sequence[str]] = None, timeout: Optional[float] = None,
                 poll_interval: float = 0.2, kill_grace: float = 5.0):
        self.command = list(command) if command else list(DEFAULT_COMMAND)
        self.timeout = timeout
        self.poll_interval = poll_interval
        self.kill_grace = kill_grace

    def build_command(self, url: str, condition: str, output_dir: Path) -> List[str]:
        values = {
            "python": sys.executable,
            "url": url,
            "condition": condition,
            "output_dir": str(output_dir),
        }
        try:
            return [part.format(**values) for part in self.command]
        except (KeyError, IndexError) as e:
            raise CollaboratorFailure(f"Bad command template {self.command}: {e}") from e

    def run(self, url: str, condition: str, output_dir: Path,
            cancel: Optional[threading.Event] = None) -> Path:
        """Run one audit; returns the metrics file the command wrote."""
        output_dir = Path(output_dir)
        cmd = self.build_command(url, condition, output_dir)
        try:
            output_dir.mkdir(parents=True, exist_ok=True)
            log = open(output_dir / LOG_FILENAME, "wb")
        except OSError as e:
            raise CollaboratorFailure(f"Cannot prepare trial directory {output_dir}: {e}") from e
        logger.debug("Spawning: %s", " ".join(cmd))

        with log:
            try:
                proc = subprocess.Popen(cmd, stdin=subprocess.DEVNULL, stdout=log, stderr=subprocess.STDOUT)
            except OSError as e:
                raise CollaboratorFailure(f"Could not start audit command: {e}") from e
            returncode = self._wait(proc, cancel)

        if returncode != 0:
            raise CollaboratorFailure("Audit command failed", returncode)

        metrics_file = output_dir / METRICS_FILENAME
        if not metrics_file.is_file():
            raise CollaboratorFailure(f"Audit command wrote no {METRICS_FILENAME}")
        return metrics_file

    def _wait(self, proc: subprocess.Popen, cancel: Optional[threading.Event]) -> int:
        started = time.monotonic()
        while True:
            try:
                return proc.wait(timeout=self.poll_interval)
            except subprocess.TimeoutExpired:
                pass
            if cancel is not None and cancel.is_set():
                self.terminate(proc)
                raise TrialCancelled("Audit cancelled")
            if self.timeout is not None and time.monotonic() - started > self.timeout:
                self.terminate(proc)
                raise CollaboratorFailure(f"Audit command timed out after {self.timeout:g}s")

    def terminate(self, proc: subprocess.Popen):
        """Stop the command and everything it spawned (lighthouse starts Chrome)."""
        try:
            parent = psutil.Process(proc.pid)
            procs = parent.children(recursive=True) + [parent]
        except psutil.NoSuchProcess:
            procs = []

        for p in procs:
            try:
                p.terminate()
            except psutil.NoSuchProcess:
                pass
        _, alive = psutil.wait_procs(procs, timeout=self.kill_grace)
        for p in alive:
            try:
                p.kill()
            except psutil.NoSuchProcess:
                pass

        # reap so no zombie is left behind
        try:
            proc.wait(timeout=self.kill_grace)
        except subprocess.TimeoutExpired:
            proc.kill()
            proc.wait()
