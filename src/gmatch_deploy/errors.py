"""Deployer error taxonomy."""

from typing import List, Optional


class DeployError(Exception):
    """Base class for fatal deployer errors."""

    exit_code = 1


class InvalidTarget(DeployError):
    """Selector names no known component and cannot be read as a tag."""

    pass


class PreconditionMissing(DeployError):
    """Required tool, file or argument is absent."""

    pass


class ApplyFailed(DeployError):
    """Manifest apply or image update rejected by the cluster."""

    pass


class StageTimedOut(DeployError):
    """Readiness or completion wait exceeded its budget."""

    pass


class StageFailed(DeployError):
    """Cluster reported an explicit failure while waiting."""

    pass


class RollbackFailed(DeployError):
    """Revert to the last good revision failed."""

    def __init__(self, message: str, snapshot=None):
        super().__init__(message)
        self.snapshot = snapshot


class CommandError(Exception):
    """External CLI exited non-zero."""

    def __init__(
        self,
        cmd: List[str],
        returncode: int,
        stderr: Optional[str] = None,
        stdout: Optional[str] = None,
    ):
        self.cmd = cmd
        self.returncode = returncode
        self.stderr = (stderr or "").strip()
        self.stdout = stdout or ""
        super().__init__(
            f"{cmd[0]} {cmd[1] if len(cmd) > 1 else ''} exited with "
            f"{returncode}: {self.stderr or 'no error output'}"
        )

    @property
    def not_found(self) -> bool:
        """Whether the CLI reported a missing object or release."""
        return "notfound" in self.stderr.lower().replace(" ", "")
