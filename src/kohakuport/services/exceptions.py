"""Convergence manager exception classes."""


class ManagerError(Exception):
    """Base exception for convergence manager operations."""

    pass


class ConvergeError(ManagerError):
    """Every action attempted by a convergence pass failed."""

    def __init__(self, report):
        self.report = report
        failures = ", ".join(f"{cid}: {err}" for cid, err in report.errors.items())
        super().__init__(f"Convergence pass failed ({failures})")


class ConvergeTimeout(ManagerError):
    """A convergence pass exceeded its deadline."""

    def __init__(self, timeout: float | None):
        self.timeout = timeout
        super().__init__(f"Convergence pass exceeded {timeout}s deadline")


class ManagerClosedError(ManagerError):
    """The manager has been shut down and accepts no more work."""

    pass


class EndpointNotFoundError(ManagerError):
    """No live endpoint exists for the container."""

    def __init__(self, container_id: str):
        self.container_id = container_id
        super().__init__(f"No tunnel for container: {container_id}")
