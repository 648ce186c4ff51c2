"""Runtime adapter exception classes."""


class AdapterError(Exception):
    """Base exception for container runtime and tunneling adapters."""

    pass


class AdapterUnavailable(AdapterError):
    """The container runtime cannot be reached (or did not answer in time)."""

    pass


class TunnelError(AdapterError):
    """Base exception for tunneling service operations."""

    pass


class ServiceUnavailable(TunnelError):
    """The tunneling service cannot be reached or is temporarily failing."""

    pass


class QuotaExceeded(TunnelError):
    """The tunneling account has no room for another forwarder."""

    pass


class InvalidTarget(TunnelError):
    """The tunneling service rejected the target or forwarder options."""

    def __init__(self, target: str, reason: str):
        self.target = target
        super().__init__(f"Invalid target {target}: {reason}")


class ForwarderNotFound(TunnelError):
    """No forwarder exists with the given id."""

    def __init__(self, forwarder_id: str):
        self.forwarder_id = forwarder_id
        super().__init__(f"Forwarder not found: {forwarder_id}")
