"""
Enumeration types for KohakuPort.

This module defines the enumeration types shared by the convergence core,
the adapters and the API layer.
"""

from enum import Enum


# =============================================================================
# Tunnel-Related Enums
# =============================================================================


class Protocol(str, Enum):
    """
    Application-layer protocol spoken by a container port.

    Determined by the protocol detector, or forced per intent via a
    protocol override. UNKNOWN is a detection result only; forwarders are
    never opened with it.
    """

    HTTP = "http"  # Plain HTTP/1.x server
    HTTPS = "https"  # HTTP behind TLS
    TLS = "tls"  # TLS handshake succeeds but no HTTP inside
    TCP = "tcp"  # Connection accepted, no recognizable handshake
    UNKNOWN = "unknown"  # Refused, unreachable or timed out

    @property
    def is_known(self) -> bool:
        return self is not Protocol.UNKNOWN


class ConvergeOutcome(str, Enum):
    """
    Summary result of one convergence pass.

    - OK: every attempted action succeeded (or nothing to do)
    - PARTIAL: some actions failed, they are retried on the next pass
    - FAILED: every attempted action failed, or an adapter was unreachable
    - TIMEOUT: the pass deadline was exceeded
    """

    OK = "ok"
    PARTIAL = "partial"
    FAILED = "failed"
    TIMEOUT = "timeout"


# =============================================================================
# Configuration Enums
# =============================================================================


class LogLevel(str, Enum):
    """
    Logging verbosity levels for KohakuPort.

    Levels (from most to least verbose):
        - FULL: Everything, including third-party client chatter
        - DEBUG: Debug messages and above
        - INFO: Informational messages and above
        - WARNING: Only warnings and errors
    """

    FULL = "full"
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
