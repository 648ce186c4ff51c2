"""Capability interfaces isolating the core from external systems."""

from kohakuport.adapters.base import ContainerAdapter, TunnelAdapter
from kohakuport.adapters.exceptions import (
    AdapterError,
    AdapterUnavailable,
    ForwarderNotFound,
    InvalidTarget,
    QuotaExceeded,
    ServiceUnavailable,
    TunnelError,
)

__all__ = [
    "ContainerAdapter",
    "TunnelAdapter",
    "AdapterError",
    "AdapterUnavailable",
    "TunnelError",
    "ServiceUnavailable",
    "QuotaExceeded",
    "InvalidTarget",
    "ForwarderNotFound",
]
