"""Protocol detection for container endpoints."""

from kohakuport.detect.protocol import ProtocolDetector, split_address

__all__ = ["ProtocolDetector", "split_address"]
