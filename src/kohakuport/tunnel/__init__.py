"""
Tunneling service adapters.

Forwarders are opened on the local ngrok agent, which maps a public URL to a
local target address.
"""

from kohakuport.tunnel.ngrok_agent import NgrokAgentAdapter, agent_addr, agent_proto

__all__ = ["NgrokAgentAdapter", "agent_addr", "agent_proto"]
