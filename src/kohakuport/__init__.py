"""KohakuPort: keep ngrok tunnels in sync with running Docker containers."""

__version__ = "0.1.0"
