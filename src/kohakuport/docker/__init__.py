"""Docker runtime adapter."""

from kohakuport.docker.client import DockerContainerAdapter

__all__ = ["DockerContainerAdapter"]
