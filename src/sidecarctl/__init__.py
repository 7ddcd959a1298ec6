"""sidecarctl — layered configuration and dual-stack diagnostic listeners."""

__version__ = "0.1.0"
