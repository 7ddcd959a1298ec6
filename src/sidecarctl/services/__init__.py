"""Service layer — shutdown token and the lifecycle coordinator.

Services may import from config and infrastructure layers.
They must never import from cli.
"""
