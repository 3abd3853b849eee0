#!/usr/bin/env python3
"""
Core Module for Microservices Architecture

Shared infrastructure used by the microservices in this repository.

COMPONENTS:
    - config/: Environment-driven configuration dataclasses
    - config_manager.py: Per-service configuration entry point
    - logger.py: Process-wide logging setup
    - postgres_client.py: asyncpg pool wrapper
    - nats_client.py: NATS JetStream event bus

USAGE:
    from core.config_manager import ConfigManager

    config = ConfigManager("credit_service")
"""

from .config_manager import ConfigManager

__all__ = [
    "ConfigManager",
]

__version__ = "2.0.0"
