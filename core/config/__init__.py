#!/usr/bin/env python3
"""Modular configuration system

Configuration hierarchy:
- infra_config: Infrastructure services (PostgreSQL, NATS)
- service_config: Per-service runtime settings
- logging_config: Logging configuration
"""
import os
from dotenv import load_dotenv
from .logging_config import LoggingConfig
from .infra_config import InfraConfig
from .service_config import ServiceConfig

ENV_FILES = {
    "development": "deployment/environments/dev.env",
    "dev": "deployment/environments/dev.env",
    "testing": "deployment/environments/test.env",
    "test": "deployment/environments/test.env",
    "staging": "deployment/environments/staging.env",
    "production": "deployment/environments/production.env",
}


def load_environment() -> str:
    """Load the env file for the current ENV (existing variables win)"""
    env = os.getenv("ENV") or os.getenv("ENVIRONMENT", "development")
    env_file = ENV_FILES.get(env, "deployment/environments/dev.env")
    load_dotenv(env_file, override=False)
    return env


__all__ = [
    'ENV_FILES',
    'load_environment',
    'LoggingConfig',
    'InfraConfig',
    'ServiceConfig',
]
