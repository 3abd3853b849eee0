"""
Configuration Manager

Single entry point a microservice uses to read its configuration:

    config_manager = ConfigManager("credit_service")
    config = config_manager.get_service_config()
    host, port = config_manager.discover_service(
        service_name="postgres_service",
        default_host="localhost",
        default_port=5432,
        env_host_key="POSTGRES_HOST",
        env_port_key="POSTGRES_PORT",
    )
"""

import logging
import os
from typing import Optional, Tuple

from core.config import InfraConfig, LoggingConfig, ServiceConfig, load_environment

logger = logging.getLogger(__name__)


class ConfigManager:
    """Loads and caches the configuration of one service"""

    def __init__(self, service_name: str):
        self.service_name = service_name
        self.environment = load_environment()
        self._service_config: Optional[ServiceConfig] = None
        self._infra_config: Optional[InfraConfig] = None
        self._logging_config: Optional[LoggingConfig] = None

    def get_service_config(self) -> ServiceConfig:
        if self._service_config is None:
            self._service_config = ServiceConfig.from_env(self.service_name)
        return self._service_config

    def get_infra_config(self) -> InfraConfig:
        if self._infra_config is None:
            self._infra_config = InfraConfig.from_env()
        return self._infra_config

    def get_logging_config(self) -> LoggingConfig:
        if self._logging_config is None:
            self._logging_config = LoggingConfig.from_env()
        return self._logging_config

    def discover_service(
        self,
        service_name: str,
        default_host: str,
        default_port: int,
        env_host_key: Optional[str] = None,
        env_port_key: Optional[str] = None,
    ) -> Tuple[str, int]:
        """
        Resolve host/port of a dependency.

        Priority: environment variable → default fallback.
        """
        host = os.getenv(env_host_key) if env_host_key else None
        port_raw = os.getenv(env_port_key) if env_port_key else None

        port = default_port
        if port_raw:
            try:
                port = int(port_raw)
            except ValueError:
                logger.warning(f"Invalid port {port_raw!r} for {service_name}, using {default_port}")

        resolved = (host or default_host, port)
        logger.debug(f"Resolved {service_name} -> {resolved[0]}:{resolved[1]}")
        return resolved

    def print_config_summary(self, show_secrets: bool = False):
        """Log the effective configuration (development aid)"""
        service = self.get_service_config()
        infra = self.get_infra_config()
        password = infra.postgres_password if show_secrets else "***"

        logger.info(f"Configuration summary for {self.service_name} ({self.environment})")
        logger.info(f"  port={service.service_port} debug={service.debug} log_level={service.log_level}")
        logger.info(
            f"  postgres={infra.postgres_user}:{password}@{infra.postgres_host}:"
            f"{infra.postgres_port}/{infra.postgres_db}"
        )
        logger.info(f"  nats={infra.nats_servers} enabled={service.nats_enabled}")
        logger.info(
            f"  scheduler_enabled={service.scheduler_enabled} cron='{service.monthly_refresh_cron}'"
        )


__all__ = ["ConfigManager"]
