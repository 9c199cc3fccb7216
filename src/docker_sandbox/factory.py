# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_sandbox

import docker
from docker.errors import DockerException

from docker_sandbox.config import SandboxConfig
from docker_sandbox.engine import DockerEngine
from docker_sandbox.exceptions import DockerSandboxError
from docker_sandbox.utils.logger import logger


class EngineFactory:
    """
    Factory to create DockerEngine instances from configuration.
    """

    @staticmethod
    def client_environment(config: SandboxConfig) -> dict[str, str]:
        """Translate the configuration into the variables ``docker.from_env`` reads."""
        environment = {"DOCKER_HOST": config.docker_host}
        if config.docker_tls_verify:
            environment["DOCKER_TLS_VERIFY"] = "1"
        if config.docker_config:
            environment["DOCKER_CERT_PATH"] = config.docker_config
        return environment

    @staticmethod
    def get_engine(config: SandboxConfig | None = None) -> DockerEngine:
        """
        Returns an engine connected to the configured Docker daemon with its profiles registered.
        """
        config = config or SandboxConfig()
        try:
            client = docker.from_env(environment=EngineFactory.client_environment(config))
        except DockerException as e:
            logger.error(f"Failed to connect to Docker at {config.docker_host}: {e}")
            raise DockerSandboxError(f"Failed to connect to Docker at {config.docker_host}") from e

        logger.info(f"Connected to Docker at {config.docker_host} using shell {config.shell.value}")
        return DockerEngine(client, shell=config.shell, profiles=config.profiles)


get_engine = EngineFactory.get_engine
