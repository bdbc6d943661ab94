# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""Run configuration.

``E2EConfig`` holds the knobs of a single run (retry budgets and the
identity handed to the collaborators); ``ApiConfig`` describes how to reach
the HTTP inspection API and is usually read from the environment:

=========================  ===============================================
Variable                   Meaning
=========================  ===============================================
``HUB_E2E_API_URL``        Base URL of the inspection API (required)
``HUB_E2E_REALM``          Realm the device belongs to (required)
``HUB_E2E_DEVICE_ID``      Device identifier (required)
``HUB_E2E_TOKEN``          Bearer token (required)
``HUB_E2E_API_TIMEOUT``    Request timeout in seconds (default 10)
=========================  ===============================================
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass, field

from hub_e2e.errors import ConfigurationError

__all__ = ["ApiConfig", "E2EConfig"]

DEFAULT_NODE_ID = "acc78dae-194c-4942-8f33-9f719629e316"
DEFAULT_HUB_PORT = 50051


@dataclass(frozen=True)
class E2EConfig:
    """Configuration for one end-to-end run.

    Attributes:
        discovery_attempts: Retry budget for the interface discovery check.
        check_attempts: Retry budget for each device-side state check.
        node_id: Identifier the device client registers with on the hub.
        hub_port: Port the routing hub listens on.

    Raises:
        ConfigurationError: If an attempt budget is below 1 or the port is invalid.

    """

    discovery_attempts: int = 20
    check_attempts: int = 10
    node_id: str = DEFAULT_NODE_ID
    hub_port: int = DEFAULT_HUB_PORT

    def __post_init__(self) -> None:
        """Validate configuration values."""
        if self.discovery_attempts < 1:
            raise ConfigurationError(f"discovery_attempts must be >= 1, got {self.discovery_attempts}")
        if self.check_attempts < 1:
            raise ConfigurationError(f"check_attempts must be >= 1, got {self.check_attempts}")
        if not 0 < self.hub_port < 65536:
            raise ConfigurationError(f"hub_port must be in 1..65535, got {self.hub_port}")


@dataclass(frozen=True)
class ApiConfig:
    """Connection settings for the HTTP inspection API.

    Attributes:
        url: Base URL, without a trailing slash.
        realm: Realm name.
        device_id: Device identifier.
        token: Bearer token sent with every request.
        timeout: Per-request timeout in seconds.

    """

    url: str
    realm: str
    device_id: str
    token: str = field(repr=False)
    timeout: float = 10.0

    def __post_init__(self) -> None:
        """Normalize the base URL."""
        object.__setattr__(self, "url", self.url.rstrip("/"))

    @property
    def device_url(self) -> str:
        """URL of the device resource."""
        return f"{self.url}/v1/{self.realm}/devices/{self.device_id}"

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> ApiConfig:
        """Read the configuration from environment variables.

        Raises:
            ConfigurationError: Listing every missing or invalid variable.

        """
        env = os.environ if environ is None else environ
        required = {
            "url": "HUB_E2E_API_URL",
            "realm": "HUB_E2E_REALM",
            "device_id": "HUB_E2E_DEVICE_ID",
            "token": "HUB_E2E_TOKEN",
        }
        missing = [var for var in required.values() if not env.get(var)]
        timeout = 10.0
        raw_timeout = env.get("HUB_E2E_API_TIMEOUT")
        problems = [f"{var} is not set" for var in missing]
        if raw_timeout:
            try:
                timeout = float(raw_timeout)
            except ValueError:
                problems.append(f"HUB_E2E_API_TIMEOUT is not a number: {raw_timeout!r}")
            else:
                if timeout <= 0:
                    problems.append(f"HUB_E2E_API_TIMEOUT must be positive, got {raw_timeout}")
        if problems:
            raise ConfigurationError("invalid inspection API environment: " + "; ".join(problems))
        return cls(timeout=timeout, **{key: env[var] for key, var in required.items()})
