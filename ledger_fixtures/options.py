# Copyright (c) Microsoft Corporation. All rights reserved.
# Licensed under the Apache 2.0 License.
import os
import re
import shlex
from collections.abc import Mapping
from dataclasses import dataclass, field, fields, replace
from types import MappingProxyType
from typing import Optional, Tuple

from ledger_fixtures.errors import InvalidConfig

# Host through which published container ports are reached by test clients
DEFAULT_PUBLIC_HOST = os.getenv("LEDGER_FIXTURE_PUBLIC_HOST", "127.0.0.1")

DEFAULT_HEALTH_CHECK_TIMEOUT_S = 120
DEFAULT_POLLING_INTERVAL_S = 0.1
DEFAULT_HEALTH_CHECK_PATH = "/"

# Every fixture container carries this label, so that leftovers from
# interrupted runs can be found and removed
DEFAULT_FIXTURE_LABEL = "ledger_fixture"

MIN_IMAGE_VERSION_LEN = 5
MIN_OPS_API_PORT = 1024
MIN_PORT = 1
MAX_PORT = 65535

LABEL_REGEX = re.compile(r"^[a-zA-Z0-9_.-]+$")


def _frozen(mapping=None):
    return MappingProxyType(dict(mapping or {}))


@dataclass(frozen=True)
class FixtureConfig:
    image_name: str
    image_version: str
    ops_api_port: int
    exposed_ports: Mapping = field(default_factory=_frozen)
    health_check_path: str = DEFAULT_HEALTH_CHECK_PATH
    health_check_timeout_s: float = DEFAULT_HEALTH_CHECK_TIMEOUT_S
    poll_interval_s: float = DEFAULT_POLLING_INTERVAL_S
    public_host: str = DEFAULT_PUBLIC_HOST
    command: Tuple[str, ...] = ()
    environment: Mapping = field(default_factory=_frozen)
    label: str = DEFAULT_FIXTURE_LABEL

    @property
    def image_reference(self) -> str:
        return f"{self.image_name}:{self.image_version}"

    @property
    def container_ports(self):
        """All container ports published by the fixture, ops API port included"""
        return sorted(set(self.exposed_ports.values()) | {self.ops_api_port})

    @staticmethod
    def to_json(config):
        r = {
            json_key: getattr(config, name)
            for json_key, name in JSON_KEYS.items()
            if not json_key.endswith("Ms")
        }
        r["exposedPorts"] = dict(config.exposed_ports)
        r["environment"] = dict(config.environment)
        r["command"] = list(config.command)
        r["healthCheckTimeoutMs"] = int(config.health_check_timeout_s * 1000)
        r["pollIntervalMs"] = int(config.poll_interval_s * 1000)
        return r

    @staticmethod
    def from_json(json, defaults=None):
        if not isinstance(json, Mapping):
            raise InvalidConfig("options", f"expected an object, got {type(json).__name__}")
        options = {}
        for json_key, value in json.items():
            if json_key not in JSON_KEYS:
                raise InvalidConfig(json_key, "unknown option")
            name = JSON_KEYS[json_key]
            if json_key.endswith("Ms") and value is not None:
                if not _is_number(value):
                    raise InvalidConfig(name, f"expected milliseconds, got {value!r}")
                value = value / 1000
            options[name] = value
        return validate_options(options, defaults)


JSON_KEYS = {
    "imageName": "image_name",
    "imageVersion": "image_version",
    "opsApiPort": "ops_api_port",
    "exposedPorts": "exposed_ports",
    "healthCheckPath": "health_check_path",
    "healthCheckTimeoutMs": "health_check_timeout_s",
    "pollIntervalMs": "poll_interval_s",
    "publicHost": "public_host",
    "command": "command",
    "environment": "environment",
    "label": "label",
}


def _is_number(value):
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _check_port(name, port, min_port, image):
    if not isinstance(port, int) or isinstance(port, bool):
        raise InvalidConfig(name, f"expected an integer port, got {port!r}", image)
    if not min_port <= port <= MAX_PORT:
        raise InvalidConfig(
            name, f"port {port} is outside {min_port}-{MAX_PORT}", image
        )


def _check_non_empty_str(name, value, image):
    if not isinstance(value, str) or not value.strip():
        raise InvalidConfig(name, f"expected a non-empty string, got {value!r}", image)


def _normalise_command(command, image):
    if command is None:
        return ()
    if isinstance(command, str):
        return tuple(shlex.split(command))
    if not all(isinstance(arg, str) for arg in command):
        raise InvalidConfig("command", "every argument must be a string", image)
    return tuple(command)


def _check_config(config: FixtureConfig) -> FixtureConfig:
    _check_non_empty_str("image_name", config.image_name, None)
    image = f"{config.image_name}:{config.image_version}"

    version = config.image_version
    if not isinstance(version, str) or len(version.strip()) < MIN_IMAGE_VERSION_LEN:
        raise InvalidConfig(
            "image_version",
            f"expected at least {MIN_IMAGE_VERSION_LEN} characters, got {version!r}",
            image,
        )

    _check_port("ops_api_port", config.ops_api_port, MIN_OPS_API_PORT, image)

    if not isinstance(config.exposed_ports, Mapping):
        raise InvalidConfig("exposed_ports", "expected a name to port mapping", image)
    for name, port in config.exposed_ports.items():
        _check_non_empty_str("exposed_ports", name, image)
        _check_port(f"exposed_ports.{name}", port, MIN_PORT, image)

    path = config.health_check_path
    if not isinstance(path, str) or not path.startswith("/"):
        raise InvalidConfig("health_check_path", f"must start with '/', got {path!r}", image)

    for name in ("health_check_timeout_s", "poll_interval_s"):
        value = getattr(config, name)
        if not _is_number(value) or value <= 0:
            raise InvalidConfig(name, f"expected a positive number, got {value!r}", image)

    _check_non_empty_str("public_host", config.public_host, image)

    if not isinstance(config.environment, Mapping):
        raise InvalidConfig("environment", "expected a name to value mapping", image)

    if not isinstance(config.label, str) or not LABEL_REGEX.match(config.label):
        raise InvalidConfig(
            "label", f"expected [a-zA-Z0-9_.-] characters only, got {config.label!r}", image
        )

    return replace(
        config,
        image_name=config.image_name.strip(),
        image_version=version.strip(),
        exposed_ports=_frozen(config.exposed_ports),
        command=_normalise_command(config.command, image),
        environment=_frozen({k: str(v) for k, v in config.environment.items()}),
    )


def validate_options(
    options: Optional[Mapping] = None, defaults: Optional[FixtureConfig] = None
) -> FixtureConfig:
    """
    Returns a fully-defaulted, validated :py:class:`FixtureConfig`.

    Options that are missing or ``None`` take their value from ``defaults``.
    Performs no I/O.

    :param options: Mapping of :py:class:`FixtureConfig` field names to values (optional).
    :param FixtureConfig defaults: Pinned default configuration, e.g. a ledger profile.
        Defaults to the Fabric v1 profile.

    :raises InvalidConfig: naming the first offending option.
    """
    if defaults is None:
        from ledger_fixtures.profiles import FABRIC_V1_DEFAULT_CONFIG

        defaults = FABRIC_V1_DEFAULT_CONFIG

    if options is None:
        options = {}
    elif isinstance(options, FixtureConfig):
        options = {f.name: getattr(options, f.name) for f in fields(FixtureConfig)}
    elif not isinstance(options, Mapping):
        raise InvalidConfig(
            "options", f"expected a mapping, got {type(options).__name__}"
        )

    known = {f.name for f in fields(FixtureConfig)}
    for name in options:
        if name not in known:
            raise InvalidConfig(name, "unknown option", defaults.image_reference)

    overrides = {name: value for name, value in options.items() if value is not None}
    return _check_config(replace(defaults, **overrides))
