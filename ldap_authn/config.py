"""Configuration loading for the LDAP authentication webhook."""

import os
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any

import structlog
import yaml

from .errors import ConfigError

logger = structlog.get_logger()

BIND_MODE_CALLER = "caller"
BIND_MODE_SERVICE = "service"
BIND_MODES = (BIND_MODE_CALLER, BIND_MODE_SERVICE)

# Environment variable -> config field
ENV_VARS = {
    "LDAP_URL": "ldap_url",
    "LDAP_BIND_DN": "bind_dn",
    "LDAP_BIND_PASSWORD": "bind_password",
    "LDAP_SEARCH_BASE": "search_base",
    "LDAP_BIND_MODE": "bind_mode",
    "LDAP_BIND_DN_TEMPLATE": "bind_dn_template",
    "LDAP_USER_OBJECT_CLASS": "object_class",
    "LDAP_USER_NAME_ATTRIBUTE": "name_attribute",
    "LDAP_USER_PASSWORD_ATTRIBUTE": "password_attribute",
    "LDAP_GROUP_ATTRIBUTE": "group_attribute",
    "LDAP_SIZE_LIMIT": "size_limit",
    "LDAP_TIME_LIMIT": "time_limit",
    "LDAP_TIMEOUT_SECONDS": "timeout",
    "LDAP_START_TLS": "start_tls",
    "LDAP_CA_CERT_PATH": "ca_cert_path",
    "LISTEN_ADDRESS": "listen_address",
    "TLS_CERT_FILE": "tls_cert",
    "TLS_KEY_FILE": "tls_key",
}


@dataclass(frozen=True)
class AuthnConfig:
    """Immutable service configuration, built once at startup."""

    ldap_url: str = "ldap://localhost"
    bind_dn: str = "cn=admin,dc=mycompany,dc=com"
    bind_password: str = ""
    search_base: str = "cn=admin,dc=mycompany,dc=com"
    listen_address: str = ":443"
    tls_cert: str | None = None
    tls_key: str | None = None
    bind_mode: str = BIND_MODE_CALLER
    bind_dn_template: str = "{principal}"
    object_class: str = "inetOrgPerson"
    name_attribute: str = "cn"
    password_attribute: str = "userPassword"
    group_attribute: str = "ou"
    size_limit: int = 0
    time_limit: int = 0
    timeout: float = 10.0
    start_tls: bool = False
    ca_cert_path: str | None = None

    def __repr__(self) -> str:
        shown = ", ".join(
            f"{f.name}={'***' if f.name == 'bind_password' else repr(getattr(self, f.name))}"
            for f in fields(self)
        )
        return f"AuthnConfig({shown})"

    def validate(self) -> "AuthnConfig":
        """Check cross-field constraints and return self."""
        if self.bind_mode not in BIND_MODES:
            raise ConfigError(
                f"bind_mode must be one of {', '.join(BIND_MODES)}, got {self.bind_mode!r}"
            )
        if "{principal}" not in self.bind_dn_template:
            raise ConfigError("bind_dn_template must contain '{principal}'")
        for name in ("size_limit", "time_limit"):
            if getattr(self, name) < 0:
                raise ConfigError(f"{name} must not be negative")
        if self.timeout <= 0:
            raise ConfigError("timeout must be positive")
        if bool(self.tls_cert) != bool(self.tls_key):
            raise ConfigError("tls_cert and tls_key must be given together")
        for name in ("ldap_url", "search_base", "group_attribute", "name_attribute"):
            if not getattr(self, name):
                raise ConfigError(f"{name} must not be empty")
        parse_listen_address(self.listen_address)
        return self

    @property
    def tls_enabled(self) -> bool:
        return bool(self.tls_cert and self.tls_key)


def parse_listen_address(address: str) -> tuple[str, int]:
    """Split a ``host:port`` listen address; an empty host means all interfaces."""
    host, sep, port = address.rpartition(":")
    if not sep:
        raise ConfigError(f"listen address must be host:port, got {address!r}")
    try:
        port_number = int(port)
    except ValueError as e:
        raise ConfigError(f"invalid port in listen address {address!r}") from e
    if not 0 < port_number < 65536:
        raise ConfigError(f"port out of range in listen address {address!r}")
    host = host.strip("[]") or "0.0.0.0"
    return host, port_number


def _coerce(name: str, value: Any) -> Any:
    """Convert a raw file/environment value to the field's type."""
    default = getattr(AuthnConfig, name)
    if value is None:
        return None
    if isinstance(default, bool):
        if isinstance(value, bool):
            return value
        return str(value).strip().lower() in ("1", "true", "yes", "on")
    try:
        if isinstance(default, int):
            return int(value)
        if isinstance(default, float):
            return float(value)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"invalid value for {name}: {value!r}") from e
    return str(value)


def _load_yaml_file(config_file: Path) -> dict[str, Any]:
    """Load config keys from a YAML file."""
    try:
        with open(config_file) as f:
            content = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as e:
        raise ConfigError(f"failed to load config file {config_file}: {e}") from e

    if not content:
        return {}
    if not isinstance(content, dict):
        raise ConfigError(f"config file {config_file} must contain a mapping")

    known = {f.name for f in fields(AuthnConfig)}
    values = {}
    for key, value in content.items():
        if key not in known:
            logger.warning("Ignoring unknown config key", key=key, file=str(config_file))
            continue
        values[key] = _coerce(key, value)
    return values


def _load_env(environ: dict[str, str]) -> dict[str, Any]:
    return {
        name: _coerce(name, environ[var])
        for var, name in ENV_VARS.items()
        if var in environ
    }


def load_config(
    config_file: str | None = None,
    overrides: dict[str, Any] | None = None,
    environ: dict[str, str] | None = None,
) -> AuthnConfig:
    """Build the configuration from defaults, file, environment and overrides.

    Later sources win: defaults, then the YAML file (``config_file`` or
    ``LDAP_AUTHN_CONFIG``), then environment variables, then ``overrides``
    (command-line flags). ``None`` values in ``overrides`` are ignored.
    """
    if environ is None:
        environ = dict(os.environ)

    config = AuthnConfig()

    config_file = config_file or environ.get("LDAP_AUTHN_CONFIG")
    if config_file:
        config = replace(config, **_load_yaml_file(Path(config_file)))

    config = replace(config, **_load_env(environ))

    if overrides:
        config = replace(
            config,
            **{key: _coerce(key, value) for key, value in overrides.items() if value is not None},
        )

    return config.validate()
