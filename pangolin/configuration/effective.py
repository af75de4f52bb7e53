"""Effective values derived from a resolved configuration.

All functions are pure; they never mutate the configuration.
"""

from typing import Dict

from ..core.enums import PortRole
from .model import ServerConfiguration

DEFAULT_HOST = "localhost"
SHUTDOWN_PORT_OFFSET = 1000
DEFAULT_HTTPS_PORT = 8443


def effective_host(config: ServerConfiguration) -> str:
    host = (config.host or "").strip()
    return host or DEFAULT_HOST


def effective_shutdown_port(config: ServerConfiguration) -> int:
    """Explicit shutdown port, else the http port plus 1000."""
    if config.shutdown_port is not None:
        return config.shutdown_port
    return config.http_port + SHUTDOWN_PORT_OFFSET


def is_https_enabled(config: ServerConfiguration) -> bool:
    return config.https is not None and config.https.enabled


def effective_https_port(config: ServerConfiguration) -> int:
    if config.https is not None and config.https.port is not None:
        return config.https.port
    return DEFAULT_HTTPS_PORT


def is_https_redirect_enabled(config: ServerConfiguration) -> bool:
    """Redirect defaults to on only when https itself is enabled."""
    if not is_https_enabled(config):
        return False
    redirect = config.https.redirect
    return True if redirect is None else redirect


def is_monitoring_enabled(config: ServerConfiguration) -> bool:
    return config.monitoring.enabled


def effective_management_port(config: ServerConfiguration) -> int:
    return config.monitoring.jmx.port


def role_ports(config: ServerConfiguration) -> Dict[PortRole, int]:
    """Ports of every active role.

    Management is included only when monitoring is enabled, https only
    when it is enabled.
    """
    ports = {
        PortRole.HTTP: config.http_port,
        PortRole.SHUTDOWN: effective_shutdown_port(config),
    }
    if is_monitoring_enabled(config):
        ports[PortRole.MANAGEMENT] = effective_management_port(config)
    if is_https_enabled(config):
        ports[PortRole.HTTPS] = effective_https_port(config)
    return ports


def serialize_role_ports(ports: Dict[PortRole, int]) -> Dict[str, int]:
    return {role.value: port for role, port in ports.items()}
