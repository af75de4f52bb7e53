"""Port allocation and conflict resolution for server instances.

Every server claims up to four ports, one per :class:`PortRole`. Defaults are
picked against the avoid-set of ports already recorded by sibling registry
entries; configured ports are validated as the last step before launch.
"""

import socket
from dataclasses import dataclass, field
from typing import Callable, Collection, Dict, Iterable, List, Optional, Set, Tuple

from ..configuration.effective import effective_shutdown_port, role_ports
from ..configuration.model import ServerConfiguration
from ..core.enums import ConflictKind, PortResolutionMode, PortRole
from ..core.errors import PortAllocationError, PortConflictError
from ..core.log import get_logger, log_port_event
from ..core.types import PortRangeConfig

logger = get_logger(__name__)

MAX_PORT = 65535

OwnerLookup = Callable[[int], Optional[str]]
PortProbe = Callable[[int], bool]


@dataclass
class PortConflict:
    """A single port that cannot be used as configured."""

    role: PortRole
    port: int
    kind: ConflictKind
    owner: Optional[str] = None
    other_role: Optional[PortRole] = None
    reassigned_to: Optional[int] = None

    def describe(self) -> str:
        label = f"{self.role.value} port {self.port}"
        if self.kind is ConflictKind.INTERNAL:
            other = self.other_role.value if self.other_role else "another"
            return f"{label} is also configured as the {other} port"
        if self.kind is ConflictKind.EXTERNAL_OWNED:
            return (
                f"{label} is in use by running server '{self.owner}'; "
                f"stop it with 'pangolin server stop --name {self.owner}' or choose another port"
            )
        return (
            f"{label} is in use by another process; "
            f"find it with 'lsof -i :{self.port}' or choose another port"
        )


@dataclass
class PortConflictReport:
    """Result of conflict detection, and of reassignment when requested."""

    conflicts: List[PortConflict] = field(default_factory=list)
    assignment: Dict[PortRole, int] = field(default_factory=dict)

    @property
    def unresolved(self) -> List[PortConflict]:
        return [conflict for conflict in self.conflicts if conflict.reassigned_to is None]

    @property
    def has_conflicts(self) -> bool:
        return bool(self.unresolved)

    @property
    def reassigned(self) -> List[PortConflict]:
        return [conflict for conflict in self.conflicts if conflict.reassigned_to is not None]

    def message(self) -> str:
        lines = ["Port conflicts:"]
        lines.extend(f"  - {conflict.describe()}" for conflict in self.unresolved)
        if any(c.kind is not ConflictKind.INTERNAL for c in self.unresolved):
            lines.append("Use --reassign-ports to pick free ports automatically.")
        return "\n".join(lines)

    def raise_for_conflicts(self) -> None:
        """Raise PortConflictError for the first unresolved conflict, if any."""
        unresolved = self.unresolved
        if not unresolved:
            return
        first = unresolved[0]
        raise PortConflictError(
            self.message(),
            role=first.role.value,
            port=first.port,
            owner=first.owner,
            details={
                "conflicts": [
                    {
                        "role": c.role.value,
                        "port": c.port,
                        "kind": c.kind.value,
                        "owner": c.owner,
                    }
                    for c in unresolved
                ]
            },
        )


class PortAllocator:
    """Chooses and validates ports for the four server roles."""

    def __init__(
        self, ports: Optional[PortRangeConfig] = None, probe: Optional[PortProbe] = None
    ) -> None:
        """Initialize port allocator.

        Args:
            ports: Preferred ports and scan ranges
            probe: Optional availability check replacing the socket bind
        """
        self.ports = ports or PortRangeConfig()
        self._probe = probe

    def is_port_available(self, port: int) -> bool:
        """Check whether ``port`` can be bound on the configured host."""
        if not 0 < port <= MAX_PORT:
            return False
        if self._probe is not None:
            return self._probe(port)
        try:
            with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
                sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
                sock.bind((self.ports.bind_host, port))
                return True
        except OSError:
            return False

    def find_available_port(
        self,
        preferred: Optional[int] = None,
        avoid: Collection[int] = (),
        range_start: Optional[int] = None,
        range_end: Optional[int] = None,
    ) -> int:
        """Find a free port outside ``avoid``.

        Tries the preferred port, then scans the range, then asks the OS
        for an ephemeral port.

        Raises:
            PortAllocationError: If no ephemeral port outside ``avoid`` is found
        """
        if preferred and preferred not in avoid and self.is_port_available(preferred):
            return preferred

        if range_start is not None and range_end is not None:
            for port in range(range_start, range_end + 1):
                if port not in avoid and self.is_port_available(port):
                    logger.debug("Preferred port %s unavailable, using %s", preferred, port)
                    return port

        return self._ephemeral_port(avoid)

    def _ephemeral_port(self, avoid: Collection[int]) -> int:
        for _ in range(self.ports.ephemeral_attempts):
            with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
                sock.bind((self.ports.bind_host, 0))
                port = sock.getsockname()[1]
            if port not in avoid:
                logger.debug("Using ephemeral port %s", port)
                return port
        raise PortAllocationError(
            f"No free port found after {self.ports.ephemeral_attempts} ephemeral attempts"
        )

    def assign_defaults(self, config: ServerConfiguration, avoid: Iterable[int] = ()) -> None:
        """Fill every active role of ``config`` with a free port outside ``avoid``.

        Roles set explicitly in the configuration keep their ports and are
        reserved before anything is picked. The shutdown port stays derived
        (http + offset) when that port is free; otherwise an explicit one is
        taken from the shutdown range.
        """
        p = self.ports
        claimed: Set[int] = set(avoid)

        explicit_shutdown = config.shutdown_port is not None
        explicit_management = "port" in config.monitoring.jmx.model_fields_set
        https_enabled = config.https is not None and config.https.enabled
        explicit_https = https_enabled and config.https.port is not None
        if explicit_shutdown:
            claimed.add(config.shutdown_port)
        if config.monitoring.enabled and explicit_management:
            claimed.add(config.monitoring.jmx.port)
        if explicit_https:
            claimed.add(config.https.port)

        config.http_port = self.find_available_port(
            p.http_preferred, claimed, p.http_range_start, p.http_range_end
        )
        claimed.add(config.http_port)

        if not explicit_shutdown:
            derived = config.http_port + p.shutdown_offset
            if derived <= MAX_PORT and derived not in claimed and self.is_port_available(derived):
                config.shutdown_port = None
            else:
                config.shutdown_port = self.find_available_port(
                    None, claimed, p.shutdown_range_start, p.shutdown_range_end
                )
            claimed.add(effective_shutdown_port(config))

        if config.monitoring.enabled and not explicit_management:
            config.monitoring.jmx.port = self.find_available_port(
                p.management_preferred, claimed, p.http_range_start, p.http_range_end
            )
            claimed.add(config.monitoring.jmx.port)

        if https_enabled and not explicit_https:
            config.https.port = self.find_available_port(
                p.https_default, claimed, p.http_range_start, p.http_range_end
            )

        log_port_event(logger, "assigned", config.http_port, PortRole.HTTP.value,
                       server=config.name)

    def detect_conflicts(
        self, config: ServerConfiguration, owner_lookup: Optional[OwnerLookup] = None
    ) -> PortConflictReport:
        """Classify conflicts of every active role.

        Internal duplicates are reported on their own; when there are any,
        no port is probed.
        """
        assignment = role_ports(config)

        internal: List[PortConflict] = []
        seen: Dict[int, PortRole] = {}
        for role, port in assignment.items():
            if port in seen:
                internal.append(
                    PortConflict(role, port, ConflictKind.INTERNAL, other_role=seen[port])
                )
            else:
                seen[port] = role
        if internal:
            return PortConflictReport(internal, assignment)

        external: List[PortConflict] = []
        for role, port in assignment.items():
            if self.is_port_available(port):
                continue
            owner = owner_lookup(port) if owner_lookup is not None else None
            kind = ConflictKind.EXTERNAL_OWNED if owner else ConflictKind.EXTERNAL_UNOWNED
            external.append(PortConflict(role, port, kind, owner=owner))
            log_port_event(logger, "conflict", port, role.value, owner=owner)
        return PortConflictReport(external, assignment)

    def resolve_conflicts(
        self,
        config: ServerConfiguration,
        mode: PortResolutionMode = PortResolutionMode.STRICT,
        owner_lookup: Optional[OwnerLookup] = None,
        avoid: Iterable[int] = (),
    ) -> PortConflictReport:
        """Detect conflicts and, in REASSIGN mode, move conflicting roles.

        STRICT leaves ``config`` untouched. Internal conflicts are never
        reassigned.
        """
        report = self.detect_conflicts(config, owner_lookup)
        if mode is PortResolutionMode.STRICT or not report.conflicts:
            return report
        if any(c.kind is ConflictKind.INTERNAL for c in report.conflicts):
            return report

        claimed: Set[int] = set(avoid) | set(report.assignment.values())
        by_role = {conflict.role: conflict for conflict in report.conflicts}
        derived_shutdown = config.shutdown_port is None

        pair_roles = [PortRole.HTTP] + ([PortRole.SHUTDOWN] if derived_shutdown else [])
        if any(role in by_role for role in pair_roles):
            if derived_shutdown:
                http, shutdown = self._find_port_pair(config.http_port + 1, claimed)
                claimed.update((http, shutdown))
            else:
                http = self._next_in_range(
                    config.http_port + 1, claimed,
                    self.ports.http_range_start, self.ports.http_range_end,
                )
                shutdown = config.shutdown_port
                claimed.add(http)
            config.http_port = http
            if PortRole.HTTP in by_role:
                by_role[PortRole.HTTP].reassigned_to = http
            if derived_shutdown and PortRole.SHUTDOWN in by_role:
                by_role[PortRole.SHUTDOWN].reassigned_to = shutdown

        if not derived_shutdown and PortRole.SHUTDOWN in by_role:
            port = self._next_in_range(
                config.shutdown_port + 1, claimed,
                self.ports.shutdown_range_start, self.ports.shutdown_range_end,
            )
            config.shutdown_port = port
            claimed.add(port)
            by_role[PortRole.SHUTDOWN].reassigned_to = port

        if PortRole.MANAGEMENT in by_role:
            port = self._next_upward(config.monitoring.jmx.port + 1, claimed)
            config.monitoring.jmx.port = port
            claimed.add(port)
            by_role[PortRole.MANAGEMENT].reassigned_to = port

        if PortRole.HTTPS in by_role and config.https is not None:
            port = self._next_upward(by_role[PortRole.HTTPS].port + 1, claimed)
            config.https.port = port
            claimed.add(port)
            by_role[PortRole.HTTPS].reassigned_to = port

        for conflict in report.reassigned:
            log_port_event(logger, "reassigned", conflict.reassigned_to, conflict.role.value,
                           previous_port=conflict.port)

        return PortConflictReport(report.conflicts, role_ports(config))

    def _find_port_pair(self, start: int, claimed: Set[int]) -> Tuple[int, int]:
        """First http port from ``start`` (wrapping in the http range) whose
        shutdown partner is free as well."""
        p = self.ports
        start = min(max(start, p.http_range_start), p.http_range_end)
        candidates = list(range(start, p.http_range_end + 1)) + list(
            range(p.http_range_start, start)
        )
        for http in candidates:
            shutdown = http + p.shutdown_offset
            if http in claimed or shutdown in claimed or shutdown > MAX_PORT:
                continue
            if self.is_port_available(http) and self.is_port_available(shutdown):
                return http, shutdown
        raise PortAllocationError(
            f"No free http/shutdown port pair in {p.http_range_start}-{p.http_range_end}"
        )

    def _next_in_range(self, start: int, claimed: Set[int], range_start: int, range_end: int) -> int:
        start = min(max(start, range_start), range_end)
        candidates = list(range(start, range_end + 1)) + list(range(range_start, start))
        for port in candidates:
            if port not in claimed and self.is_port_available(port):
                return port
        raise PortAllocationError(f"No free port in {range_start}-{range_end}")

    def _next_upward(self, start: int, claimed: Set[int]) -> int:
        for port in range(start, MAX_PORT + 1):
            if port not in claimed and self.is_port_available(port):
                return port
        raise PortAllocationError(f"No free port at or above {start}")


def is_port_bound(host: str, port: int, timeout: float = 1.0) -> bool:
    """Check whether something accepts TCP connections on ``host:port``."""
    try:
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
            sock.settimeout(timeout)
            return sock.connect_ex((host, port)) == 0
    except OSError:
        return False
