"""JVM option assembly and agent selection."""

from dataclasses import dataclass, field
from typing import List

from ..configuration.model import ServerConfiguration
from ..core.errors import ConfigError


@dataclass
class AgentOverrides:
    """Per-start adjustments to the configured agent set.

    ``include`` is exclusive: when given, only those agents run.
    ``disable_all`` wins over everything else.
    """

    disable_all: bool = False
    include: List[str] = field(default_factory=list)
    enable: List[str] = field(default_factory=list)
    disable: List[str] = field(default_factory=list)


def _check_known(config: ServerConfiguration, agent_ids: List[str]) -> None:
    unknown = sorted(set(agent_ids) - set(config.agents))
    if unknown:
        available = ", ".join(sorted(config.agents)) or "none"
        raise ConfigError(f"Unknown agent(s): {', '.join(unknown)}; available: {available}")


def resolve_active_agents(
    config: ServerConfiguration, overrides: AgentOverrides = None
) -> List[str]:
    """Sorted ids of the agents active for one start.

    Raises:
        ConfigError: If an override names an agent that is not configured
    """
    overrides = overrides or AgentOverrides()
    if overrides.disable_all:
        return []

    _check_known(config, overrides.include + overrides.enable)

    if overrides.include:
        active = set(overrides.include)
    else:
        active = {agent_id for agent_id, agent in config.agents.items() if agent.enabled}
        active.update(overrides.enable)
    active.difference_update(overrides.disable)
    return sorted(active)


def jmx_options(port: int) -> List[str]:
    return [
        "-Dcom.sun.management.jmxremote",
        f"-Dcom.sun.management.jmxremote.port={port}",
        "-Dcom.sun.management.jmxremote.authenticate=false",
        "-Dcom.sun.management.jmxremote.ssl=false",
    ]


def build_jvm_options(config: ServerConfiguration, active_agents: List[str] = ()) -> List[str]:
    """Heap flags, JMX flags, agent args (by agent id), then additionalArgs."""
    options = [f"-Xms{config.jvm.min_memory}", f"-Xmx{config.jvm.max_memory}"]
    if config.monitoring.enabled:
        options.extend(jmx_options(config.monitoring.jmx.port))
    for agent_id in sorted(active_agents):
        agent = config.agents.get(agent_id)
        if agent is not None:
            options.extend(agent.jvm_args)
    options.extend(config.jvm.additional_args)
    return options
