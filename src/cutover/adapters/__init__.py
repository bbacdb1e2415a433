"""
Subsystem adapters: health probes and action appliers.

Probes:
    - SQLAlchemyProbe: database connectivity and row-count comparison
    - RedisProbe: cache reachability and key-count comparison
    - HttpProbe: HTTP health endpoint with slow-response warnings
    - DnsProbe: public hostname resolves to the registry's routing target
    - ConfigurationProbe: live registry values match the expected ones
    - StaticProbe: fixed result for unmonitored subsystems

Action adapters:
    - CommandSubsystem: runs configured CLI commands per action
"""

from cutover.adapters.base import Probe, SubsystemAdapter
from cutover.adapters.cache import RedisProbe
from cutover.adapters.command import CommandSubsystem, CommandTemplates
from cutover.adapters.configuration import ConfigurationProbe
from cutover.adapters.database import SQLAlchemyProbe
from cutover.adapters.http import HttpProbe
from cutover.adapters.routing import DnsProbe, resolve_addresses
from cutover.adapters.static import StaticProbe

__all__ = [
    "Probe",
    "SubsystemAdapter",
    "CommandSubsystem",
    "CommandTemplates",
    "SQLAlchemyProbe",
    "RedisProbe",
    "HttpProbe",
    "DnsProbe",
    "resolve_addresses",
    "ConfigurationProbe",
    "StaticProbe",
]
