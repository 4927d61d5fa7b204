"""Centralized configuration and component factories.

Manifesto:
    Every node of a cluster reads the same topology and names. Without a
    single settings object each component would parse ``MERIDIAN_*``
    variables on its own and drift.

Quick start::

    from meridian.core.config import load_settings

    settings = load_settings("cluster.toml", app_id="web-1")
    settings.rpc["schedule-1"].services   # ["schedule"]

Architecture::

    settings.py       MeridianSettings (Pydantic) + load_settings() / get_settings()
    factory.py        create_transport / create_scheduler_backend

Guardrails:
    ❌ Reading ``os.environ`` in components
    ✅ ``context.settings.tick_interval_seconds``
    ❌ Constructing a transport by hand in application code
    ✅ ``create_transport(settings)`` via the factory layer

Tags:
    meridian, configuration, settings, pydantic, toml, factory-pattern

Doc-Types:
    package-overview, module-index
"""

from .factory import create_scheduler_backend, create_transport
from .settings import (
    MeridianSettings,
    RpcPeerConfig,
    TransportBackend,
    clear_settings_cache,
    get_settings,
    load_settings,
)

__all__ = [
    "MeridianSettings",
    "RpcPeerConfig",
    "TransportBackend",
    "clear_settings_cache",
    "create_scheduler_backend",
    "create_transport",
    "get_settings",
    "load_settings",
]
