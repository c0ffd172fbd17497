"""Backend registry and environment-based resolution.

Each environment name maps to a factory that builds its backend from a
:class:`~fireapp.config.FireappConfig`.  Factories import their backend
module lazily, so an installation lacking one backend's library can still
resolve the others::

    register_backend("memory", lambda config: MyBackend())
    backend = resolve_backend(load_config(backend="memory"))
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Callable

from fireapp.backends.null import NullBackend
from fireapp.errors import BackendInitializationError

if TYPE_CHECKING:
    from fireapp.backends.base import DatabaseBackend
    from fireapp.config import FireappConfig

logger = logging.getLogger(__name__)

BackendFactory = Callable[["FireappConfig"], "DatabaseBackend"]


def _local_factory(config: "FireappConfig") -> "DatabaseBackend":
    from fireapp.backends.local import LocalBackend

    return LocalBackend(config.db_path, persistence=config.persistence)


def _rest_factory(config: "FireappConfig") -> "DatabaseBackend":
    from fireapp.backends.rest import RestBackend

    return RestBackend(
        config.database_url,
        auth_token=config.auth_token,
        timeout=config.timeout,
        max_retries=config.max_transaction_retries,
        reconnect_delay=config.reconnect_delay,
    )


_factories: dict[str, BackendFactory] = {
    "local": _local_factory,
    "rest": _rest_factory,
}


def register_backend(name: str, factory: BackendFactory) -> None:
    """Register (or replace) the factory for environment *name*."""
    if not name:
        raise ValueError("Backend name must not be empty")
    if not callable(factory):
        raise TypeError("Backend factory must be callable")
    _factories[name.lower()] = factory


def available_backends() -> list[str]:
    return sorted(_factories)


def resolve_backend(config: "FireappConfig") -> "DatabaseBackend":
    """Build the backend for ``config.backend``.

    Unknown or unset environments get a :class:`NullBackend`.  A known
    environment whose factory fails raises :class:`BackendInitializationError`.
    """
    name = (config.backend or "").lower()
    factory = _factories.get(name)
    if factory is None:
        logger.info("No database backend for environment %r; using inert backend", config.backend)
        return NullBackend()
    try:
        backend = factory(config)
    except Exception as exc:
        raise BackendInitializationError(f"Could not initialise '{name}' backend: {exc}") from exc
    logger.debug("Resolved database backend %r", name)
    return backend
