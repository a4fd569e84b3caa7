"""Dramatiq broker resolution for the mirror actors.

Actors resolve their broker when they run, not when :mod:`giteamirror.actor`
is imported. Local and test runs fall back to a :class:`StubBroker`; any
other process must install a real broker first.
"""

from __future__ import annotations

import os
import sys
import threading
import typing as typ

import dramatiq
from dramatiq import broker as dramatiq_broker
from dramatiq.brokers.stub import StubBroker

if typ.TYPE_CHECKING:
    import collections.abc as cabc

STUB_BROKER_ENV = "GITEAMIRROR_ALLOW_STUB_BROKER"
_TRUTHY = frozenset({"1", "true", "yes", "on"})

_lock = threading.Lock()
_resolved = threading.Event()


class BrokerNotConfiguredError(RuntimeError):
    """Raised when an actor runs without a broker outside local runs."""

    def __init__(self) -> None:
        super().__init__(
            "No Dramatiq broker is installed; configure one or set "
            f"{STUB_BROKER_ENV}=1 for local runs"
        )


def stub_broker_allowed(env: cabc.Mapping[str, str] | None = None) -> bool:
    """Return whether a stub broker may replace a missing real one."""
    environ = os.environ if env is None else env
    if environ.get(STUB_BROKER_ENV, "").strip().lower() in _TRUTHY:
        return True
    return "pytest" in sys.modules or "PYTEST_CURRENT_TEST" in environ


def ensure_broker_configured() -> dramatiq.Broker:
    """Return the global broker, installing a stub one where allowed.

    Safe to call from several Dramatiq worker threads at once.

    Raises
    ------
    BrokerNotConfiguredError
        If no broker is installed and stubbing is not allowed.

    """
    if not _resolved.is_set():
        with _lock:
            if dramatiq_broker.global_broker is None:
                if not stub_broker_allowed():
                    raise BrokerNotConfiguredError
                dramatiq.set_broker(StubBroker())
            _resolved.set()
    return dramatiq.get_broker()


__all__ = [
    "STUB_BROKER_ENV",
    "BrokerNotConfiguredError",
    "ensure_broker_configured",
    "stub_broker_allowed",
]
