"""Probe capabilities: the injected per-provider functions that read the OS.

A probe is any callable taking the rule's resolved parameters and returning
the observed value, or ``None`` when there is nothing to observe (missing
registry value, absent service...). Probes report failure by raising
ProbeError. Both plain functions and coroutine functions are accepted;
plain functions run on a worker thread so they do not block other rules.

A probe may also declare a ``cancel_event`` keyword parameter. It receives a
``threading.Event`` that is set once the rule timed out or the run was
cancelled; blocking probes should poll it and return early.

Example:
    probes = ProbeRegistry()

    @probes.provider(ProviderType.SERVICE)
    def service_status(params: ServiceParameters, cancel_event=None) -> str | None:
        ...
"""

from __future__ import annotations

import asyncio
import functools
import inspect
import logging
import threading
from collections.abc import Mapping
from concurrent.futures import Executor
from typing import Any, Callable

from ..workflow.errors import ProbeError
from ..workflow.parameters import ProviderParametersBase
from ..workflow.types import ProviderType

logger = logging.getLogger(__name__)

Probe = Callable[..., Any]


def _is_async(probe: Probe) -> bool:
    return inspect.iscoroutinefunction(probe) or inspect.iscoroutinefunction(
        getattr(probe, "__call__", None)
    )


def _accepts_cancel_event(probe: Probe) -> bool:
    try:
        parameters = inspect.signature(probe).parameters
    except (TypeError, ValueError):
        return False
    return "cancel_event" in parameters or any(
        p.kind is inspect.Parameter.VAR_KEYWORD for p in parameters.values()
    )


class ProbeRegistry:
    """Maps each provider type to the probe that serves it."""

    def __init__(self, probes: Mapping[ProviderType | str, Probe] | None = None):
        self._probes: dict[ProviderType, Probe] = {}
        for provider, probe in (probes or {}).items():
            self.register(provider, probe)

    def register(self, provider: ProviderType | str, probe: Probe) -> None:
        """Register (or replace) the probe for a provider."""
        provider = ProviderType(provider)
        if provider in self._probes:
            logger.info("Replacing probe for provider %s", provider.value)
        self._probes[provider] = probe

    def provider(self, provider: ProviderType | str) -> Callable[[Probe], Probe]:
        """Decorator form of :meth:`register`."""

        def decorator(probe: Probe) -> Probe:
            self.register(provider, probe)
            return probe

        return decorator

    def get(self, provider: ProviderType | str) -> Probe | None:
        return self._probes.get(ProviderType(provider))

    def __contains__(self, provider: object) -> bool:
        try:
            return ProviderType(provider) in self._probes
        except ValueError:
            return False

    @property
    def providers(self) -> list[ProviderType]:
        return list(self._probes)

    async def invoke(
        self,
        provider: ProviderType,
        parameters: ProviderParametersBase,
        *,
        executor: Executor | None = None,
        cancel_event: threading.Event | None = None,
    ) -> Any:
        """Run the probe for ``provider`` and return its observed value.

        Args:
            provider: Provider whose probe to run.
            parameters: The rule's resolved parameters.
            executor: Pool for plain-function probes; the event loop's
                default executor when None.
            cancel_event: Set by the caller when the result is no longer
                wanted. Passed to probes that declare a ``cancel_event``
                keyword so blocking work can stop early.

        Raises:
            ProbeError: no probe is registered, or the probe itself failed.
        """
        probe = self.get(provider)
        if probe is None:
            raise ProbeError(f"No probe registered for provider {ProviderType(provider).value}")

        kwargs = {}
        if cancel_event is not None and _accepts_cancel_event(probe):
            kwargs["cancel_event"] = cancel_event

        if _is_async(probe):
            return await probe(parameters, **kwargs)

        loop = asyncio.get_running_loop()
        value = await loop.run_in_executor(executor, functools.partial(probe, parameters, **kwargs))
        if inspect.isawaitable(value):
            value = await value
        return value
