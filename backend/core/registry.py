# core/registry.py — Module Registry for dependency injection
#
# Modules advertise the services they build (BindingStore, InventoryClient,
# Reconciler, MonitorSupervisor, PairingSessionManager) and look up the ones
# they depend on. Route dependencies resolve providers at request time, so a
# provider can be replaced after startup (tests swap in fakes this way).

import logging
from typing import Any

log = logging.getLogger("filabridge.registry")


class ModuleRegistry:
    """
    Lightweight dependency injection registry.

    validate_dependencies() checks that every REQUIRES declaration across all
    loaded modules has a matching registered provider.
    """

    def __init__(self):
        self._providers: dict[str, Any] = {}
        self._declared_requires: list[tuple[str, str]] = []  # (module_id, interface)

    def register_provider(self, interface_name: str, impl: Any) -> None:
        """Register an implementation for the named interface (last writer wins)."""
        existing = self._providers.get(interface_name)
        if existing is not None and existing is not impl:
            log.debug(
                f"Interface '{interface_name}' re-registered: "
                f"{type(existing).__name__} -> {type(impl).__name__}"
            )
        self._providers[interface_name] = impl

    def get_provider(self, interface_name: str) -> Any:
        """Return the registered provider for an interface, or None."""
        provider = self._providers.get(interface_name)
        if provider is None:
            log.warning(
                f"No provider registered for interface '{interface_name}'. "
                "Check that the providing module is loaded."
            )
        return provider

    def require(self, interface_name: str) -> Any:
        """Like get_provider() but raises LookupError when missing."""
        provider = self._providers.get(interface_name)
        if provider is None:
            raise LookupError(f"No provider registered for '{interface_name}'")
        return provider

    def record_requires(self, module_id: str, requires: list[str]) -> None:
        for iface in requires:
            self._declared_requires.append((module_id, iface))

    def validate_dependencies(self) -> bool:
        """Log every unsatisfied REQUIRES declaration. Returns True when all are met."""
        missing = [
            (module_id, iface)
            for module_id, iface in self._declared_requires
            if iface not in self._providers
        ]
        for module_id, iface in missing:
            log.error(
                f"Unsatisfied dependency: module '{module_id}' requires "
                f"'{iface}' but no provider is registered."
            )
        if not missing:
            log.info(
                f"All module dependencies satisfied "
                f"({len(self._declared_requires)} declarations checked)."
            )
        return not missing

    @property
    def providers(self) -> dict[str, Any]:
        """Read-only view of all registered providers."""
        return dict(self._providers)


registry = ModuleRegistry()
