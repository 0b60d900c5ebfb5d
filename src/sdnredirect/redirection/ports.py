"""
Inspection port manager.

Tracks inspection ports, each an (ingress, egress) pair of network
elements. A port's identity is derived from that pair, so registering
the same pair again returns the existing port.

Copyright (c) 2025 DNS Science.io, an After Dark Systems, LLC company.
All rights reserved.
"""

import logging
import threading

from sdnredirect.redirection.backends.base import RedirectionBackend
from sdnredirect.redirection.elements import ElementRegistry
from sdnredirect.redirection.models import InspectionPortElement

logger = logging.getLogger(__name__)


class PortManager:
    """Registry of inspection ports keyed by id, indexed by ingress/egress pair."""

    def __init__(self, backend: RedirectionBackend, elements: ElementRegistry):
        self._backend = backend
        self._elements = elements
        self._lock = threading.RLock()
        self._ports: dict[str, InspectionPortElement] = {}
        self._by_pair: dict[tuple[str, str], str] = {}

    def __len__(self) -> int:
        return len(self._ports)

    def clear(self) -> None:
        with self._lock:
            self._ports.clear()
            self._by_pair.clear()

    def load(self, ports: list[InspectionPortElement]) -> None:
        """Replace the cache with ports read from the backend."""
        with self._lock:
            self.clear()
            for port in ports:
                self._remember(port)

    def all(self) -> list[InspectionPortElement]:
        with self._lock:
            return list(self._ports.values())

    def _remember(self, port: InspectionPortElement) -> None:
        self._ports[port.element_id] = port
        self._by_pair[port.pair_key] = port.element_id

    def _forget(self, port: InspectionPortElement) -> None:
        self._ports.pop(port.element_id, None)
        if self._by_pair.get(port.pair_key) == port.element_id:
            del self._by_pair[port.pair_key]

    def validate_ends(self, port: InspectionPortElement) -> None:
        """Raise PortNotFoundError if ingress or egress cannot be resolved."""
        self._elements.require_port(port.ingress_port)
        self._elements.require_port(port.egress_port)

    def _cached(self, port: InspectionPortElement) -> InspectionPortElement | None:
        with self._lock:
            if port.element_id and port.element_id in self._ports:
                return self._ports[port.element_id]
            port_id = self._by_pair.get(port.pair_key)
            return self._ports.get(port_id) if port_id else None

    def register(self, port: InspectionPortElement) -> InspectionPortElement:
        """Register an inspection port. Idempotent on the ingress/egress pair.

        Raises:
            PortNotFoundError: Ingress or egress element is unknown
        """
        self.validate_ends(port)
        with self._lock:
            existing = self._cached(port)
            if existing is not None:
                logger.debug(f"Inspection port {existing.element_id} already registered")
                return existing
            created = self._backend.create_port(port)
            self._remember(created)
        logger.info(
            f"Registered inspection port {created.element_id} "
            f"(ingress={created.pair_key[0]}, egress={created.pair_key[1]})"
        )
        return created

    def get(self, port: InspectionPortElement) -> InspectionPortElement | None:
        """Look up a port by id if it has one, otherwise by ingress/egress pair."""
        cached = self._cached(port)
        if cached is not None:
            return cached
        if port.element_id:
            found = self._backend.get_port(port.element_id)
        else:
            found = next(
                (p for p in self._backend.list_ports() if p.pair_key == port.pair_key),
                None,
            )
        if found is not None:
            with self._lock:
                self._remember(found)
        return found

    def check_remove(self, port: InspectionPortElement) -> None:
        self._backend.check_delete_port(port.element_id)

    def remove(self, port: InspectionPortElement) -> None:
        """Remove an inspection port. No-op if it is not registered.

        Raises:
            PortNotFoundError: Ingress or egress element is unknown, which is
                a bad reference rather than nothing to delete
        """
        self.validate_ends(port)
        existing = self.get(port)
        if existing is None:
            logger.debug(f"Inspection port {port.pair_key} already absent")
            return
        deleted = self._backend.delete_port(existing.element_id)
        with self._lock:
            self._forget(existing)
        if deleted:
            logger.info(f"Removed inspection port {existing.element_id}")
