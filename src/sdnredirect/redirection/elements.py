"""
Network element registry.

Tracks composite network elements and their ordered children. The
backend is the source of truth; the registry keeps a cache that is
refreshed on a miss and can be dropped at any time.

Copyright (c) 2025 DNS Science.io, an After Dark Systems, LLC company.
All rights reserved.
"""

import logging
import threading

from sdnredirect.redirection.backends.base import RedirectionBackend
from sdnredirect.redirection.exceptions import NotFoundError, PortNotFoundError
from sdnredirect.redirection.models import NetworkElement

logger = logging.getLogger(__name__)


class ElementRegistry:
    """Registry of network elements and their parent/child composition."""

    def __init__(self, backend: RedirectionBackend):
        self._backend = backend
        self._lock = threading.RLock()
        self._elements: dict[str, NetworkElement] = {}

    def __len__(self) -> int:
        return len(self._elements)

    def __contains__(self, element_id: str) -> bool:
        return element_id in self._elements

    def clear(self) -> None:
        """Drop the cache."""
        with self._lock:
            self._elements.clear()

    def resolve(self, element: NetworkElement | str) -> NetworkElement | None:
        """Return the element known to the controller, or None."""
        element_id = element if isinstance(element, str) else element.element_id
        with self._lock:
            cached = self._elements.get(element_id)
            if cached is not None:
                return cached
        found = self._backend.get_element(element_id)
        if found is not None:
            with self._lock:
                self._elements[element_id] = found
        return found

    def require_port(self, element: NetworkElement | str) -> NetworkElement:
        """Resolve an element referenced by a port or hook operation."""
        resolved = self.resolve(element)
        if resolved is None:
            element_id = element if isinstance(element, str) else element.element_id
            raise PortNotFoundError(element_id)
        return resolved

    def register(self, elements: list[NetworkElement]) -> NetworkElement:
        """Create a composite element whose children are `elements`, in order.

        Raises:
            BackendFailure: The controller rejected the composition
                (duplicate child, cyclic reference, unknown child)
        """
        composite = self._backend.create_element(list(elements))
        with self._lock:
            self._elements[composite.element_id] = composite
        logger.info(
            f"Registered element {composite.element_id} with children {composite.children}"
        )
        return composite

    def update(self, element: NetworkElement, children: list[NetworkElement]) -> NetworkElement:
        """Replace the child sequence of an existing element.

        Raises:
            NotFoundError: The element is unknown to the controller
        """
        updated = self._backend.update_element(element.element_id, list(children))
        if updated is None:
            with self._lock:
                self._elements.pop(element.element_id, None)
            raise NotFoundError(f"Network element not found: {element.element_id}")
        with self._lock:
            self._elements[updated.element_id] = updated
        logger.info(f"Updated element {updated.element_id} children to {updated.children}")
        return updated

    def check_delete(self, element: NetworkElement) -> None:
        """Raise BackendFailure now if the backend would refuse to delete `element`."""
        self._backend.check_delete_element(element.element_id)

    def delete(self, element: NetworkElement) -> None:
        """Delete an element. No-op if it is unknown."""
        deleted = self._backend.delete_element(element.element_id)
        with self._lock:
            self._elements.pop(element.element_id, None)
        if deleted:
            logger.info(f"Deleted element {element.element_id}")
        else:
            logger.debug(f"Element {element.element_id} already absent")

    def list(self, element: NetworkElement) -> list[NetworkElement] | None:
        """Return the current children of `element`, or None if it is unknown.

        Always read from the backend so a stale cache cannot hide a change.
        """
        current = self._backend.get_element(element.element_id)
        with self._lock:
            if current is None:
                self._elements.pop(element.element_id, None)
                return None
            self._elements[current.element_id] = current
        return [
            NetworkElement(element_id=child_id, parent_id=current.element_id)
            for child_id in current.children
        ]
