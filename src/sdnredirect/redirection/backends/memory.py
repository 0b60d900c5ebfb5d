"""
In-memory controller backend.

A generic flow-classifier controller kept entirely in process. Hook ids
are independent of inspection port ids. Used as the test double and for
dry runs.

Copyright (c) 2025 DNS Science.io, an After Dark Systems, LLC company.
All rights reserved.
"""

import logging
import threading
import uuid

from sdnredirect.redirection.backends.base import RedirectionBackend
from sdnredirect.redirection.exceptions import BackendFailure, PortNotFoundError
from sdnredirect.redirection.models import (
    InspectionHookElement,
    InspectionPortElement,
    NetworkElement,
)

logger = logging.getLogger(__name__)


class InMemoryBackend(RedirectionBackend):
    """Flow-classifier style controller held in dictionaries.

    Leaf ports must be provisioned with provision_port() before they can
    be composed, used as inspection ports or inspected.
    """

    NAME = "memory"

    def __init__(self, ports: list[str] | None = None):
        super().__init__()
        self._lock = threading.RLock()
        self._leaves: dict[str, NetworkElement] = {}
        self._composites: dict[str, NetworkElement] = {}
        self._ports: dict[str, InspectionPortElement] = {}
        self._hooks: dict[str, InspectionHookElement] = {}
        self._failures: dict[str, BackendFailure] = {}
        self.connect_count = 0
        self.close_count = 0

        for port_id in ports or []:
            self.provision_port(NetworkElement(element_id=port_id))

    # ==========================================================================
    # Test helpers
    # ==========================================================================

    def provision_port(self, element: NetworkElement) -> NetworkElement:
        """Make a leaf port known to the controller."""
        with self._lock:
            self._leaves[element.element_id] = element
            return element

    def inject_failure(self, operation: str, message: str = "injected failure") -> None:
        """Make the next call to `operation` (e.g. "create_hook") fail."""
        self._failures[operation] = BackendFailure(message)

    def _maybe_fail(self, operation: str) -> None:
        self.ensure_connected()
        failure = self._failures.pop(operation, None)
        if failure is not None:
            raise failure

    @staticmethod
    def _new_id() -> str:
        return str(uuid.uuid4())

    # ==========================================================================
    # Connection
    # ==========================================================================

    def connect(self) -> None:
        failure = self._failures.pop("connect", None)
        if failure is not None:
            raise failure
        self.connect_count += 1
        self._connected = True

    def close(self) -> None:
        self.close_count += 1
        self._connected = False

    # ==========================================================================
    # Network elements
    # ==========================================================================

    def _lookup(self, element_id: str) -> NetworkElement | None:
        return self._composites.get(element_id) or self._leaves.get(element_id)

    def _validate_children(self, children: list[NetworkElement], parent_id: str | None) -> list[str]:
        child_ids = [c.element_id for c in children]
        if len(set(child_ids)) != len(child_ids):
            raise BackendFailure(f"duplicate child in composition: {child_ids}")
        for child_id in child_ids:
            if self._lookup(child_id) is None and child_id not in self._ports:
                raise BackendFailure(f"unknown child element: {child_id}")
        if parent_id is not None and self._reaches(child_ids, parent_id):
            raise BackendFailure(f"cyclic composition through {parent_id}")
        return child_ids

    def _reaches(self, start: list[str], target: str) -> bool:
        """True if `target` is reachable from `start` through child links."""
        pending = list(start)
        seen: set[str] = set()
        while pending:
            current = pending.pop()
            if current == target:
                return True
            if current in seen:
                continue
            seen.add(current)
            composite = self._composites.get(current)
            if composite:
                pending.extend(composite.children)
        return False

    def create_element(self, children: list[NetworkElement]) -> NetworkElement:
        with self._lock:
            self._maybe_fail("create_element")
            child_ids = self._validate_children(children, None)
            element = NetworkElement(element_id=self._new_id(), children=child_ids)
            self._composites[element.element_id] = element
            return element.with_children(child_ids)

    def update_element(self, element_id: str, children: list[NetworkElement]) -> NetworkElement | None:
        with self._lock:
            self._maybe_fail("update_element")
            if element_id in self._leaves:
                raise BackendFailure(f"cannot compose children into leaf port {element_id}")
            existing = self._composites.get(element_id)
            if existing is None:
                return None
            child_ids = self._validate_children(children, element_id)
            updated = existing.with_children(child_ids)
            self._composites[element_id] = updated
            return updated.with_children(child_ids)

    def delete_element(self, element_id: str) -> bool:
        with self._lock:
            self._maybe_fail("delete_element")
            if self._lookup(element_id) is None:
                return False
            self._check_not_child(element_id)
            for hook in self._hooks.values():
                if hook.inspects(element_id):
                    raise BackendFailure(f"element {element_id} is inspected by hook {hook.hook_id}")
            self._composites.pop(element_id, None)
            self._leaves.pop(element_id, None)
            return True

    def _check_not_child(self, element_id: str) -> None:
        for composite in self._composites.values():
            if element_id in composite.children:
                raise BackendFailure(
                    f"element {element_id} is a child of {composite.element_id}"
                )

    def check_delete_element(self, element_id: str) -> None:
        with self._lock:
            self.ensure_connected()
            self._check_not_child(element_id)

    def get_element(self, element_id: str) -> NetworkElement | None:
        with self._lock:
            self._maybe_fail("get_element")
            element = self._lookup(element_id)
            if element is None:
                return None
            return element.with_children(element.children)

    # ==========================================================================
    # Inspection ports
    # ==========================================================================

    def create_port(self, port: InspectionPortElement) -> InspectionPortElement:
        with self._lock:
            self._maybe_fail("create_port")
            for end in (port.ingress_port, port.egress_port):
                if self._lookup(end.element_id) is None:
                    raise PortNotFoundError(end.element_id)
            for existing in self._ports.values():
                if existing.pair_key == port.pair_key:
                    return InspectionPortElement.from_dict(existing.to_dict())
            stored = InspectionPortElement(
                ingress_port=port.ingress_port,
                egress_port=port.egress_port,
                element_id=self._new_id(),
                parent_id=port.parent_id,
            )
            self._ports[stored.element_id] = stored
            return InspectionPortElement.from_dict(stored.to_dict())

    def delete_port(self, port_id: str) -> bool:
        with self._lock:
            self._maybe_fail("delete_port")
            if port_id not in self._ports:
                return False
            for hook in self._hooks.values():
                if hook.inspection_port.element_id == port_id:
                    raise BackendFailure(f"inspection port {port_id} is used by hook {hook.hook_id}")
            del self._ports[port_id]
            return True

    def get_port(self, port_id: str) -> InspectionPortElement | None:
        with self._lock:
            self._maybe_fail("get_port")
            port = self._ports.get(port_id)
            return InspectionPortElement.from_dict(port.to_dict()) if port else None

    def list_ports(self) -> list[InspectionPortElement]:
        with self._lock:
            self._maybe_fail("list_ports")
            return [InspectionPortElement.from_dict(p.to_dict()) for p in self._ports.values()]

    # ==========================================================================
    # Inspection hooks
    # ==========================================================================

    def create_hook(self, hook: InspectionHookElement) -> str:
        with self._lock:
            self._maybe_fail("create_hook")
            self.check_capabilities(hook.encapsulation_type, hook.failure_policy)
            port_id = hook.inspection_port.element_id
            if port_id not in self._ports:
                raise PortNotFoundError(port_id)
            for element in hook.inspected_elements:
                if self._lookup(element.element_id) is None:
                    raise PortNotFoundError(element.element_id)
            stored = hook.copy()
            stored.hook_id = self._new_id()
            self._hooks[stored.hook_id] = stored
            logger.debug(f"Programmed flow classifier {stored.hook_id} -> port {port_id}")
            return stored.hook_id

    def update_hook(self, hook: InspectionHookElement) -> None:
        with self._lock:
            self._maybe_fail("update_hook")
            self.check_capabilities(hook.encapsulation_type, hook.failure_policy)
            if hook.hook_id not in self._hooks:
                raise BackendFailure(f"unknown hook {hook.hook_id}")
            self._hooks[hook.hook_id] = hook.copy()

    def delete_hook(self, hook_id: str) -> bool:
        with self._lock:
            self._maybe_fail("delete_hook")
            return self._hooks.pop(hook_id, None) is not None

    def get_hook(self, hook_id: str) -> InspectionHookElement | None:
        with self._lock:
            self._maybe_fail("get_hook")
            hook = self._hooks.get(hook_id)
            return hook.copy() if hook else None

    def list_hooks(self) -> list[InspectionHookElement]:
        with self._lock:
            self._maybe_fail("list_hooks")
            return [h.copy() for h in self._hooks.values()]
