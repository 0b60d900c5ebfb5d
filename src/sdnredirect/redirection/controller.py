"""
Redirection controller facade.

The single object exposed to callers. Composes the element registry,
port manager and hook manager over one backend connection, which it
acquires on construction and releases exactly once on close.

Usage:
    with RedirectionController(InMemoryBackend(ports=["p1"])) as controller:
        port = controller.register_inspection_port(
            InspectionPortElement.single(NetworkElement("p1"))
        )

Copyright (c) 2025 DNS Science.io, an After Dark Systems, LLC company.
All rights reserved.
"""

import logging
import threading
from functools import wraps

from sdnredirect.logging_config import ErrorTracker, FailureRecord
from sdnredirect.redirection.backends.base import RedirectionBackend
from sdnredirect.redirection.elements import ElementRegistry
from sdnredirect.redirection.exceptions import (
    BackendFailure,
    RedirectionError,
)
from sdnredirect.redirection.hooks import HookManager
from sdnredirect.redirection.models import (
    FailurePolicyType,
    InspectionHookElement,
    InspectionPortElement,
    NetworkElement,
    TagEncapsulationType,
)
from sdnredirect.redirection.ports import PortManager

logger = logging.getLogger(__name__)


def _tracked(func):
    """Refuse calls after close and record failures before re-raising."""

    @wraps(func)
    def wrapper(self, *args, **kwargs):
        if self._closed:
            raise BackendFailure("redirection controller is closed")
        try:
            return func(self, *args, **kwargs)
        except RedirectionError as e:
            self._errors.record(func.__name__, e, severe=isinstance(e, BackendFailure))
            raise

    return wrapper


class RedirectionController:
    """Traffic redirection control over one SDN controller backend."""

    def __init__(self, backend: RedirectionBackend, reconcile: bool = False):
        """Acquire the backend connection.

        Args:
            backend: Controller driver
            reconcile: Load existing ports and hooks from the backend right away

        Raises:
            BackendFailure: Connecting or the initial reconcile failed; the
                connection is released before the error propagates
        """
        self._backend = backend
        self._closed = False
        self._close_lock = threading.Lock()
        self._errors = ErrorTracker()

        self.elements = ElementRegistry(backend)
        self.ports = PortManager(backend, self.elements)
        self.hooks = HookManager(backend, self.elements, self.ports)

        try:
            backend.connect()
        except Exception:
            self._closed = True
            backend.close()
            raise
        logger.info(f"Connected to {backend.NAME} backend")

        if reconcile:
            try:
                self.reconcile()
            except Exception:
                self.close()
                raise

    @property
    def backend(self) -> RedirectionBackend:
        return self._backend

    @property
    def closed(self) -> bool:
        return self._closed

    def failure_counts(self) -> dict[str, int]:
        """Failed operations so far, by error type."""
        return self._errors.counts()

    def recent_failures(self) -> list[FailureRecord]:
        return self._errors.recent()

    @property
    def last_failure(self) -> FailureRecord | None:
        return self._errors.last

    def close(self) -> None:
        """Release the backend connection. Safe to call more than once."""
        with self._close_lock:
            if self._closed:
                return
            self._closed = True
        try:
            self._backend.close()
        finally:
            self.elements.clear()
            self.ports.clear()
            self.hooks.clear()
            logger.info(f"Released {self._backend.NAME} backend")

    def __enter__(self) -> "RedirectionController":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    @_tracked
    def reconcile(self) -> None:
        """Drop cached state and reload ports and hooks from the backend."""
        ports = self._backend.list_ports()
        hooks = self._backend.list_hooks()
        self.elements.clear()
        self.ports.load(ports)
        self.hooks.load(hooks)
        logger.info(f"Reconciled {len(ports)} port(s) and {len(hooks)} hook(s)")

    # ==========================================================================
    # Network elements
    # ==========================================================================

    @_tracked
    def register_network_element(self, elements: list[NetworkElement]) -> NetworkElement:
        """Create a composite element (SFC: port chain over port pair groups)."""
        return self.elements.register(elements)

    @_tracked
    def update_network_element(
        self,
        element: NetworkElement,
        child_elements: list[NetworkElement],
    ) -> NetworkElement:
        """Replace the children of `element`. Raises NotFoundError if unknown."""
        return self.elements.update(element, child_elements)

    @_tracked
    def delete_network_element(self, element: NetworkElement) -> None:
        """Delete an element and every hook inspecting it. No-op if unknown.

        Raises:
            BackendFailure: The backend refuses the delete; hooks are left in place
        """
        self.elements.check_delete(element)
        self.hooks.remove_all_for(element)
        self.elements.delete(element)

    @_tracked
    def get_network_elements(self, element: NetworkElement) -> list[NetworkElement] | None:
        """Children of `element`, or None if the element is unknown."""
        return self.elements.list(element)

    # ==========================================================================
    # Inspection hooks
    # ==========================================================================

    @_tracked
    def install_inspection_hook(
        self,
        network_elements: list[NetworkElement],
        inspection_port: InspectionPortElement,
        tag: int,
        encapsulation_type: TagEncapsulationType,
        order: int,
        failure_policy: FailurePolicyType,
    ) -> str:
        """Create an inspection hook. Returns its id."""
        return self.hooks.install(
            network_elements, inspection_port, tag, encapsulation_type, order, failure_policy
        )

    @_tracked
    def install_redirection(
        self,
        network_elements: list[NetworkElement],
        ingress_port: NetworkElement,
        egress_port: NetworkElement,
        tag: int,
        encapsulation_type: TagEncapsulationType,
        order: int,
        failure_policy: FailurePolicyType,
    ) -> str:
        """Register the inspection port, then install the hook through it.

        If the hook cannot be installed and the port was registered by this
        call, the port is removed again. A port that already existed is left
        untouched, so retrying the same call is always safe.
        """
        candidate = InspectionPortElement(ingress_port=ingress_port, egress_port=egress_port)
        fresh = self.ports.get(candidate) is None
        port = self.ports.register(candidate)
        try:
            return self.hooks.install(
                network_elements, port, tag, encapsulation_type, order, failure_policy
            )
        except RedirectionError:
            if fresh:
                logger.warning(
                    f"Hook install failed; rolling back inspection port {port.element_id}"
                )
                try:
                    self.ports.remove(port)
                except RedirectionError as rollback_error:
                    # An unused port pair is harmless; re-registering it is idempotent
                    logger.warning(
                        f"Rollback of inspection port {port.element_id} failed: {rollback_error}"
                    )
            raise

    @_tracked
    def remove_inspection_hook(
        self,
        network_elements: list[NetworkElement],
        inspection_port: InspectionPortElement,
    ) -> None:
        """Remove the hook binding `network_elements` to the port. No-op if absent."""
        self.hooks.remove(network_elements, inspection_port)

    @_tracked
    def remove_inspection_hook_by_id(self, inspection_hook_id: str) -> None:
        """Remove a hook by id. No-op if absent."""
        self.hooks.remove_by_id(inspection_hook_id)

    @_tracked
    def get_inspection_hook(self, inspection_hook_id: str) -> InspectionHookElement | None:
        return self.hooks.get(inspection_hook_id)

    @_tracked
    def get_inspection_hook_for(
        self,
        inspected_port: NetworkElement,
        inspection_port: InspectionPortElement,
    ) -> InspectionHookElement | None:
        return self.hooks.get_for(inspected_port, inspection_port)

    @_tracked
    def list_inspection_hooks(self, element: NetworkElement) -> list[InspectionHookElement]:
        """Hooks inspecting `element`, in evaluation order."""
        return self.hooks.chain(element)

    @_tracked
    def remove_all_inspection_hooks(self, network_element: NetworkElement) -> None:
        """Remove every hook inspecting `network_element`. No-op if none."""
        self.hooks.remove_all_for(network_element)

    @_tracked
    def update_inspection_hook(self, existing_inspection_hook: InspectionHookElement) -> None:
        self.hooks.update(existing_inspection_hook)

    @_tracked
    def set_inspection_hook_tag(
        self,
        inspected_port: NetworkElement,
        inspection_port: InspectionPortElement,
        tag: int,
    ) -> None:
        self.hooks.set_tag(inspected_port, inspection_port, tag)

    @_tracked
    def get_inspection_hook_tag(
        self,
        inspected_port: NetworkElement,
        inspection_port: InspectionPortElement,
    ) -> int | None:
        return self.hooks.get_tag(inspected_port, inspection_port)

    @_tracked
    def set_inspection_hook_order(
        self,
        inspected_port: NetworkElement,
        inspection_port: InspectionPortElement,
        order: int,
    ) -> None:
        self.hooks.set_order(inspected_port, inspection_port, order)

    @_tracked
    def get_inspection_hook_order(
        self,
        inspected_port: NetworkElement,
        inspection_port: InspectionPortElement,
    ) -> int | None:
        return self.hooks.get_order(inspected_port, inspection_port)

    @_tracked
    def set_inspection_hook_failure_policy(
        self,
        inspected_port: NetworkElement,
        inspection_port: InspectionPortElement,
        failure_policy: FailurePolicyType,
    ) -> None:
        self.hooks.set_failure_policy(inspected_port, inspection_port, failure_policy)

    @_tracked
    def get_inspection_hook_failure_policy(
        self,
        inspected_port: NetworkElement,
        inspection_port: InspectionPortElement,
    ) -> FailurePolicyType | None:
        return self.hooks.get_failure_policy(inspected_port, inspection_port)

    # ==========================================================================
    # Inspection ports
    # ==========================================================================

    @_tracked
    def register_inspection_port(self, inspection_port: InspectionPortElement) -> InspectionPortElement:
        """Register a port pair. Registering the same pair again is a no-op."""
        return self.ports.register(inspection_port)

    @_tracked
    def remove_inspection_port(self, inspection_port: InspectionPortElement) -> None:
        """Remove a port pair and the hooks bound to it. No-op if absent.

        Raises:
            PortNotFoundError: Ingress or egress element is unknown
            BackendFailure: The backend refuses the removal; hooks are left in place
        """
        self.ports.validate_ends(inspection_port)
        port = self.ports.get(inspection_port)
        if port is None:
            logger.debug(f"Inspection port {inspection_port.pair_key} already absent")
            return
        self.ports.check_remove(port)
        self.hooks.remove_all_on_port(port)
        self.ports.remove(port)

    @_tracked
    def get_inspection_port(self, inspection_port: InspectionPortElement) -> InspectionPortElement | None:
        return self.ports.get(inspection_port)
