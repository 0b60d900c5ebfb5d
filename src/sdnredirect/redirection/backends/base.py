"""
Base class for SDN controller backends.

Defines the primitives a controller driver must provide so that the
redirection managers can program inspection ports and hooks.

Copyright (c) 2025 DNS Science.io, an After Dark Systems, LLC company.
All rights reserved.
"""

import logging
from abc import ABC, abstractmethod

from sdnredirect.redirection.exceptions import (
    BackendFailure,
    UnsupportedCapabilityError,
)
from sdnredirect.redirection.models import (
    FailurePolicyType,
    InspectionHookElement,
    InspectionPortElement,
    NetworkElement,
    TagEncapsulationType,
)

logger = logging.getLogger(__name__)


class RedirectionBackend(ABC):
    """Abstract base class for controller drivers.

    Drivers are the source of truth for element, port and hook state.
    Getters return None for unknown ids and deletes return False when
    there was nothing to delete; every other controller-side failure is
    raised as BackendFailure.
    """

    NAME = "abstract"
    SUPPORTED_ENCAPSULATIONS: tuple[TagEncapsulationType, ...] = tuple(TagEncapsulationType)
    SUPPORTED_FAILURE_POLICIES: tuple[FailurePolicyType, ...] = tuple(FailurePolicyType)

    def __init__(self):
        self._connected = False

    @property
    def connected(self) -> bool:
        return self._connected

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.NAME} connected={self._connected}>"

    # ==========================================================================
    # Connection
    # ==========================================================================

    @abstractmethod
    def connect(self) -> None:
        """Open the connection to the controller."""
        pass

    @abstractmethod
    def close(self) -> None:
        """Release the connection to the controller."""
        pass

    def ensure_connected(self) -> None:
        if not self._connected:
            raise BackendFailure(f"{self.NAME} backend is not connected")

    # ==========================================================================
    # Capabilities
    # ==========================================================================

    def check_capabilities(
        self,
        encapsulation_type: TagEncapsulationType,
        failure_policy: FailurePolicyType,
    ) -> None:
        """Raise UnsupportedCapabilityError for values this driver cannot program."""
        if encapsulation_type not in self.SUPPORTED_ENCAPSULATIONS:
            raise UnsupportedCapabilityError(
                f"{self.NAME} backend does not support {encapsulation_type.value} encapsulation"
            )
        if failure_policy not in self.SUPPORTED_FAILURE_POLICIES:
            raise UnsupportedCapabilityError(
                f"{self.NAME} backend does not support failure policy {failure_policy.value}"
            )

    def provision_port(self, element: NetworkElement) -> NetworkElement:
        """Make a leaf port known to the controller. Override in lab backends."""
        raise UnsupportedCapabilityError(
            f"{self.NAME} backend manages its own ports; provisioning is not supported"
        )

    # ==========================================================================
    # Network elements
    # ==========================================================================

    @abstractmethod
    def create_element(self, children: list[NetworkElement]) -> NetworkElement:
        """Create a composite element over `children`, preserving their order."""
        pass

    @abstractmethod
    def update_element(self, element_id: str, children: list[NetworkElement]) -> NetworkElement | None:
        """Replace the children of an element. Returns None if it is unknown."""
        pass

    @abstractmethod
    def delete_element(self, element_id: str) -> bool:
        """Delete an element. Returns False if it did not exist."""
        pass

    @abstractmethod
    def get_element(self, element_id: str) -> NetworkElement | None:
        """Get a leaf port or composite element by id."""
        pass

    def check_delete_element(self, element_id: str) -> None:
        """Raise BackendFailure if delete_element would refuse `element_id`.

        Hooks inspecting the element are not counted; callers remove them
        first. The default accepts everything.
        """
        pass

    # ==========================================================================
    # Inspection ports
    # ==========================================================================

    @abstractmethod
    def create_port(self, port: InspectionPortElement) -> InspectionPortElement:
        """Create an inspection port. Returns it with element_id assigned."""
        pass

    @abstractmethod
    def delete_port(self, port_id: str) -> bool:
        """Delete an inspection port. Returns False if it did not exist."""
        pass

    @abstractmethod
    def get_port(self, port_id: str) -> InspectionPortElement | None:
        pass

    def check_delete_port(self, port_id: str) -> None:
        """Raise BackendFailure if delete_port would refuse `port_id`, hooks aside."""
        pass

    @abstractmethod
    def list_ports(self) -> list[InspectionPortElement]:
        pass

    # ==========================================================================
    # Inspection hooks
    # ==========================================================================

    @abstractmethod
    def create_hook(self, hook: InspectionHookElement) -> str:
        """Program a redirection. Returns the assigned hook id."""
        pass

    @abstractmethod
    def update_hook(self, hook: InspectionHookElement) -> None:
        """Reprogram tag, order and failure policy of an existing hook."""
        pass

    @abstractmethod
    def delete_hook(self, hook_id: str) -> bool:
        """Remove a redirection. Returns False if it did not exist."""
        pass

    @abstractmethod
    def get_hook(self, hook_id: str) -> InspectionHookElement | None:
        pass

    @abstractmethod
    def list_hooks(self) -> list[InspectionHookElement]:
        pass
