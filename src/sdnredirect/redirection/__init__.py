"""
Traffic redirection control for SDN inspection devices.

Network elements and inspection ports are registered first, then
inspection hooks bind inspected elements to an inspection port with a
tag, encapsulation, order and failure policy. A backend driver performs
the actual flow programming.

Supported backends:
- In-memory flow-classifier controller (tests, dry runs)
- SQLite lab controller
- OpenStack Neutron networking-sfc

Copyright (c) 2025 DNS Science.io, an After Dark Systems, LLC company.
All rights reserved.
"""

from sdnredirect.redirection.models import (
    TagEncapsulationType,
    FailurePolicyType,
    NetworkElement,
    InspectionPortElement,
    InspectionHookElement,
)
from sdnredirect.redirection.exceptions import (
    RedirectionError,
    NotFoundError,
    PortNotFoundError,
    BackendFailure,
    HookConflictError,
    UnsupportedCapabilityError,
)
from sdnredirect.redirection.elements import ElementRegistry
from sdnredirect.redirection.ports import PortManager
from sdnredirect.redirection.hooks import HookManager
from sdnredirect.redirection.controller import RedirectionController

__all__ = [
    # Enums
    "TagEncapsulationType",
    "FailurePolicyType",
    # Models
    "NetworkElement",
    "InspectionPortElement",
    "InspectionHookElement",
    # Errors
    "RedirectionError",
    "NotFoundError",
    "PortNotFoundError",
    "BackendFailure",
    "HookConflictError",
    "UnsupportedCapabilityError",
    # Managers
    "ElementRegistry",
    "PortManager",
    "HookManager",
    "RedirectionController",
]
