"""
Inspection hook manager.

Binds inspected network elements to inspection ports. Hooks are stored
by their canonical id with two secondary indexes kept consistent on
every mutation:

- (inspected-element set, inspection port pair) -> hook id
- (single inspected element, inspection port pair) -> hook id

Ordering rules:

- Hooks whose inspected sets overlap must have distinct `order` values;
  a collision is rejected with HookConflictError. Evaluation order for
  an element is ascending `order`.
- On one inspection port an element belongs to at most one hook, so the
  (element, port) form always resolves to a single hook.

Mutations touching the same inspected element are serialized through a
per-element lock; hooks on disjoint elements proceed in parallel.

Copyright (c) 2025 DNS Science.io, an After Dark Systems, LLC company.
All rights reserved.
"""

import logging
import threading
from typing import Iterable

from sdnredirect.redirection.backends.base import RedirectionBackend
from sdnredirect.redirection.elements import ElementRegistry
from sdnredirect.redirection.exceptions import (
    HookConflictError,
    NotFoundError,
    PortNotFoundError,
)
from sdnredirect.redirection.locking import KeyedLock
from sdnredirect.redirection.models import (
    FailurePolicyType,
    InspectionHookElement,
    InspectionPortElement,
    NetworkElement,
    TagEncapsulationType,
    check_non_negative,
)
from sdnredirect.redirection.ports import PortManager

logger = logging.getLogger(__name__)

BindingKey = tuple[frozenset[str], tuple[str, str]]
ElementPortKey = tuple[str, tuple[str, str]]


class HookManager:
    """Registry of inspection hooks with dual addressing and ordering rules."""

    def __init__(
        self,
        backend: RedirectionBackend,
        elements: ElementRegistry,
        ports: PortManager,
    ):
        self._backend = backend
        self._elements = elements
        self._ports = ports
        self._lock = threading.RLock()
        self._element_locks = KeyedLock()

        self._hooks: dict[str, InspectionHookElement] = {}
        self._by_binding: dict[BindingKey, str] = {}
        self._by_element_port: dict[ElementPortKey, str] = {}

    def __len__(self) -> int:
        return len(self._hooks)

    # ==========================================================================
    # Index maintenance
    # ==========================================================================

    def _remember(self, hook: InspectionHookElement) -> None:
        with self._lock:
            previous = self._hooks.get(hook.hook_id)
            if previous is not None:
                self._forget(previous)
            self._hooks[hook.hook_id] = hook
            self._by_binding[hook.binding_key] = hook.hook_id
            pair = hook.inspection_port.pair_key
            for element_id in hook.inspected_ids:
                self._by_element_port[(element_id, pair)] = hook.hook_id

    def _forget(self, hook: InspectionHookElement) -> None:
        with self._lock:
            self._hooks.pop(hook.hook_id, None)
            if self._by_binding.get(hook.binding_key) == hook.hook_id:
                del self._by_binding[hook.binding_key]
            pair = hook.inspection_port.pair_key
            for element_id in hook.inspected_ids:
                if self._by_element_port.get((element_id, pair)) == hook.hook_id:
                    del self._by_element_port[(element_id, pair)]

    def clear(self) -> None:
        with self._lock:
            self._hooks.clear()
            self._by_binding.clear()
            self._by_element_port.clear()

    def load(self, hooks: Iterable[InspectionHookElement]) -> None:
        """Replace the cache with hooks read from the backend."""
        with self._lock:
            self.clear()
            for hook in hooks:
                self._remember(hook)

    def all(self) -> list[InspectionHookElement]:
        with self._lock:
            return [h.copy() for h in self._hooks.values()]

    # ==========================================================================
    # Lookups
    # ==========================================================================

    def _resolve_port(self, inspection_port: InspectionPortElement) -> InspectionPortElement:
        port = self._ports.get(inspection_port)
        if port is None:
            raise PortNotFoundError(
                inspection_port.element_id or inspection_port.pair_key[0],
                f"Inspection port not registered: {inspection_port.element_id or inspection_port.pair_key}",
            )
        return port

    def _resolve_inspected(self, elements: list[NetworkElement]) -> list[NetworkElement]:
        return [self._elements.require_port(e) for e in elements]

    def _lookup_binding(self, key: BindingKey) -> InspectionHookElement | None:
        with self._lock:
            hook_id = self._by_binding.get(key)
            if hook_id is not None:
                return self._hooks[hook_id]
        for hook in self._backend.list_hooks():
            if hook.binding_key == key:
                self._remember(hook)
                return hook
        return None

    def _lookup_element_port(self, key: ElementPortKey) -> InspectionHookElement | None:
        with self._lock:
            hook_id = self._by_element_port.get(key)
            if hook_id is not None:
                return self._hooks[hook_id]
        element_id, pair = key
        for hook in self._backend.list_hooks():
            if hook.inspects(element_id) and hook.inspection_port.pair_key == pair:
                self._remember(hook)
                return hook
        return None

    def _sync_matching(self, predicate) -> None:
        """Pull hooks matching `predicate` that the cache has not seen yet."""
        for hook in self._backend.list_hooks():
            if predicate(hook):
                with self._lock:
                    known = hook.hook_id in self._hooks
                if not known:
                    self._remember(hook)

    def _sync_overlapping(self, hook: InspectionHookElement) -> None:
        """Load every hook sharing an inspected element with `hook` before an order check."""
        ids = hook.inspected_ids
        self._sync_matching(lambda h: bool(h.inspected_ids & ids))

    def _require(
        self,
        inspected_port: NetworkElement,
        inspection_port: InspectionPortElement,
    ) -> InspectionHookElement:
        """Resolve the hook addressed by (element, port) or raise NotFoundError."""
        hook = self.get_for(inspected_port, inspection_port)
        if hook is None:
            raise NotFoundError(
                f"No inspection hook for {inspected_port.element_id} on port "
                f"{inspection_port.element_id or inspection_port.pair_key}"
            )
        return hook

    def get(self, hook_id: str) -> InspectionHookElement | None:
        """Get a hook by id, or None."""
        with self._lock:
            cached = self._hooks.get(hook_id)
            if cached is not None:
                return cached.copy()
        found = self._backend.get_hook(hook_id)
        if found is None:
            return None
        self._remember(found)
        return found.copy()

    def get_for(
        self,
        inspected_port: NetworkElement,
        inspection_port: InspectionPortElement,
    ) -> InspectionHookElement | None:
        """Get the hook inspecting `inspected_port` through `inspection_port`, or None.

        Raises:
            PortNotFoundError: Either port cannot be resolved
        """
        port = self._resolve_port(inspection_port)
        self._elements.require_port(inspected_port)
        hook = self._lookup_element_port((inspected_port.element_id, port.pair_key))
        return hook.copy() if hook else None

    def _cached_chain(self, element_id: str) -> list[InspectionHookElement]:
        with self._lock:
            hooks = [h.copy() for h in self._hooks.values() if h.inspects(element_id)]
        return sorted(hooks, key=lambda h: (h.order, h.hook_id))

    def chain(self, element: NetworkElement | str) -> list[InspectionHookElement]:
        """Hooks inspecting `element`, in evaluation order."""
        element_id = element if isinstance(element, str) else element.element_id
        self._sync_matching(lambda h: h.inspects(element_id))
        return self._cached_chain(element_id)

    # ==========================================================================
    # Validation
    # ==========================================================================

    def _check_order(self, candidate: InspectionHookElement, exclude_id: str | None = None) -> None:
        with self._lock:
            for hook in self._hooks.values():
                if hook.hook_id == exclude_id:
                    continue
                if hook.order != candidate.order:
                    continue
                shared = hook.inspected_ids & candidate.inspected_ids
                if shared:
                    raise HookConflictError(
                        f"order {candidate.order} already used by hook {hook.hook_id} "
                        f"on overlapping elements {sorted(shared)}"
                    )

    def _check_port_disjoint(self, candidate: InspectionHookElement) -> None:
        pair = candidate.inspection_port.pair_key
        with self._lock:
            for element_id in candidate.inspected_ids:
                hook_id = self._by_element_port.get((element_id, pair))
                if hook_id is not None:
                    raise HookConflictError(
                        f"element {element_id} is already inspected through this port "
                        f"by hook {hook_id}"
                    )

    # ==========================================================================
    # Install / remove
    # ==========================================================================

    def install(
        self,
        inspected_elements: list[NetworkElement],
        inspection_port: InspectionPortElement,
        tag: int,
        encapsulation_type: TagEncapsulationType,
        order: int,
        failure_policy: FailurePolicyType,
    ) -> str:
        """Install an inspection hook and program the redirection.

        Re-installing an identical binding with identical settings returns
        the existing id.

        Returns:
            The hook id assigned by the backend

        Raises:
            PortNotFoundError: The inspection port or an inspected element
                cannot be resolved
            HookConflictError: Order collision, or the binding exists with
                different settings
            UnsupportedCapabilityError: Encapsulation or failure policy not
                offered by the backend
        """
        check_non_negative("tag", tag)
        check_non_negative("order", order)
        encapsulation_type = TagEncapsulationType(encapsulation_type)
        failure_policy = FailurePolicyType(failure_policy)

        port = self._resolve_port(inspection_port)
        inspected = self._resolve_inspected(inspected_elements)
        self._backend.check_capabilities(encapsulation_type, failure_policy)

        candidate = InspectionHookElement(
            inspected_elements=inspected,
            inspection_port=port,
            tag=tag,
            encapsulation_type=encapsulation_type,
            order=order,
            failure_policy=failure_policy,
        )

        with self._element_locks.hold(candidate.inspected_ids):
            existing = self._lookup_binding(candidate.binding_key)
            if existing is not None:
                if existing.same_settings(candidate):
                    logger.debug(f"Inspection hook {existing.hook_id} already installed")
                    return existing.hook_id
                raise HookConflictError(
                    f"hook {existing.hook_id} already binds these elements to this port "
                    f"with different settings; update it instead"
                )
            self._sync_overlapping(candidate)
            self._check_port_disjoint(candidate)
            self._check_order(candidate)

            candidate.hook_id = self._backend.create_hook(candidate)
            self._remember(candidate)

        logger.info(
            f"Installed inspection hook {candidate.hook_id}: "
            f"{sorted(candidate.inspected_ids)} -> port {port.element_id} "
            f"(tag={tag}, enc={encapsulation_type.value}, order={order}, "
            f"policy={failure_policy.value})"
        )
        return candidate.hook_id

    def _delete(self, hook: InspectionHookElement) -> None:
        deleted = self._backend.delete_hook(hook.hook_id)
        self._forget(hook)
        if deleted:
            logger.info(f"Removed inspection hook {hook.hook_id}")
        else:
            logger.debug(f"Inspection hook {hook.hook_id} already gone from backend")

    def remove(
        self,
        inspected_elements: list[NetworkElement],
        inspection_port: InspectionPortElement,
    ) -> None:
        """Remove the hook binding exactly these elements to the port. No-op if absent."""
        port = self._ports.get(inspection_port)
        if port is None:
            logger.debug("Inspection port not registered; nothing to remove")
            return
        ids = frozenset(e.element_id for e in inspected_elements)
        with self._element_locks.hold(ids):
            hook = self._lookup_binding((ids, port.pair_key))
            if hook is None:
                logger.debug(f"No inspection hook for {sorted(ids)} on port {port.element_id}")
                return
            self._delete(hook)

    def remove_by_id(self, hook_id: str) -> None:
        """Remove a hook by id. No-op if absent."""
        hook = self.get(hook_id)
        if hook is None:
            logger.debug(f"Inspection hook {hook_id} already absent")
            return
        with self._element_locks.hold(hook.inspected_ids):
            current = self.get(hook_id)
            if current is not None:
                self._delete(current)

    def remove_all_for(self, element: NetworkElement) -> int:
        """Remove every hook whose inspected set includes `element`.

        Returns:
            Number of hooks removed
        """
        element_id = element.element_id
        targets = self.chain(element_id)
        involved = set().union(*(h.inspected_ids for h in targets)) if targets else {element_id}

        removed = 0
        with self._element_locks.hold(involved):
            for hook in self._cached_chain(element_id):
                self._delete(hook)
                removed += 1
        if removed:
            logger.info(f"Removed {removed} inspection hook(s) for {element_id}")
        return removed

    def remove_all_on_port(self, inspection_port: InspectionPortElement) -> int:
        """Remove every hook bound to `inspection_port`."""
        pair = inspection_port.pair_key
        self._sync_matching(lambda h: h.inspection_port.pair_key == pair)
        with self._lock:
            targets = [h for h in self._hooks.values() if h.inspection_port.pair_key == pair]
        removed = 0
        for hook in targets:
            self.remove_by_id(hook.hook_id)
            removed += 1
        return removed

    # ==========================================================================
    # Targeted mutations
    # ==========================================================================

    def _apply(self, hook: InspectionHookElement) -> None:
        self._backend.update_hook(hook)
        self._remember(hook)

    def set_tag(
        self,
        inspected_port: NetworkElement,
        inspection_port: InspectionPortElement,
        tag: int,
    ) -> None:
        check_non_negative("tag", tag)
        hook = self._require(inspected_port, inspection_port)
        with self._element_locks.hold(hook.inspected_ids):
            hook = self._require(inspected_port, inspection_port)
            hook.tag = tag
            self._apply(hook)
        logger.info(f"Set tag of inspection hook {hook.hook_id} to {tag}")

    def get_tag(
        self,
        inspected_port: NetworkElement,
        inspection_port: InspectionPortElement,
    ) -> int | None:
        hook = self.get_for(inspected_port, inspection_port)
        return hook.tag if hook else None

    def set_order(
        self,
        inspected_port: NetworkElement,
        inspection_port: InspectionPortElement,
        order: int,
    ) -> None:
        check_non_negative("order", order)
        hook = self._require(inspected_port, inspection_port)
        with self._element_locks.hold(hook.inspected_ids):
            hook = self._require(inspected_port, inspection_port)
            hook.order = order
            self._sync_overlapping(hook)
            self._check_order(hook, exclude_id=hook.hook_id)
            self._apply(hook)
        logger.info(f"Set order of inspection hook {hook.hook_id} to {order}")

    def get_order(
        self,
        inspected_port: NetworkElement,
        inspection_port: InspectionPortElement,
    ) -> int | None:
        hook = self.get_for(inspected_port, inspection_port)
        return hook.order if hook else None

    def set_failure_policy(
        self,
        inspected_port: NetworkElement,
        inspection_port: InspectionPortElement,
        failure_policy: FailurePolicyType,
    ) -> None:
        failure_policy = FailurePolicyType(failure_policy)
        hook = self._require(inspected_port, inspection_port)
        self._backend.check_capabilities(hook.encapsulation_type, failure_policy)
        with self._element_locks.hold(hook.inspected_ids):
            hook = self._require(inspected_port, inspection_port)
            hook.failure_policy = failure_policy
            self._apply(hook)
        logger.info(
            f"Set failure policy of inspection hook {hook.hook_id} to {failure_policy.value}"
        )

    def get_failure_policy(
        self,
        inspected_port: NetworkElement,
        inspection_port: InspectionPortElement,
    ) -> FailurePolicyType | None:
        hook = self.get_for(inspected_port, inspection_port)
        return hook.failure_policy if hook else None

    def update(self, existing_hook: InspectionHookElement) -> None:
        """Replace tag, encapsulation, order and failure policy from a snapshot.

        The snapshot is matched by hook id if it has one, otherwise by its
        (inspected set, port) binding; the binding itself cannot change.

        Raises:
            PortNotFoundError: The snapshot's port or elements cannot be resolved
            NotFoundError: No hook matches the snapshot
            HookConflictError: The id matches a hook with a different binding,
                or the new order collides
        """
        check_non_negative("tag", existing_hook.tag)
        check_non_negative("order", existing_hook.order)
        port = self._resolve_port(existing_hook.inspection_port)
        self._resolve_inspected(existing_hook.inspected_elements)
        self._backend.check_capabilities(
            existing_hook.encapsulation_type, existing_hook.failure_policy
        )
        key = (existing_hook.inspected_ids, port.pair_key)

        if existing_hook.hook_id:
            current = self.get(existing_hook.hook_id)
        else:
            current = self._lookup_binding(key)
        if current is None:
            raise NotFoundError(
                f"No inspection hook matches {existing_hook.hook_id or sorted(key[0])}"
            )
        if current.binding_key != key:
            raise HookConflictError(
                f"hook {current.hook_id} binds {sorted(current.inspected_ids)}; "
                f"identity fields cannot be changed by an update"
            )

        with self._element_locks.hold(current.inspected_ids):
            updated = current.copy()
            updated.tag = existing_hook.tag
            updated.encapsulation_type = existing_hook.encapsulation_type
            updated.order = existing_hook.order
            updated.failure_policy = existing_hook.failure_policy
            self._sync_overlapping(updated)
            self._check_order(updated, exclude_id=updated.hook_id)
            self._apply(updated)
        logger.info(f"Updated inspection hook {updated.hook_id}")
