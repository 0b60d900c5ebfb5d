"""
OpenStack networking-sfc controller backend.

Programs redirections through the Neutron SFC REST API:

- inspection port  -> port pair, wrapped in its own port pair group
                      (group id kept in InspectionPortElement.parent_id)
- composite element -> port chain over port pair groups
- inspection hook  -> port chain through the inspection port's group with
                      one flow classifier per inspected Neutron port;
                      the hook id is the port chain id

Tag, order and failure policy are kept as JSON in the chain description,
since networking-sfc does not allow them to change on an existing chain.

Copyright (c) 2025 DNS Science.io, an After Dark Systems, LLC company.
All rights reserved.
"""

import json
import logging
from typing import Any

import httpx

from sdnredirect.redirection.backends.base import RedirectionBackend
from sdnredirect.redirection.exceptions import BackendFailure, PortNotFoundError
from sdnredirect.redirection.models import (
    FailurePolicyType,
    InspectionHookElement,
    InspectionPortElement,
    NetworkElement,
    TagEncapsulationType,
)

logger = logging.getLogger(__name__)

SFC_PREFIX = "/v2.0/sfc"
NAME_PREFIX = "sdnredirect"


class NeutronSFCBackend(RedirectionBackend):
    """Driver for OpenStack Neutron with the networking-sfc extension."""

    NAME = "sfc"
    SUPPORTED_ENCAPSULATIONS = (TagEncapsulationType.MPLS, TagEncapsulationType.NSH)
    SUPPORTED_FAILURE_POLICIES = (FailurePolicyType.NA,)

    def __init__(
        self,
        base_url: str,
        auth_token: str | None = None,
        timeout: float = 30.0,
        verify_tls: bool = True,
        transport: httpx.BaseTransport | None = None,
    ):
        super().__init__()
        self.base_url = base_url.rstrip("/")
        self.auth_token = auth_token
        self.timeout = timeout
        self.verify_tls = verify_tls
        self._transport = transport
        self._client: httpx.Client | None = None

    def _get_headers(self) -> dict[str, str]:
        """Get authorization headers."""
        headers = {
            "Content-Type": "application/json",
            "Accept": "application/json",
            "User-Agent": "sdnredirect/0.1",
        }
        if self.auth_token:
            headers["X-Auth-Token"] = self.auth_token
        return headers

    # ==========================================================================
    # Connection
    # ==========================================================================

    def connect(self) -> None:
        """Open the HTTP client and check the SFC extension answers."""
        self._client = httpx.Client(
            base_url=self.base_url,
            headers=self._get_headers(),
            timeout=self.timeout,
            verify=self.verify_tls,
            transport=self._transport,
        )
        self._connected = True
        try:
            self._request("GET", f"{SFC_PREFIX}/port_chains", params={"fields": "id"})
        except BackendFailure:
            self.close()
            raise
        logger.info(f"Connected to Neutron SFC at {self.base_url}")

    def close(self) -> None:
        if self._client:
            self._client.close()
            self._client = None
        self._connected = False

    def _request(
        self,
        method: str,
        path: str,
        body: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
        missing_ok: bool = False,
    ) -> dict[str, Any] | None:
        """Make a request to Neutron.

        Returns:
            Decoded JSON body ({} for empty bodies), or None on a 404 when
            `missing_ok` is set
        """
        self.ensure_connected()
        try:
            resp = self._client.request(method, path, json=body, params=params)
        except httpx.HTTPError as e:
            raise BackendFailure(f"{method} {path} failed: {e}") from e

        if resp.status_code == 404 and missing_ok:
            return None
        try:
            resp.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise BackendFailure(
                f"{method} {path} returned {resp.status_code}: {resp.text[:200]}"
            ) from e
        if not resp.content:
            return {}
        return resp.json()

    # ==========================================================================
    # Neutron helpers
    # ==========================================================================

    def _neutron_port(self, port_id: str) -> NetworkElement | None:
        data = self._request("GET", f"/v2.0/ports/{port_id}", missing_ok=True)
        if data is None:
            return None
        port = data["port"]
        return NetworkElement(
            element_id=port["id"],
            mac_addresses=[port["mac_address"]] if port.get("mac_address") else [],
            port_ips=[ip["ip_address"] for ip in port.get("fixed_ips", [])],
        )

    def _group_of_pair(self, pair_id: str) -> str | None:
        data = self._request("GET", f"{SFC_PREFIX}/port_pair_groups")
        for group in data.get("port_pair_groups", []):
            if pair_id in group.get("port_pairs", []):
                return group["id"]
        return None

    def _pair_to_port(self, pair: dict[str, Any]) -> InspectionPortElement:
        return InspectionPortElement(
            ingress_port=NetworkElement(element_id=pair["ingress"]),
            egress_port=NetworkElement(element_id=pair["egress"]),
            element_id=pair["id"],
            parent_id=self._group_of_pair(pair["id"]),
        )

    @staticmethod
    def _hook_meta(chain: dict[str, Any]) -> dict[str, Any] | None:
        """Decode hook metadata from a chain description, or None for plain chains."""
        try:
            meta = json.loads(chain.get("description") or "{}")
        except ValueError:
            return None
        if not isinstance(meta, dict) or meta.get("kind") != "hook":
            return None
        return meta

    @staticmethod
    def _encode_meta(hook: InspectionHookElement) -> str:
        return json.dumps({
            "kind": "hook",
            "port": hook.inspection_port.element_id,
            "tag": hook.tag,
            "order": hook.order,
            "failure_policy": hook.failure_policy.value,
        }, separators=(",", ":"))

    # ==========================================================================
    # Network elements
    # ==========================================================================

    def create_element(self, children: list[NetworkElement]) -> NetworkElement:
        child_ids = [c.element_id for c in children]
        if len(set(child_ids)) != len(child_ids):
            raise BackendFailure(f"duplicate port pair group in chain: {child_ids}")
        data = self._request("POST", f"{SFC_PREFIX}/port_chains", body={
            "port_chain": {
                "name": f"{NAME_PREFIX}-chain",
                "port_pair_groups": child_ids,
                "flow_classifiers": [],
            }
        })
        chain = data["port_chain"]
        return NetworkElement(element_id=chain["id"], children=chain["port_pair_groups"])

    def update_element(self, element_id: str, children: list[NetworkElement]) -> NetworkElement | None:
        if self._request("GET", f"{SFC_PREFIX}/port_chains/{element_id}", missing_ok=True) is None:
            return None
        child_ids = [c.element_id for c in children]
        if len(set(child_ids)) != len(child_ids):
            raise BackendFailure(f"duplicate port pair group in chain: {child_ids}")
        data = self._request("PUT", f"{SFC_PREFIX}/port_chains/{element_id}", body={
            "port_chain": {"port_pair_groups": child_ids}
        })
        chain = data["port_chain"]
        return NetworkElement(element_id=chain["id"], children=chain["port_pair_groups"])

    def _composite_chain(self, element_id: str) -> dict[str, Any] | None:
        """Get a plain port chain; hook chains are refused."""
        data = self._request("GET", f"{SFC_PREFIX}/port_chains/{element_id}", missing_ok=True)
        if data is None:
            return None
        chain = data["port_chain"]
        if self._hook_meta(chain) is not None:
            raise BackendFailure(
                f"port chain {element_id} is an inspection hook; remove it as a hook"
            )
        return chain

    def check_delete_element(self, element_id: str) -> None:
        if self._composite_chain(element_id) is not None:
            return
        if self.get_element(element_id) is not None:
            raise BackendFailure(
                f"{element_id} is not a port chain; only composite elements can be deleted"
            )

    def delete_element(self, element_id: str) -> bool:
        if self._composite_chain(element_id) is None:
            return False
        result = self._request(
            "DELETE", f"{SFC_PREFIX}/port_chains/{element_id}", missing_ok=True
        )
        return result is not None

    def get_element(self, element_id: str) -> NetworkElement | None:
        data = self._request("GET", f"{SFC_PREFIX}/port_chains/{element_id}", missing_ok=True)
        if data is not None:
            chain = data["port_chain"]
            return NetworkElement(element_id=chain["id"], children=chain["port_pair_groups"])
        data = self._request(
            "GET", f"{SFC_PREFIX}/port_pair_groups/{element_id}", missing_ok=True
        )
        if data is not None:
            group = data["port_pair_group"]
            return NetworkElement(element_id=group["id"], children=group["port_pairs"])
        return self._neutron_port(element_id)

    # ==========================================================================
    # Inspection ports
    # ==========================================================================

    def create_port(self, port: InspectionPortElement) -> InspectionPortElement:
        for end in (port.ingress_port, port.egress_port):
            if self._neutron_port(end.element_id) is None:
                raise PortNotFoundError(end.element_id)

        ingress_id, egress_id = port.pair_key
        data = self._request("GET", f"{SFC_PREFIX}/port_pairs", params={
            "ingress": ingress_id, "egress": egress_id,
        })
        for pair in data.get("port_pairs", []):
            if (pair["ingress"], pair["egress"]) == port.pair_key:
                return self._pair_to_port(pair)

        data = self._request("POST", f"{SFC_PREFIX}/port_pairs", body={
            "port_pair": {
                "name": f"{NAME_PREFIX}-pair",
                "ingress": ingress_id,
                "egress": egress_id,
            }
        })
        pair = data["port_pair"]
        try:
            data = self._request("POST", f"{SFC_PREFIX}/port_pair_groups", body={
                "port_pair_group": {
                    "name": f"{NAME_PREFIX}-group",
                    "port_pairs": [pair["id"]],
                }
            })
        except BackendFailure:
            self._request("DELETE", f"{SFC_PREFIX}/port_pairs/{pair['id']}", missing_ok=True)
            raise
        return InspectionPortElement(
            ingress_port=port.ingress_port,
            egress_port=port.egress_port,
            element_id=pair["id"],
            parent_id=data["port_pair_group"]["id"],
        )

    def delete_port(self, port_id: str) -> bool:
        if self._request("GET", f"{SFC_PREFIX}/port_pairs/{port_id}", missing_ok=True) is None:
            return False
        self.check_delete_port(port_id)
        group_id = self._group_of_pair(port_id)
        if group_id:
            self._request("DELETE", f"{SFC_PREFIX}/port_pair_groups/{group_id}", missing_ok=True)
        result = self._request("DELETE", f"{SFC_PREFIX}/port_pairs/{port_id}", missing_ok=True)
        return result is not None

    def check_delete_port(self, port_id: str) -> None:
        group_id = self._group_of_pair(port_id)
        if group_id is None:
            return
        data = self._request("GET", f"{SFC_PREFIX}/port_chains")
        for chain in data.get("port_chains", []):
            if self._hook_meta(chain) is None and group_id in chain.get("port_pair_groups", []):
                raise BackendFailure(
                    f"port pair group {group_id} is used by port chain {chain['id']}"
                )

    def get_port(self, port_id: str) -> InspectionPortElement | None:
        data = self._request("GET", f"{SFC_PREFIX}/port_pairs/{port_id}", missing_ok=True)
        if data is None:
            return None
        return self._pair_to_port(data["port_pair"])

    def list_ports(self) -> list[InspectionPortElement]:
        data = self._request("GET", f"{SFC_PREFIX}/port_pairs")
        return [self._pair_to_port(pair) for pair in data.get("port_pairs", [])]

    # ==========================================================================
    # Inspection hooks
    # ==========================================================================

    def _delete_classifiers(self, classifier_ids: list[str]) -> None:
        for classifier_id in classifier_ids:
            self._request(
                "DELETE", f"{SFC_PREFIX}/flow_classifiers/{classifier_id}", missing_ok=True
            )

    def create_hook(self, hook: InspectionHookElement) -> str:
        self.check_capabilities(hook.encapsulation_type, hook.failure_policy)
        port = hook.inspection_port
        group_id = port.parent_id or self._group_of_pair(port.element_id)
        if group_id is None:
            raise PortNotFoundError(port.element_id, f"No port pair group for {port.element_id}")

        classifier_ids: list[str] = []
        try:
            for element in hook.inspected_elements:
                data = self._request("POST", f"{SFC_PREFIX}/flow_classifiers", body={
                    "flow_classifier": {
                        "name": f"{NAME_PREFIX}-{element.element_id}",
                        "ethertype": "IPv4",
                        "logical_source_port": element.element_id,
                    }
                })
                classifier_ids.append(data["flow_classifier"]["id"])

            data = self._request("POST", f"{SFC_PREFIX}/port_chains", body={
                "port_chain": {
                    "name": f"{NAME_PREFIX}-hook",
                    "description": self._encode_meta(hook),
                    "port_pair_groups": [group_id],
                    "flow_classifiers": classifier_ids,
                    "chain_parameters": {
                        "correlation": hook.encapsulation_type.value,
                        "symmetric": False,
                    },
                }
            })
        except BackendFailure:
            self._delete_classifiers(classifier_ids)
            raise
        return data["port_chain"]["id"]

    def update_hook(self, hook: InspectionHookElement) -> None:
        self.check_capabilities(hook.encapsulation_type, hook.failure_policy)
        current = self.get_hook(hook.hook_id)
        if current is None:
            raise BackendFailure(f"unknown hook {hook.hook_id}")
        if current.encapsulation_type != hook.encapsulation_type:
            raise BackendFailure("networking-sfc cannot change the correlation of a port chain")
        self._request("PUT", f"{SFC_PREFIX}/port_chains/{hook.hook_id}", body={
            "port_chain": {"description": self._encode_meta(hook)}
        })

    def delete_hook(self, hook_id: str) -> bool:
        data = self._request("GET", f"{SFC_PREFIX}/port_chains/{hook_id}", missing_ok=True)
        if data is None or self._hook_meta(data["port_chain"]) is None:
            return False
        self._request("DELETE", f"{SFC_PREFIX}/port_chains/{hook_id}", missing_ok=True)
        self._delete_classifiers(data["port_chain"].get("flow_classifiers", []))
        return True

    def _chain_to_hook(self, chain: dict[str, Any], meta: dict[str, Any]) -> InspectionHookElement | None:
        port = self.get_port(meta["port"])
        if port is None:
            logger.warning(f"Port chain {chain['id']} references missing port pair {meta['port']}")
            return None
        inspected = []
        for classifier_id in chain.get("flow_classifiers", []):
            data = self._request(
                "GET", f"{SFC_PREFIX}/flow_classifiers/{classifier_id}", missing_ok=True
            )
            if data is not None:
                source = data["flow_classifier"]["logical_source_port"]
                inspected.append(NetworkElement(element_id=source))
        if not inspected:
            return None
        params = chain.get("chain_parameters") or {}
        return InspectionHookElement(
            inspected_elements=inspected,
            inspection_port=port,
            tag=meta.get("tag", 0),
            encapsulation_type=TagEncapsulationType(params.get("correlation", "mpls")),
            order=meta.get("order", 0),
            failure_policy=FailurePolicyType(meta.get("failure_policy", "na")),
            hook_id=chain["id"],
        )

    def get_hook(self, hook_id: str) -> InspectionHookElement | None:
        data = self._request("GET", f"{SFC_PREFIX}/port_chains/{hook_id}", missing_ok=True)
        if data is None:
            return None
        chain = data["port_chain"]
        meta = self._hook_meta(chain)
        return self._chain_to_hook(chain, meta) if meta else None

    def list_hooks(self) -> list[InspectionHookElement]:
        data = self._request("GET", f"{SFC_PREFIX}/port_chains")
        hooks = []
        for chain in data.get("port_chains", []):
            meta = self._hook_meta(chain)
            if meta is None:
                continue
            hook = self._chain_to_hook(chain, meta)
            if hook is not None:
                hooks.append(hook)
        return hooks
