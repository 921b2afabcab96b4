"""Gateway id generation and parsing.

A gateway id is ``<clusterId>-<namespaceId>-<uuid>``. Cluster and
namespace ids are validated at config load to be lowercase alphanumeric,
so the first two hyphens always delimit them.
"""

from __future__ import annotations

import uuid
from typing import NamedTuple


class GatewayIdError(ValueError):
    """Raised when a string is not a well-formed gateway id."""


class GatewayId(NamedTuple):
    cluster_id: str
    namespace_id: str
    uid: uuid.UUID


def new_gateway_id(cluster_id: str, namespace_id: str) -> str:
    """Mint a new globally unique application name."""
    return f"{cluster_id}-{namespace_id}-{uuid.uuid4()}"


def parse_gateway_id(gateway_id: str) -> GatewayId:
    """Recover cluster id, namespace id and UUID from a gateway id.

    Raises:
        GatewayIdError: If the id does not have the expected shape or its
            trailing segment is not a canonical UUID.
    """
    parts = gateway_id.split("-", 2)
    if len(parts) != 3 or not parts[0] or not parts[1]:
        raise GatewayIdError(
            f"error parsing gatewayId ({gateway_id}). Format must be 'cluster-namespace-uuid'"
        )
    cluster_id, namespace_id, tail = parts
    try:
        uid = uuid.UUID(tail)
    except ValueError as e:
        raise GatewayIdError(f"error parsing gateway UUID ({gateway_id}): {e}") from e
    # uuid.UUID also accepts braces, urn: prefixes and hyphen-less hex
    if str(uid) != tail.lower():
        raise GatewayIdError(f"error parsing gateway UUID ({gateway_id}): not in canonical form")
    return GatewayId(cluster_id, namespace_id, uid)
