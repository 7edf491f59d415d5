"""Genesis document assembly."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Mapping, Optional, Sequence

from tmharness.types import Node
from tmharness.validators.keys import ValidatorRegistry

logger = logging.getLogger(__name__)

CHAIN_ID: str = "jepsen"
GENESIS_TIME: str = "0001-01-01T00:00:00.000Z"


def gen_genesis(
    nodes: Sequence[Node],
    weights: Mapping[Node, int],
    registry: ValidatorRegistry,
    *,
    chain_id: str = CHAIN_ID,
    timeout: Optional[float] = None,
) -> Dict[str, Any]:
    """Build the genesis structure for a test.

    Blocks until every node's public key is available. Nodes sharing a public
    key produce a single validator entry (the first one in cluster order).
    Because weights are identical within an identity group, which record
    survives does not change the voting power.
    """
    validators: List[Dict[str, Any]] = []
    seen = []
    for node in nodes:
        pub_key = registry.wait(node, timeout)["pub_key"]
        if pub_key in seen:
            logger.debug("Skipping %s in genesis: shares a key with an earlier validator", node)
            continue
        seen.append(pub_key)
        validators.append({"amount": weights[node], "name": node, "pub_key": pub_key})

    return {
        "app_hash": "",
        "chain_id": chain_id,
        "genesis_time": GENESIS_TIME,
        "validators": validators,
    }
