"""Agent bundle: key manager, DID resolver, local store and router.

The agent owns the long-lived collaborators; `DwnApi` instances are cheap
views over an agent bound to one connected DID.
"""

from __future__ import annotations

import logging
from typing import Iterable, Optional

from dwnclient.config import DwnConfig, get_config
from dwnclient.did import DidResolver
from dwnclient.dispatch import Router, Transport
from dwnclient.keys import KeyManager
from dwnclient.messages import MessageBuilder
from dwnclient.node import MemoryNode

logger = logging.getLogger(__name__)


class Agent:
    def __init__(
        self,
        keys: Optional[KeyManager] = None,
        resolver: Optional[DidResolver] = None,
        store: Optional[MemoryNode] = None,
        config: Optional[DwnConfig] = None,
    ):
        self.config = config or get_config()
        self.keys = keys or KeyManager()
        self.resolver = resolver or DidResolver()
        self.store = store or MemoryNode(self.config)
        self.router = Router(self.store, self.resolver)
        self.builder = MessageBuilder(self.keys, self.config)

    def register_transport(self, scheme: str, transport: Transport) -> None:
        self.router.register_transport(scheme, transport)

    def create_identity(self, dwn_endpoints: Iterable[str] = ()) -> str:
        """Generate a did:key identity and register its DWN endpoints."""
        did = self.keys.generate()
        self.resolver.register_endpoints(did, dwn_endpoints)
        logger.info(f"Created identity {did}")
        return did

    def clear_storage(self) -> None:
        self.store.clear()
