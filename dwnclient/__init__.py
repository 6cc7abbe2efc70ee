"""dwnclient: client-side protocol layer for Decentralized Web Nodes.

Architecture:
    dwnclient/
    ├── __init__.py       # Package entry, version, public API
    ├── core.py           # Primitives: sha256, canonical JSON, CIDs, timestamps
    ├── errors.py         # Error taxonomy
    ├── config.py         # Layered configuration (defaults, YAML, env)
    ├── observability.py  # Logging setup and correlation ids
    ├── did.py            # did:key and DID resolution
    ├── keys.py           # Signing context (Ed25519 keys per DID)
    ├── jws.py            # General JWS authorization envelopes
    ├── schema.py         # JSON Schema validation of wire shapes
    ├── messages.py       # Message Builder
    ├── data.py           # Data Resolver
    ├── dispatch.py       # Dispatcher/Router and status mapping
    ├── rpc.py            # JSON-RPC over HTTP transport
    ├── node.py           # In-process memory node (agent store, loopback remote)
    ├── agent.py          # Agent bundle
    ├── record.py         # Record handle
    ├── protocol.py       # Protocol handle
    ├── api.py            # Records/Protocols facade
    └── credentials.py    # Verifiable Credentials as JWTs

Quick start:

    api = DwnApi.connect()
    response = await api.records.write("Hello, world!", message={"schema": "foo/bar"})
    read = await api.records.read({"recordId": response.record.id})
    await read.record.data.text()
"""

__version__ = "0.1.0"

from dwnclient.errors import (
    DwnError,
    ValidationError,
    ImmutablePropertyError,
    AuthorizationError,
    NotFoundError,
    OperationError,
    TransportError,
)

from dwnclient.config import ConfigManager, DwnConfig, get_config
from dwnclient.dispatch import LOCAL, Local, Remote, Reply, Router, Status, Target
from dwnclient.messages import MessageBuilder, SignedMessage
from dwnclient.data import DataResolver
from dwnclient.node import MemoryNode, MemoryTransport
from dwnclient.rpc import RpcTransport
from dwnclient.agent import Agent
from dwnclient.record import Record
from dwnclient.protocol import Protocol
from dwnclient.api import DwnApi
from dwnclient.credentials import VerifiableCredential

__all__ = [
    "__version__",
    # Errors
    "DwnError",
    "ValidationError",
    "ImmutablePropertyError",
    "AuthorizationError",
    "NotFoundError",
    "OperationError",
    "TransportError",
    # Config
    "ConfigManager",
    "DwnConfig",
    "get_config",
    # Dispatch
    "LOCAL",
    "Local",
    "Remote",
    "Reply",
    "Router",
    "Status",
    "Target",
    # Building blocks
    "MessageBuilder",
    "SignedMessage",
    "DataResolver",
    "MemoryNode",
    "MemoryTransport",
    "RpcTransport",
    # Facade
    "Agent",
    "Record",
    "Protocol",
    "DwnApi",
    "VerifiableCredential",
]
