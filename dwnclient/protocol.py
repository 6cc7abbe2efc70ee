"""Protocol handle: a configured protocol definition and its signed message."""

from __future__ import annotations

import copy
import logging
from typing import TYPE_CHECKING, Any, Dict

from dwnclient.dispatch import Remote
from dwnclient.errors import TransportError
from dwnclient.messages import SignedMessage, message_author
from dwnclient.observability import request_scope
from dwnclient.record import StatusResponse
from dwnclient.schema import validate_reply_entry

if TYPE_CHECKING:
    from dwnclient.agent import Agent

logger = logging.getLogger(__name__)


class Protocol:
    """A configured protocol definition together with its signed configure message."""

    def __init__(self, agent: "Agent", connected_did: str, message: Dict[str, Any]):
        self._agent = agent
        self._connected_did = connected_did
        self._message = copy.deepcopy(message)

    @classmethod
    def from_entry(cls, agent: "Agent", connected_did: str, entry: Dict[str, Any]) -> "Protocol":
        errors = validate_reply_entry(entry, "protocolEntry")
        if errors:
            raise TransportError(f"Malformed protocol entry: {errors[0]}")
        return cls(agent, connected_did, entry)

    @property
    def definition(self) -> Dict[str, Any]:
        return copy.deepcopy(self._message["descriptor"]["definition"])

    @property
    def protocol(self) -> str:
        return self._message["descriptor"]["definition"]["protocol"]

    @property
    def message(self) -> Dict[str, Any]:
        return copy.deepcopy(self._message)

    @property
    def author(self) -> str:
        return message_author(self._message)

    @property
    def date_created(self) -> str:
        return self._message["descriptor"]["messageTimestamp"]

    def to_json(self) -> Dict[str, Any]:
        return {
            "author": self.author,
            "protocol": self.protocol,
            "definition": self.definition,
            "messageTimestamp": self.date_created,
        }

    def __repr__(self) -> str:
        return f"Protocol(protocol={self.protocol!r}, author={self.author!r})"

    async def send(self, target: str) -> StatusResponse:
        """Install the same configuration on `target`'s node."""
        with request_scope():
            reply = await self._agent.router.dispatch(
                Remote(target), self._connected_did, SignedMessage(self.message)
            )
        logger.info(f"Sent protocol {self.protocol} to {target}: {reply.status.code}")
        return StatusResponse(reply.status)
