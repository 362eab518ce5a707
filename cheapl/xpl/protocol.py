"""Wire-level format for xPL messages.

Every xPL message travels as one UDP datagram of plain text made of two
brace-delimited blocks: the envelope headers and the schema body.

Wire format
-----------
    xpl-cmnd              <- message type
    {
    hop=1                 <- headers
    source=vendor-app.id
    target=*
    }
    x10.basic             <- message schema
    {
    command=on            <- body
    device=porch
    }
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

# Well-known UDP port of the local hub.
HUB_PORT = 3865

HEARTBEAT_SCHEMA = "hbeat.app"
HEARTBEAT_END_SCHEMA = "hbeat.end"
HEARTBEAT_REQUEST_SCHEMA = "hbeat.request"

BROADCAST_TARGET = "*"


class MsgType(str, Enum):
    """The three standard xPL message types."""

    COMMAND = "xpl-cmnd"
    STATUS = "xpl-stat"
    TRIGGER = "xpl-trig"


@dataclass
class XplMessage:
    """One xPL message."""

    message_type: str = ""
    message_schema: str = ""
    headers: dict[str, str] = field(default_factory=dict)
    body: dict[str, str] = field(default_factory=dict)

    # -- serialisation -------------------------------------------------------

    def to_wire(self) -> str:
        """Render the message as datagram text."""
        lines = [str(self.message_type), "{"]
        lines.extend(f"{k}={v}" for k, v in self.headers.items())
        lines.extend(["}", self.message_schema, "{"])
        lines.extend(f"{k}={v}" for k, v in self.body.items())
        lines.append("}")
        return "\n".join(lines) + "\n"

    def to_bytes(self) -> bytes:
        return self.to_wire().encode("utf-8")

    def copy(self) -> "XplMessage":
        """Return a copy with its own header and body dicts."""
        return XplMessage(
            message_type=self.message_type,
            message_schema=self.message_schema,
            headers=dict(self.headers),
            body=dict(self.body),
        )

    @property
    def source(self) -> str | None:
        return self.headers.get("source")

    @property
    def target(self) -> str | None:
        return self.headers.get("target")


def envelope_headers(source: str, headers: dict[str, str] | None = None) -> dict[str, str]:
    """Build outbound headers: ``hop``, ``source`` and ``target`` first.

    ``hop`` and ``target`` default to ``1`` and ``*`` when *headers* does not
    set them; ``source`` is always overwritten.
    """
    headers = dict(headers or {})
    out = {
        "hop": headers.pop("hop", "1"),
        "source": source,
        "target": headers.pop("target", BROADCAST_TARGET),
    }
    headers.pop("source", None)
    out.update(headers)
    return out
