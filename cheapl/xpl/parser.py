"""Line-driven parser that folds one xPL datagram into an ``XplMessage``.

The parser is a five-state automaton that only ever moves forward::

    EXPECT_MESSAGE_TYPE -> EXPECT_HEADER -> EXPECT_MESSAGE_SCHEMA
        -> EXPECT_BODY -> READY

A datagram that is truncated or misses a closing brace simply never reaches
``READY`` and is dropped by the caller.
"""

from __future__ import annotations

import re
from enum import Enum

from loguru import logger

from cheapl.xpl.protocol import XplMessage

_NAME_VALUE = re.compile(r"^([^= ]+)\s*=\s*(.*)$")


class ParserState(Enum):
    EXPECT_MESSAGE_TYPE = 0
    EXPECT_HEADER = 1
    EXPECT_MESSAGE_SCHEMA = 2
    EXPECT_BODY = 3
    READY = 4


class DatagramParser:
    """Accumulates lines into one message. Single use: ``reset()`` or make a new one."""

    def __init__(self) -> None:
        self.state = ParserState.EXPECT_MESSAGE_TYPE
        self._message = XplMessage()

    def reset(self) -> None:
        self.state = ParserState.EXPECT_MESSAGE_TYPE
        self._message = XplMessage()

    def is_ready(self) -> bool:
        return self.state is ParserState.READY

    def get_message(self) -> XplMessage:
        """Return the accumulated message.

        Before ``is_ready()`` holds the result is only partially populated.
        """
        return self._message.copy()

    def feed_line(self, line: str) -> None:
        line = line.strip()
        state = self.state

        if state is ParserState.EXPECT_MESSAGE_TYPE:
            if line == "{":
                self.state = ParserState.EXPECT_HEADER
            else:
                self._message.message_type = line
        elif state is ParserState.EXPECT_HEADER:
            if line == "}":
                self.state = ParserState.EXPECT_MESSAGE_SCHEMA
            else:
                _store_pair(self._message.headers, line)
        elif state is ParserState.EXPECT_MESSAGE_SCHEMA:
            if line == "{":
                self.state = ParserState.EXPECT_BODY
            else:
                self._message.message_schema = line
        elif state is ParserState.EXPECT_BODY:
            if line == "}":
                self.state = ParserState.READY
            else:
                _store_pair(self._message.body, line)
        # READY: the message is complete, trailing lines are ignored


def _store_pair(target: dict[str, str], line: str) -> None:
    match = _NAME_VALUE.match(line)
    if match:
        target[match.group(1)] = match.group(2).strip()


def split_datagram(data: bytes) -> list[str]:
    """Split a raw UDP payload into its non-empty lines."""
    text = data.decode("utf-8", errors="replace")
    return [line for line in text.split("\n") if line]


def parse_datagram(data: bytes) -> XplMessage | None:
    """Parse one datagram; ``None`` if it never reached a complete message."""
    parser = DatagramParser()
    for line in split_datagram(data):
        parser.feed_line(line)
    if not parser.is_ready():
        logger.debug("[Xpl/Parser] incomplete datagram dropped ({} bytes)", len(data))
        return None
    return parser.get_message()
