"""X10 sound player on the xPL bus.

Listens for ``xpl-cmnd`` / ``x10.basic`` messages. For an ``on`` or ``off``
command addressed to a device that has sound files, it plays the matching
sound (typically into a 433MHz transmitter wired to the audio jack) and
then confirms the command with two ``xpl-trig`` messages: one with schema
``x10.basic`` and one with ``x10.confirm``, since hubs disagree about
which of the two they expect.
"""

from __future__ import annotations

import asyncio
from pathlib import Path

from loguru import logger

from cheapl.sounds.library import COMMANDS, SoundLibrary
from cheapl.sounds.output import DEFAULT_PERIOD_SIZE, AudioOutput, play_wav
from cheapl.xpl.protocol import BROADCAST_TARGET, MsgType, XplMessage
from cheapl.xpl.service import ApplicationService

X10_BASIC = "x10.basic"
X10_CONFIRM = "x10.confirm"


class CheaplService:
    """Binds a sound library and an audio output to an xPL service."""

    def __init__(
        self,
        service: ApplicationService,
        library: SoundLibrary,
        output: AudioOutput,
        *,
        period_size: int = DEFAULT_PERIOD_SIZE,
    ):
        self.service = service
        self.library = library
        self.output = output
        self.period_size = period_size
        self._lock = asyncio.Lock()
        service.register_command(X10_BASIC, self.handle_command)

    def run(self) -> None:
        self.service.run()

    def signoff(self) -> None:
        self.service.send_termination()

    async def handle_command(self, message: XplMessage) -> None:
        command = message.body["command"]
        device = message.body["device"]
        if command not in COMMANDS:
            logger.debug(f"[Cheapl] ignoring command {command!r} for {device}")
            return

        sound = self.library.lookup(device, command)
        if sound is None:
            logger.debug(f"[Cheapl] no sound for {device}/{command}")
            return

        logger.info(f"[Cheapl] {device} {command}: playing {sound.name}")
        try:
            async with self._lock:
                await asyncio.to_thread(self._play, sound)
        except (OSError, ValueError) as exc:
            logger.error(f"[Cheapl] playing {sound} failed: {exc}")
            return

        for reply in confirmations(message):
            self.service.send(reply)

    def _play(self, sound: Path) -> int:
        return play_wav(self.output, sound, self.period_size)


def confirmations(command: XplMessage) -> list[XplMessage]:
    """The two trigger messages that confirm *command*."""
    replies = []
    for schema in (X10_BASIC, X10_CONFIRM):
        reply = command.copy()
        reply.message_type = MsgType.TRIGGER.value
        reply.message_schema = schema
        reply.headers["target"] = BROADCAST_TARGET
        replies.append(reply)
    return replies
