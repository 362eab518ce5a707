"""Maps X10 device names and on/off commands to sound files.

A sound directory holds files named ``on<device>.wav`` and
``off<device>.wav`` (case-insensitive prefix). A device is only playable
when both of its files exist.
"""

from __future__ import annotations

import re
from pathlib import Path

from loguru import logger

_ONOFF = re.compile(r"^(on|off)([^.]+)\.wav$", re.IGNORECASE)

COMMANDS = ("on", "off")


def scan_sounds(directory: str | Path) -> dict[str, dict[str, Path]]:
    """Return ``{device: {"on": path, "off": path}}`` for *directory*."""
    found: dict[str, dict[str, Path]] = {}
    for entry in sorted(Path(directory).iterdir()):
        if not entry.is_file():
            continue
        match = _ONOFF.match(entry.name)
        if match:
            command, device = match.group(1).lower(), match.group(2)
            found.setdefault(device, {})[command] = entry

    incomplete = [d for d, cmds in found.items() if len(cmds) != len(COMMANDS)]
    for device in incomplete:
        logger.debug(f"[Sounds] ignoring {device!r}: needs both an on and an off file")
        del found[device]
    return found


class SoundLibrary:
    """Lookup table from (device, command) to a sound file."""

    def __init__(self, sounds: dict[str, dict[str, Path]] | None = None):
        self.sounds = sounds or {}

    @classmethod
    def from_directory(cls, directory: str | Path) -> "SoundLibrary":
        library = cls(scan_sounds(directory))
        logger.info(
            f"[Sounds] {len(library.sounds)} device(s) in {directory}: "
            f"{', '.join(sorted(library.sounds)) or '-'}"
        )
        return library

    def lookup(self, device: str, command: str) -> Path | None:
        """Sound file for *command* on *device*, or ``None`` when unmapped."""
        return self.sounds.get(device, {}).get(command)

    def devices(self) -> list[str]:
        return sorted(self.sounds)
