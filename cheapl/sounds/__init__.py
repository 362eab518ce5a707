"""Sound files, the directory that maps commands to them, and playback."""
