"""cheapl - play a sound for every X10 command seen on an xPL bus."""

__version__ = "0.1.0"
