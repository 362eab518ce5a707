"""xPL protocol engine.

A small peer for the xPL UDP broadcast bus: announces itself with periodic
heartbeats, detects a hub by seeing its own heartbeat echoed back, and
dispatches inbound messages to handlers keyed by (message type, schema).
"""
