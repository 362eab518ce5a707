"""xPL application service: heartbeats, hub detection and message dispatch.

How it works
------------
1. The service binds a UDP socket on an ephemeral port with broadcast
   enabled and announces that port in every heartbeat it broadcasts to the
   hub port (3865).
2. A single timer drives the heartbeat chain (see ``heartbeat.py``): fast
   while discovering, slower once lonely, slowest once connected.
3. When a heartbeat carrying our own ``source`` comes back over the wire, a
   hub is relaying for us and the service counts as *connected* for the rest
   of its life.
4. Every inbound datagram is parsed into an ``XplMessage`` and queued; one
   dispatcher task hands each message addressed to ``*`` or to us to the
   handler registered for its (message type, schema).

Everything runs on one asyncio event loop, so handlers may call ``send()``
freely: the write is posted to the loop, never performed inline.
"""

from __future__ import annotations

import asyncio
import inspect
import socket
from typing import Any, Callable

from loguru import logger

from cheapl.xpl.heartbeat import HeartbeatPhase, HeartbeatSchedule
from cheapl.xpl.parser import parse_datagram
from cheapl.xpl.protocol import (
    BROADCAST_TARGET,
    HEARTBEAT_END_SCHEMA,
    HEARTBEAT_REQUEST_SCHEMA,
    HEARTBEAT_SCHEMA,
    HUB_PORT,
    MsgType,
    XplMessage,
    envelope_headers,
)

# Callback type: receives an XplMessage; may return an awaitable.
Handler = Callable[[XplMessage], Any]


class _XplDatagramProtocol(asyncio.DatagramProtocol):
    """Feeds the endpoint's events back into the owning service."""

    def __init__(self, service: "ApplicationService") -> None:
        self._service = service

    def datagram_received(self, data: bytes, addr: tuple[str, int]) -> None:
        self._service._on_datagram(data, addr)

    def error_received(self, exc: Exception) -> None:
        self._service._fail(exc)

    def connection_lost(self, exc: Exception | None) -> None:
        if exc is not None:
            self._service._fail(exc)


class ApplicationService:
    """An xPL peer on the local broadcast bus.

    Parameters
    ----------
    application_id:
        xPL source address (``vendor-device.instance``) stamped on every
        outbound message and used to recognise our own echoed heartbeats.
    version_string:
        Reported in the ``version`` key of each heartbeat.
    broadcast_address:
        Destination for all outbound datagrams (default ``255.255.255.255``).
    hub_port:
        Destination port (default 3865).
    bind_address:
        Local interface to bind; empty means all interfaces.
    schedule:
        Heartbeat timings; defaults to 3s / 30s / 5min with a 120s window.
    """

    def __init__(
        self,
        application_id: str,
        version_string: str,
        *,
        broadcast_address: str = "255.255.255.255",
        hub_port: int = HUB_PORT,
        bind_address: str = "",
        schedule: HeartbeatSchedule | None = None,
    ):
        self.application_id = application_id
        self.version_string = version_string
        self.send_endpoint = (broadcast_address, hub_port)
        self.schedule = schedule or HeartbeatSchedule()

        self._connected = False
        # message type -> schema -> handler
        self._handlers: dict[str, dict[str, Handler]] = {t.value: {} for t in MsgType}

        self._sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        self._sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        self._sock.setsockopt(socket.SOL_SOCKET, socket.SO_BROADCAST, 1)
        self._sock.bind((bind_address, 0))

        self._loop: asyncio.AbstractEventLoop | None = None
        self._transport: asyncio.DatagramTransport | None = None
        self._inbox: asyncio.Queue[XplMessage] | None = None
        self._done: asyncio.Future[None] | None = None
        self._timer: asyncio.TimerHandle | None = None
        self._deadline = 0.0
        self._pending: list[bytes] = []

        for message_type in MsgType:
            self.register(
                message_type.value,
                HEARTBEAT_REQUEST_SCHEMA,
                lambda _m: self.send_heartbeat(),
            )

        logger.info(
            f"[Xpl/Service] bound {self.application_id} to "
            f"{self.local_address}:{self.local_port}"
        )

    # -- handler registration ------------------------------------------------

    def register(self, message_type: str, schema: str, handler: Handler) -> None:
        """Install *handler* for (type, schema), replacing any previous one."""
        self._handlers.setdefault(str(message_type), {})[schema] = handler

    def register_command(self, schema: str, handler: Handler) -> None:
        self.register(MsgType.COMMAND.value, schema, handler)

    def register_status(self, schema: str, handler: Handler) -> None:
        self.register(MsgType.STATUS.value, schema, handler)

    def register_trigger(self, schema: str, handler: Handler) -> None:
        self.register(MsgType.TRIGGER.value, schema, handler)

    # -- state ---------------------------------------------------------------

    def is_connected(self) -> bool:
        return self._connected

    @property
    def phase(self) -> HeartbeatPhase:
        return self.schedule.phase

    @property
    def local_port(self) -> int:
        return self._sock.getsockname()[1]

    @property
    def local_address(self) -> str:
        return self._sock.getsockname()[0]

    # -- lifecycle -----------------------------------------------------------

    def run(self) -> None:
        """Block running the event loop until ``stop()`` or a fatal error."""
        asyncio.run(self.serve())

    async def serve(self) -> None:
        """Coroutine form of ``run()``."""
        loop = asyncio.get_running_loop()
        self._loop = loop
        self._done = loop.create_future()
        self._inbox = asyncio.Queue()
        self._transport, _ = await loop.create_datagram_endpoint(
            lambda: _XplDatagramProtocol(self), sock=self._sock
        )

        self._write(self._heartbeat_message(HEARTBEAT_SCHEMA).to_bytes())
        self._deadline = loop.time()
        self._arm_timer(self.schedule.initial_delay)
        dispatcher = asyncio.create_task(self._dispatch_loop())
        pending, self._pending = self._pending, []
        for payload in pending:
            loop.call_soon(self._write, payload)

        logger.info(
            f"[Xpl/Service] running: id={self.application_id} "
            f"port={self.local_port} hub={self.send_endpoint[0]}:{self.send_endpoint[1]}"
        )
        try:
            await self._done
        finally:
            self._cancel_timer()
            dispatcher.cancel()
            try:
                await dispatcher
            except asyncio.CancelledError:
                pass
            logger.info("[Xpl/Service] stopped")

    def stop(self) -> None:
        """Ask ``run()`` to return. Safe from other threads and signal handlers."""
        loop = self._loop
        if loop is None or loop.is_closed():
            return
        loop.call_soon_threadsafe(self._finish, None)

    def close(self) -> None:
        """Release the socket."""
        loop = self._loop
        if self._transport is not None and loop is not None and loop.is_running():
            self._transport.close()
        else:
            self._sock.close()

    def _finish(self, exc: BaseException | None) -> None:
        if self._done is None or self._done.done():
            return
        if exc is None:
            self._done.set_result(None)
        else:
            self._done.set_exception(exc)

    def _fail(self, exc: BaseException) -> None:
        logger.error(f"[Xpl/Service] transport failure: {exc}")
        self._finish(exc)

    # -- sending -------------------------------------------------------------

    def send(self, message: XplMessage) -> None:
        """Queue *message* for broadcast and return immediately.

        ``source`` is stamped with our application id; ``hop`` and ``target``
        default to ``1`` and ``*``.
        """
        out = message.copy()
        out.headers = envelope_headers(self.application_id, out.headers)
        self._post(out.to_bytes())

    def send_heartbeat(self) -> None:
        self._post(self._heartbeat_message(HEARTBEAT_SCHEMA).to_bytes())

    def send_termination(self) -> None:
        """Cancel the heartbeat chain and sign off with ``hbeat.end``.

        Sent synchronously so it also works after ``run()`` has returned.
        """
        loop = self._loop
        if loop is not None and loop.is_running() and not _running_in(loop):
            loop.call_soon_threadsafe(self._cancel_timer)
        else:
            self._cancel_timer()
        payload = self._heartbeat_message(HEARTBEAT_END_SCHEMA).to_bytes()
        self._sock.sendto(payload, self.send_endpoint)
        logger.info(f"[Xpl/Service] {self.application_id} signed off")

    def _post(self, payload: bytes) -> None:
        if self._done is not None and self._done.done():
            logger.debug(f"[Xpl/Service] service stopped, dropping {len(payload)} byte(s)")
            return
        loop = self._loop
        if loop is not None and loop.is_running():
            loop.call_soon(self._write, payload)
        else:
            self._pending.append(payload)

    def _write(self, payload: bytes) -> None:
        if self._transport is None or self._transport.is_closing():
            return
        self._transport.sendto(payload, self.send_endpoint)

    def _heartbeat_message(self, schema: str) -> XplMessage:
        return XplMessage(
            message_type=MsgType.STATUS.value,
            message_schema=schema,
            headers=envelope_headers(self.application_id),
            body={
                "interval": str(self.schedule.interval_minutes),
                "port": str(self.local_port),
                "remote-ip": self._announced_ip(),
                "version": self.version_string,
            },
        )

    def _announced_ip(self) -> str:
        address = self.local_address
        if address not in ("0.0.0.0", ""):
            return address
        return _lan_ip(self.send_endpoint[0])

    # -- heartbeat timer -----------------------------------------------------

    def _arm_timer(self, delay: float) -> None:
        assert self._loop is not None
        self._deadline += delay
        self._timer = self._loop.call_at(self._deadline, self._on_heartbeat_timer)

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _on_heartbeat_timer(self) -> None:
        try:
            self._write(self._heartbeat_message(HEARTBEAT_SCHEMA).to_bytes())
            previous = self.schedule.phase
            delay = self.schedule.tick(self._connected)
            if self.schedule.phase is not previous:
                logger.info(
                    f"[Xpl/Service] heartbeat phase {previous.value} -> "
                    f"{self.schedule.phase.value} (every {delay:g}s)"
                )
            self._arm_timer(delay)
        except Exception as exc:
            self._fail(exc)

    # -- receiving -----------------------------------------------------------

    def _on_datagram(self, data: bytes, addr: tuple[str, int]) -> None:
        message = parse_datagram(data)
        if message is None:
            return
        if self._inbox is not None:
            self._inbox.put_nowait(message)

    async def _dispatch_loop(self) -> None:
        assert self._inbox is not None
        while True:
            message = await self._inbox.get()
            try:
                result = self._handle_message(message)
                if inspect.isawaitable(result):
                    await result
            except KeyError as exc:
                logger.debug(f"[Xpl/Service] ignored message missing {exc}")
            except Exception as exc:
                logger.error(
                    f"[Xpl/Service] handler error for "
                    f"{message.message_type}/{message.message_schema}: {exc}"
                )

    def _handle_message(self, message: XplMessage) -> Any:
        """Run hub detection, then invoke the matching handler if addressed to us.

        Returns whatever the handler returns, or ``None`` when the message is
        dropped.
        """
        try:
            if (
                not self._connected
                and message.message_schema == HEARTBEAT_SCHEMA
                and message.headers["source"] == self.application_id
            ):
                self._connected = True
                logger.info(f"[Xpl/Service] own heartbeat echoed: {self.application_id} connected")

            target = message.headers["target"]
            if target != BROADCAST_TARGET and target != self.application_id:
                return None

            handler = self._handlers.get(message.message_type, {}).get(message.message_schema)
            if handler is None:
                logger.debug(
                    f"[Xpl/Service] no handler for "
                    f"{message.message_type}/{message.message_schema}"
                )
                return None
            return handler(message)
        except KeyError as exc:
            logger.debug(f"[Xpl/Service] ignored message missing header {exc}")
            return None


def _running_in(loop: asyncio.AbstractEventLoop) -> bool:
    try:
        return asyncio.get_running_loop() is loop
    except RuntimeError:
        return False


def _lan_ip(remote_address: str) -> str:
    """Best guess at the address peers can reach us on."""
    s = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    try:
        s.setsockopt(socket.SOL_SOCKET, socket.SO_BROADCAST, 1)
        s.connect((remote_address, HUB_PORT))
        return s.getsockname()[0]
    except OSError:
        return "127.0.0.1"
    finally:
        s.close()
