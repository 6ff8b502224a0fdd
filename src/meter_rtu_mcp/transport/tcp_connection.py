"""TCP session carrying Modbus RTU frames.

The meter's gateway forwards raw RTU frames over a plain TCP stream: no
MBAP header, no delimiter. Responses may arrive split across several
reads, and a late answer to an earlier timed-out request may still be
sitting in the receive buffer, so every exchange starts with a drain.
"""

from __future__ import annotations

import asyncio
import logging

from ..config import ClientConfig
from ..protocol.commands import FunctionCode
from ..protocol.errors import ErrorKind, NotConnectedError, TransportError
from ..protocol.framing import (
    HEADER_SIZE,
    FrameState,
    accumulate,
    expected_frame_length,
)

logger = logging.getLogger(__name__)

RECV_BUFFER_SIZE = 256
FLUSH_BUFFER_SIZE = 1024
CLOSE_TIMEOUT = 5.0


class TCPSession:
    """One TCP connection to the meter and its read/write primitives.

    Usage::

        session = TCPSession("10.0.0.5", 1001)
        await session.open()
        frame = await session.exchange(request)
        await session.close()
    """

    def __init__(
        self,
        host: str,
        port: int,
        config: ClientConfig | None = None,
    ) -> None:
        self._host = host
        self._port = port
        self._config = config or ClientConfig()
        self._reader: asyncio.StreamReader | None = None
        self._writer: asyncio.StreamWriter | None = None

    @property
    def host(self) -> str:
        return self._host

    @property
    def port(self) -> int:
        return self._port

    @property
    def connected(self) -> bool:
        return self._writer is not None and not self._writer.is_closing()

    async def open(self) -> None:
        """Connect to ``host:port`` within the configured connect timeout.

        Raises:
            TransportError: ``CONNECT_TIMEOUT`` or ``SOCKET_FAILURE``.
        """
        if self._writer is not None:
            await self.close()

        try:
            self._reader, self._writer = await asyncio.wait_for(
                asyncio.open_connection(self._host, self._port),
                timeout=self._config.connect_timeout,
            )
        except asyncio.TimeoutError as err:
            await self.close()
            raise TransportError(
                ErrorKind.CONNECT_TIMEOUT,
                f"Timeout connecting to {self._host}:{self._port}",
            ) from err
        except OSError as err:
            await self.close()
            raise TransportError(
                ErrorKind.SOCKET_FAILURE,
                f"Failed to connect to {self._host}:{self._port}: {err}",
            ) from err

        logger.info("TCP session open to %s:%s", self._host, self._port)

    async def close(self) -> None:
        """Close the connection. Safe to call when already closed."""
        writer = self._writer
        self._reader = None
        self._writer = None
        if writer is None:
            return

        try:
            writer.close()
            await asyncio.wait_for(writer.wait_closed(), timeout=CLOSE_TIMEOUT)
        except asyncio.TimeoutError:
            logger.warning(
                "Timeout waiting for close of %s:%s", self._host, self._port
            )
        except Exception as e:
            logger.warning("Error closing session to %s:%s: %s", self._host, self._port, e)
        else:
            logger.info("TCP session to %s:%s closed", self._host, self._port)

    def _streams(self) -> tuple[asyncio.StreamReader, asyncio.StreamWriter]:
        if self._reader is None or self._writer is None:
            raise NotConnectedError("TCP session is not open")
        return self._reader, self._writer

    async def flush_stale_input(self) -> int:
        """Discard bytes left over from a previous exchange.

        Drains until a read finds nothing within ``flush_delay``, so every
        exchange waits at least one ``flush_delay`` even when nothing is
        buffered.

        Returns:
            Number of bytes discarded.

        Raises:
            TransportError: ``SOCKET_FAILURE`` if the peer closed the stream.
        """
        reader, _ = self._streams()
        discarded = 0
        while True:
            try:
                junk = await asyncio.wait_for(
                    reader.read(FLUSH_BUFFER_SIZE),
                    timeout=self._config.flush_delay,
                )
            except asyncio.TimeoutError:
                break
            except OSError as err:
                raise TransportError(
                    ErrorKind.SOCKET_FAILURE, f"Read failed while flushing: {err}"
                ) from err
            if not junk:
                raise TransportError(
                    ErrorKind.SOCKET_FAILURE, "Connection closed by device"
                )
            discarded += len(junk)
            logger.debug("Discarded %d stale bytes: %s", len(junk), junk.hex(" "))
        return discarded

    async def write(self, data: bytes) -> None:
        """Send a complete request frame."""
        _, writer = self._streams()
        logger.debug("TX: %s", data.hex(" "))
        try:
            writer.write(data)
            await writer.drain()
        except OSError as err:
            raise TransportError(ErrorKind.SOCKET_FAILURE, f"Write failed: {err}") from err

    async def read_frame(
        self,
        expected_function: int = FunctionCode.READ_HOLDING_REGISTERS,
        timeout: float | None = None,
    ) -> bytes:
        """Read until one response frame is complete or ``timeout`` expires.

        On timeout the bytes collected so far are returned, possibly none;
        validation reports them as missing or too short.

        Raises:
            TransportError: ``SOCKET_FAILURE`` if the read fails or the peer
                closes the stream.
        """
        reader, _ = self._streams()
        if timeout is None:
            timeout = self._config.exchange_timeout

        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        buffer = bytearray()

        while True:
            remaining = deadline - loop.time()
            if remaining <= 0:
                logger.debug("Read timed out with %d bytes: %s", len(buffer), buffer.hex(" "))
                return bytes(buffer)

            # Never read past the current frame; later bytes are left for the
            # next flush.
            expected = expected_frame_length(buffer, expected_function)
            if expected is not None:
                wanted = expected - len(buffer)
            elif len(buffer) < HEADER_SIZE:
                wanted = HEADER_SIZE - len(buffer)
            else:
                wanted = RECV_BUFFER_SIZE

            try:
                chunk = await asyncio.wait_for(reader.read(wanted), timeout=remaining)
            except asyncio.TimeoutError:
                continue
            except OSError as err:
                raise TransportError(ErrorKind.SOCKET_FAILURE, f"Read failed: {err}") from err

            if not chunk:
                raise TransportError(
                    ErrorKind.SOCKET_FAILURE, "Connection closed by device"
                )

            if accumulate(buffer, chunk, expected_function) is FrameState.COMPLETE:
                logger.debug("RX: %s", buffer.hex(" "))
                return bytes(buffer)

            await asyncio.sleep(self._config.poll_interval)

    async def exchange(
        self,
        request: bytes,
        expected_function: int = FunctionCode.READ_HOLDING_REGISTERS,
        timeout: float | None = None,
    ) -> bytes:
        """Flush stale input, send ``request`` and read the response frame."""
        await self.flush_stale_input()
        await self.write(request)
        return await self.read_frame(expected_function, timeout)
