# Copyright (c) 2021 Jeff Irion and contributors
#
# This file is part of the adb-host package.

"""Implement the :class:`AdbHostConnectionAsync` class, which speaks the ADB host protocol over one connection.

* :class:`AdbHostConnectionAsync`

    * :meth:`AdbHostConnectionAsync._read_exactly`
    * :meth:`AdbHostConnectionAsync._write`
    * :attr:`AdbHostConnectionAsync.available`
    * :meth:`AdbHostConnectionAsync.close`
    * :meth:`AdbHostConnectionAsync.connect`
    * :meth:`AdbHostConnectionAsync.read_all`
    * :meth:`AdbHostConnectionAsync.read_hex_prefixed`
    * :meth:`AdbHostConnectionAsync.read_lines`
    * :meth:`AdbHostConnectionAsync.send`
    * :meth:`AdbHostConnectionAsync.sync`
    * :meth:`AdbHostConnectionAsync.verify_response`

"""


import logging

from . import constants
from . import exceptions
from .hidden_helpers import DECODE_ERRORS, hex_length
from .sync_session_async import AdbSyncSessionAsync
from .transport.base_transport_async import BaseTransportAsync


_LOGGER = logging.getLogger(__name__)


class AdbHostConnectionAsync(object):
    """One connection to the ADB server.

    Reads and writes on a connection are awaited one at a time; a connection is never shared between tasks.

    Parameters
    ----------
    transport : BaseTransportAsync
        A transport for communicating with the ADB server; must be an instance of a subclass of :class:`~adb_host.transport.base_transport_async.BaseTransportAsync`
    transport_timeout_s : float, None
        Timeout in seconds for every read and write, or ``None`` to wait indefinitely

    Raises
    ------
    adb_host.exceptions.InvalidTransportError
        The passed ``transport`` is not an instance of a subclass of :class:`~adb_host.transport.base_transport_async.BaseTransportAsync`

    Attributes
    ----------
    _available : bool
        Whether the transport is connected
    _transport : BaseTransportAsync
        The transport that is used to talk to the ADB server
    _transport_timeout_s : float, None
        Timeout in seconds for every read and write

    """
    def __init__(self, transport, transport_timeout_s=constants.DEFAULT_TRANSPORT_TIMEOUT_S):
        if not isinstance(transport, BaseTransportAsync):
            raise exceptions.InvalidTransportError("`transport` must be an instance of a subclass of `BaseTransportAsync`")

        self._transport = transport
        self._transport_timeout_s = transport_timeout_s
        self._available = False

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_value, traceback):
        await self.close()

    @property
    def available(self):
        """Whether or not the connection is open."""
        return self._available

    async def close(self):
        """Close the connection; calling this more than once is harmless.

        """
        if self._available:
            _LOGGER.debug("Closing connection via %r", self._transport)

        self._available = False
        await self._transport.close()

    async def connect(self):
        """Open the transport.

        Raises
        ------
        adb_host.exceptions.AdbConnectionError
            The ADB server could not be reached

        """
        try:
            await self._transport.connect(self._transport_timeout_s)
        except (OSError, exceptions.TcpTimeoutException) as exc:
            await self._transport.close()
            raise exceptions.AdbConnectionError('Unable to connect to the ADB server via {!r}: {}'.format(self._transport, exc)) from exc

        _LOGGER.debug("Connected via %r", self._transport)
        self._available = True

    async def send(self, command):
        """Send one host command.

        Parameters
        ----------
        command : str, bytes
            The command, e.g. ``'host:version'``

        Raises
        ------
        adb_host.exceptions.InvalidCommandError
            The command is longer than :const:`adb_host.constants.MAX_COMMAND_LENGTH` bytes

        """
        if not isinstance(command, bytes):
            command = command.encode('utf-8')

        if len(command) > constants.MAX_COMMAND_LENGTH:
            raise exceptions.InvalidCommandError('Command is {} bytes long; the maximum is {}'.format(len(command), constants.MAX_COMMAND_LENGTH))

        await self._write(hex_length(command))

    async def verify_response(self):
        """Read the 4-byte status that answers a host command.

        Raises
        ------
        adb_host.exceptions.AdbCommandFailureException
            The server replied ``b'FAIL'``
        adb_host.exceptions.InvalidResponseError
            The status is neither ``b'OKAY'`` nor ``b'FAIL'``

        """
        status = await self._read_exactly(4)
        if status == constants.OKAY:
            return

        if status == constants.FAIL:
            reason = (await self.read_hex_prefixed()).decode('utf-8', DECODE_ERRORS)
            _LOGGER.debug("Command failed: %s", reason)
            raise exceptions.AdbCommandFailureException(reason)

        raise exceptions.InvalidResponseError('Expected one of {}, got {!r}'.format(constants.HOST_IDS, status))

    async def read_hex_prefixed(self):
        """Read a payload that is prefixed by its length as 4 hex digits.

        Returns
        -------
        bytes
            The payload

        """
        length = await self._read_exactly(4)
        try:
            size = int(length, 16)
        except ValueError:
            raise exceptions.InvalidResponseError('Invalid length {!r}'.format(length)) from None

        return await self._read_exactly(size)

    async def read_all(self):
        """Read until the ADB server closes the connection.

        Returns
        -------
        bytes
            Everything that was received

        """
        chunks = []
        while True:
            data = await self._transport.bulk_read(constants.MAX_READ_SIZE, self._transport_timeout_s)
            if not data:
                break

            chunks.append(data)

        return b''.join(chunks)

    async def read_lines(self, decode=True):
        """Yield the output line by line until the ADB server closes the connection.

        Parameters
        ----------
        decode : bool
            Whether to decode each line to ``str``

        Yields
        ------
        str, bytes
            One line, without its line terminator

        """
        buffer = b''
        while True:
            data = await self._transport.bulk_read(constants.MAX_READ_SIZE, self._transport_timeout_s)
            if not data:
                break

            buffer += data
            *lines, buffer = buffer.split(b'\n')
            for line in lines:
                line = line[:-1] if line.endswith(b'\r') else line
                yield line.decode('utf-8', DECODE_ERRORS) if decode else line

        if buffer:
            yield buffer.decode('utf-8', DECODE_ERRORS) if decode else buffer

    async def sync(self, max_chunk_size=constants.MAX_SYNC_DATA):
        """Switch this connection to the sync protocol.

        Parameters
        ----------
        max_chunk_size : int
            The maximum payload of a ``b'DATA'`` frame that the session sends

        Returns
        -------
        AdbSyncSessionAsync
            The sync session; the connection must not be used for host commands afterwards

        """
        await self.send(b'sync:')
        await self.verify_response()

        return AdbSyncSessionAsync(self, max_chunk_size)

    async def _read_exactly(self, size):
        """Read exactly ``size`` bytes.

        Raises
        ------
        adb_host.exceptions.AdbTransferError
            The connection was closed before ``size`` bytes arrived

        """
        data = bytearray()
        while len(data) < size:
            chunk = await self._transport.bulk_read(size - len(data), self._transport_timeout_s)
            if not chunk:
                raise exceptions.AdbTransferError('Connection closed after {} of {} bytes'.format(len(data), size))

            data += chunk

        _LOGGER.debug("bulk_read(%d): %.1000r", size, data)
        return bytes(data)

    async def _write(self, data):
        """Write all of ``data``."""
        _LOGGER.debug("bulk_write: %.1000r", data)

        while data:
            sent = await self._transport.bulk_write(data, self._transport_timeout_s)
            data = data[sent:]
