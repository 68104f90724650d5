# Copyright (c) 2021 Jeff Irion and contributors
#
# This file is part of the adb-host package.

"""Implement the :class:`AdbHostConnection` class, which speaks the ADB host protocol over one connection.

A host command is framed as ``<4 lowercase hex digits: payload length><payload>`` and is answered with a 4-byte
status, either ``b'OKAY'`` or ``b'FAIL'`` followed by a hex-length-prefixed reason.  After ``sync:`` has been
accepted the connection carries the sync protocol instead; see :class:`~adb_host.sync_session.AdbSyncSession`.

.. rubric:: Contents

* :class:`AdbHostConnection`

    * :meth:`AdbHostConnection._read_exactly`
    * :meth:`AdbHostConnection._write`
    * :attr:`AdbHostConnection.available`
    * :meth:`AdbHostConnection.close`
    * :meth:`AdbHostConnection.connect`
    * :meth:`AdbHostConnection.read_all`
    * :meth:`AdbHostConnection.read_hex_prefixed`
    * :meth:`AdbHostConnection.read_lines`
    * :meth:`AdbHostConnection.send`
    * :meth:`AdbHostConnection.sync`
    * :meth:`AdbHostConnection.verify_response`

"""


import logging

from . import constants
from . import exceptions
from .hidden_helpers import DECODE_ERRORS, hex_length
from .sync_session import AdbSyncSession
from .transport.base_transport import BaseTransport


_LOGGER = logging.getLogger(__name__)


class AdbHostConnection(object):
    """One connection to the ADB server.

    A connection carries at most one request at a time and is never shared between threads.  It is created for a
    single logical operation and closed when that operation completes or fails.

    Parameters
    ----------
    transport : BaseTransport
        A transport for communicating with the ADB server; must be an instance of a subclass of :class:`~adb_host.transport.base_transport.BaseTransport`
    transport_timeout_s : float, None
        Timeout in seconds for every read and write, or ``None`` to block

    Raises
    ------
    adb_host.exceptions.InvalidTransportError
        The passed ``transport`` is not an instance of a subclass of :class:`~adb_host.transport.base_transport.BaseTransport`

    Attributes
    ----------
    _available : bool
        Whether the transport is connected
    _transport : BaseTransport
        The transport that is used to talk to the ADB server
    _transport_timeout_s : float, None
        Timeout in seconds for every read and write, or ``None`` to block

    """
    def __init__(self, transport, transport_timeout_s=constants.DEFAULT_TRANSPORT_TIMEOUT_S):
        if not isinstance(transport, BaseTransport):
            raise exceptions.InvalidTransportError("`transport` must be an instance of a subclass of `BaseTransport`")

        self._transport = transport
        self._transport_timeout_s = transport_timeout_s
        self._available = False

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_value, traceback):
        self.close()

    @property
    def available(self):
        """Whether or not the connection is open.

        Returns
        -------
        bool
            ``self._available``

        """
        return self._available

    def close(self):
        """Close the connection; calling this more than once is harmless.

        """
        if self._available:
            _LOGGER.debug("Closing connection via %r", self._transport)

        self._available = False
        self._transport.close()

    def connect(self):
        """Open the transport.  No protocol exchange takes place yet.

        Raises
        ------
        adb_host.exceptions.AdbConnectionError
            The ADB server could not be reached

        """
        try:
            self._transport.connect(self._transport_timeout_s)
        except (OSError, exceptions.TcpTimeoutException) as exc:
            self._transport.close()
            raise exceptions.AdbConnectionError('Unable to connect to the ADB server via {!r}: {}'.format(self._transport, exc)) from exc

        _LOGGER.debug("Connected via %r", self._transport)
        self._available = True

    # ======================================================================= #
    #                                                                         #
    #                              Host commands                              #
    #                                                                         #
    # ======================================================================= #
    def send(self, command):
        """Send one host command.

        Parameters
        ----------
        command : str, bytes
            The command, e.g. ``'host:version'`` or ``'shell:ls'``

        Raises
        ------
        adb_host.exceptions.InvalidCommandError
            The command is longer than :const:`adb_host.constants.MAX_COMMAND_LENGTH` bytes

        """
        if not isinstance(command, bytes):
            command = command.encode('utf-8')

        if len(command) > constants.MAX_COMMAND_LENGTH:
            raise exceptions.InvalidCommandError('Command is {} bytes long; the maximum is {}'.format(len(command), constants.MAX_COMMAND_LENGTH))

        self._write(hex_length(command))

    def verify_response(self):
        """Read the 4-byte status that answers a host command.

        Raises
        ------
        adb_host.exceptions.AdbCommandFailureException
            The server replied ``b'FAIL'``; the exception message is the server's reason
        adb_host.exceptions.InvalidResponseError
            The status is neither ``b'OKAY'`` nor ``b'FAIL'``

        """
        status = self._read_exactly(4)
        if status == constants.OKAY:
            return

        if status == constants.FAIL:
            reason = self.read_hex_prefixed().decode('utf-8', DECODE_ERRORS)
            _LOGGER.debug("Command failed: %s", reason)
            raise exceptions.AdbCommandFailureException(reason)

        raise exceptions.InvalidResponseError('Expected one of {}, got {!r}'.format(constants.HOST_IDS, status))

    def read_hex_prefixed(self):
        """Read a payload that is prefixed by its length as 4 hex digits.

        Returns
        -------
        bytes
            The payload

        Raises
        ------
        adb_host.exceptions.InvalidResponseError
            The length is not a hex number

        """
        length = self._read_exactly(4)
        try:
            size = int(length, 16)
        except ValueError:
            raise exceptions.InvalidResponseError('Invalid length {!r}'.format(length)) from None

        return self._read_exactly(size)

    def read_all(self):
        """Read until the ADB server closes the connection.

        Returns
        -------
        bytes
            Everything that was received

        """
        chunks = []
        while True:
            data = self._transport.bulk_read(constants.MAX_READ_SIZE, self._transport_timeout_s)
            if not data:
                break

            chunks.append(data)

        return b''.join(chunks)

    def read_lines(self, decode=True):
        """Yield the output line by line until the ADB server closes the connection.

        Each iteration blocks until a complete line has arrived.  Closing the connection from another thread ends
        the iteration.

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
            data = self._transport.bulk_read(constants.MAX_READ_SIZE, self._transport_timeout_s)
            if not data:
                break

            buffer += data
            *lines, buffer = buffer.split(b'\n')
            for line in lines:
                line = line[:-1] if line.endswith(b'\r') else line
                yield line.decode('utf-8', DECODE_ERRORS) if decode else line

        if buffer:
            yield buffer.decode('utf-8', DECODE_ERRORS) if decode else buffer

    def sync(self, max_chunk_size=constants.MAX_SYNC_DATA):
        """Switch this connection to the sync protocol.

        Parameters
        ----------
        max_chunk_size : int
            The maximum payload of a ``b'DATA'`` frame that the session sends

        Returns
        -------
        AdbSyncSession
            The sync session; the connection must not be used for host commands afterwards

        """
        self.send(b'sync:')
        self.verify_response()

        return AdbSyncSession(self, max_chunk_size)

    # ======================================================================= #
    #                                                                         #
    #                                 Raw I/O                                 #
    #                                                                         #
    # ======================================================================= #
    def _read_exactly(self, size):
        """Read exactly ``size`` bytes.

        Parameters
        ----------
        size : int
            The number of bytes to read

        Returns
        -------
        bytes
            The data

        Raises
        ------
        adb_host.exceptions.AdbTransferError
            The connection was closed before ``size`` bytes arrived

        """
        data = bytearray()
        while len(data) < size:
            chunk = self._transport.bulk_read(size - len(data), self._transport_timeout_s)
            if not chunk:
                raise exceptions.AdbTransferError('Connection closed after {} of {} bytes'.format(len(data), size))

            data += chunk

        _LOGGER.debug("bulk_read(%d): %.1000r", size, data)
        return bytes(data)

    def _write(self, data):
        """Write all of ``data``.

        Parameters
        ----------
        data : bytes
            The data to be sent

        """
        _LOGGER.debug("bulk_write: %.1000r", data)

        while data:
            sent = self._transport.bulk_write(data, self._transport_timeout_s)
            data = data[sent:]
