# Copyright (c) 2021 Jeff Irion and contributors
#
# This file is part of the adb-host package.

"""Implement the :class:`AdbSyncSessionAsync` class, which speaks the ADB sync protocol.

See :mod:`adb_host.sync_session` for the wire format.

* :class:`AdbSyncSessionAsync`

    * :meth:`AdbSyncSessionAsync.close`
    * :meth:`AdbSyncSessionAsync.iter_directory`
    * :meth:`AdbSyncSessionAsync.read_directory_entry`
    * :meth:`AdbSyncSessionAsync.send`
    * :meth:`AdbSyncSessionAsync.send_status`
    * :meth:`AdbSyncSessionAsync.send_stream`
    * :meth:`AdbSyncSessionAsync.stat`
    * :meth:`AdbSyncSessionAsync.verify_status`
    * :meth:`AdbSyncSessionAsync.write_stream`

"""


import inspect
import logging
import struct

from . import constants
from . import exceptions
from .hidden_helpers import DECODE_ERRORS, DeviceFile
from .sync_session import check_chunk_size


_LOGGER = logging.getLogger(__name__)

_SYNC_HEADER_SIZE = struct.calcsize(constants.SYNC_HEADER_FORMAT)
_SYNC_DENT_SIZE = struct.calcsize(constants.SYNC_DENT_FORMAT)
_SYNC_STAT_SIZE = struct.calcsize(constants.SYNC_STAT_FORMAT)


async def _maybe_await(value):
    """Await ``value`` if it is awaitable, so that both ``aiofiles`` streams and ``BytesIO`` can be used."""
    if inspect.isawaitable(value):
        return await value
    return value


class AdbSyncSessionAsync(object):
    """A connection that has been switched to the sync protocol.

    Parameters
    ----------
    connection : adb_host.host_connection_async.AdbHostConnectionAsync
        The connection on which ``sync:`` has been accepted
    max_chunk_size : int
        The maximum payload of a ``b'DATA'`` frame that is sent

    """
    def __init__(self, connection, max_chunk_size=constants.MAX_SYNC_DATA):
        self._connection = connection
        self._max_chunk_size = check_chunk_size(max_chunk_size)
        self._listing_done = False

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_value, traceback):
        self.close()

    @property
    def max_chunk_size(self):
        """The maximum payload of a ``b'DATA'`` frame that is sent."""
        return self._max_chunk_size

    def close(self):
        """Detach the session from its connection.

        """
        self._connection = None

    def _check_open(self):
        if self._connection is None:
            raise exceptions.AdbConnectionError('The sync session has been closed')

        return self._connection

    async def send(self, command_id, data=b''):
        """Send one sync message.

        Parameters
        ----------
        command_id : bytes
            One of :const:`adb_host.constants.SYNC_IDS`
        data : str, bytes
            The payload

        """
        if command_id not in constants.SYNC_IDS:
            raise exceptions.InvalidCommandError("Unknown sync command: {!r}".format(command_id))

        connection = self._check_open()
        if not isinstance(data, bytes):
            data = data.encode('utf-8')

        await connection._write(struct.pack(constants.SYNC_HEADER_FORMAT, command_id, len(data)) + data)  # pylint: disable=protected-access

    async def send_status(self, command_id, value):
        """Send a sync message whose length field carries ``value``."""
        connection = self._check_open()
        await connection._write(struct.pack(constants.SYNC_HEADER_FORMAT, command_id, value & 0xFFFFFFFF))  # pylint: disable=protected-access

    async def send_stream(self, stream, progress_callback=None):
        """Send the contents of ``stream`` as ``b'DATA'`` frames.

        Parameters
        ----------
        stream : aiofiles.threadpool.binary.AsyncBufferedReader, io.BufferedIOBase
            A binary stream; its ``read`` may be a coroutine
        progress_callback : function, None
            Called with the number of bytes in each chunk after it has been sent

        """
        self._check_open()

        while True:
            data = await _maybe_await(stream.read(self._max_chunk_size))
            if not data:
                break

            await self.send(constants.DATA, data)
            if progress_callback:
                progress_callback(len(data))

    async def read_directory_entry(self):
        """Read one entry of a listing started with ``b'LIST'``.

        Returns
        -------
        DeviceFile, None
            The entry, or ``None`` once the listing has ended

        """
        connection = self._check_open()
        if self._listing_done:
            return None

        command_id, mode = struct.unpack(constants.SYNC_HEADER_FORMAT, await connection._read_exactly(_SYNC_HEADER_SIZE))  # pylint: disable=protected-access

        if command_id == constants.FAIL:
            raise await self._read_failure(mode)

        if command_id not in (constants.DENT, constants.DONE):
            raise exceptions.InvalidResponseError('Expected one of {}, got {!r}'.format((constants.DENT, constants.DONE), command_id))

        size, mtime, namelen = struct.unpack(constants.SYNC_DENT_FORMAT, await connection._read_exactly(_SYNC_DENT_SIZE))  # pylint: disable=protected-access

        if command_id == constants.DONE:
            self._listing_done = True
            return None

        filename = (await connection._read_exactly(namelen)).decode('utf-8', DECODE_ERRORS)  # pylint: disable=protected-access
        return DeviceFile(filename, mode, size, mtime)

    async def iter_directory(self):
        """Yield directory entries until the end of the listing.

        Yields
        ------
        DeviceFile
            The entries, in the order in which the device sent them

        """
        while True:
            entry = await self.read_directory_entry()
            if entry is None:
                break

            yield entry

    async def verify_status(self):
        """Read the ``b'OKAY'`` or ``b'FAIL'`` that answers a completed push.

        """
        connection = self._check_open()
        command_id, size = struct.unpack(constants.SYNC_HEADER_FORMAT, await connection._read_exactly(_SYNC_HEADER_SIZE))  # pylint: disable=protected-access

        if command_id == constants.OKAY:
            await connection._read_exactly(size)  # pylint: disable=protected-access
            return

        if command_id == constants.FAIL:
            raise await self._read_failure(size)

        raise exceptions.InvalidResponseError('Expected one of {}, got {!r}'.format((constants.OKAY, constants.FAIL), command_id))

    async def write_stream(self, stream, progress_callback=None):
        """Write the ``b'DATA'`` payloads sent in reply to ``b'RECV'`` to ``stream`` until ``b'DONE'`` arrives.

        Parameters
        ----------
        stream : aiofiles.threadpool.binary.AsyncBufferedIOBase, io.BufferedIOBase
            A writable binary stream; its ``write`` may be a coroutine
        progress_callback : function, None
            Called with the number of bytes in each chunk after it has been written

        """
        connection = self._check_open()

        while True:
            command_id, size = struct.unpack(constants.SYNC_HEADER_FORMAT, await connection._read_exactly(_SYNC_HEADER_SIZE))  # pylint: disable=protected-access

            if command_id == constants.DONE:
                return

            if command_id == constants.FAIL:
                raise await self._read_failure(size)

            if command_id != constants.DATA:
                raise exceptions.InvalidResponseError('Expected one of {}, got {!r}'.format((constants.DATA, constants.DONE), command_id))

            if size > constants.MAX_SYNC_DATA:
                raise exceptions.InvalidResponseError('DATA frame of {} bytes exceeds the maximum of {}'.format(size, constants.MAX_SYNC_DATA))

            data = await connection._read_exactly(size)  # pylint: disable=protected-access
            await _maybe_await(stream.write(data))
            if progress_callback:
                progress_callback(len(data))

    async def stat(self, device_path):
        """Get a file's ``stat()`` information as ``(mode, size, mtime)``."""
        await self.send(constants.STAT, device_path)

        connection = self._check_open()
        command_id, mode, size, mtime = struct.unpack(constants.SYNC_STAT_FORMAT, await connection._read_exactly(_SYNC_STAT_SIZE))  # pylint: disable=protected-access

        if command_id != constants.STAT:
            raise exceptions.InvalidResponseError('Expected {!r}, got {!r}'.format(constants.STAT, command_id))

        return mode, size, mtime

    async def _read_failure(self, size):
        message = await self._connection._read_exactly(size)  # pylint: disable=protected-access
        reason = message.decode('utf-8', DECODE_ERRORS)
        _LOGGER.debug("Sync command failed: %s", reason)
        return exceptions.AdbCommandFailureException(reason)
