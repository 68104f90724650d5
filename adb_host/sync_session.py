# Copyright (c) 2021 Jeff Irion and contributors
#
# This file is part of the adb-host package.

"""Implement the :class:`AdbSyncSession` class, which speaks the ADB sync protocol.

Every sync message is ``<4-byte id><4-byte little-endian length><payload>``.  During a listing the ``b'DENT'`` and
``b'DONE'`` replies instead carry four little-endian words (mode, size, mtime, name length) followed by the name, and
a ``b'STAT'`` reply carries three words (mode, size, mtime).

.. rubric:: Contents

* :class:`AdbSyncSession`

    * :meth:`AdbSyncSession._check_open`
    * :meth:`AdbSyncSession._read_failure`
    * :meth:`AdbSyncSession.close`
    * :meth:`AdbSyncSession.iter_directory`
    * :attr:`AdbSyncSession.max_chunk_size`
    * :meth:`AdbSyncSession.read_directory_entry`
    * :meth:`AdbSyncSession.send`
    * :meth:`AdbSyncSession.send_status`
    * :meth:`AdbSyncSession.send_stream`
    * :meth:`AdbSyncSession.stat`
    * :meth:`AdbSyncSession.verify_status`
    * :meth:`AdbSyncSession.write_stream`

"""


import logging
import struct

from . import constants
from . import exceptions
from .hidden_helpers import DECODE_ERRORS, DeviceFile


_LOGGER = logging.getLogger(__name__)

_SYNC_HEADER_SIZE = struct.calcsize(constants.SYNC_HEADER_FORMAT)
_SYNC_DENT_SIZE = struct.calcsize(constants.SYNC_DENT_FORMAT)
_SYNC_STAT_SIZE = struct.calcsize(constants.SYNC_STAT_FORMAT)


def check_chunk_size(max_chunk_size):
    """Make sure that ``max_chunk_size`` fits in a sync ``b'DATA'`` frame.

    Parameters
    ----------
    max_chunk_size : int
        The requested chunk size

    Returns
    -------
    int
        ``max_chunk_size``

    Raises
    ------
    ValueError
        ``max_chunk_size`` is not in ``[1, constants.MAX_SYNC_DATA]``

    """
    if not 0 < max_chunk_size <= constants.MAX_SYNC_DATA:
        raise ValueError('`max_chunk_size` must be between 1 and {}, not {}'.format(constants.MAX_SYNC_DATA, max_chunk_size))

    return max_chunk_size


class AdbSyncSession(object):
    """A connection that has been switched to the sync protocol.

    Obtain one via :meth:`adb_host.host_connection.AdbHostConnection.sync`.  Closing the session does not close the
    underlying connection; that is up to whoever opened it.

    Parameters
    ----------
    connection : adb_host.host_connection.AdbHostConnection
        The connection on which ``sync:`` has been accepted
    max_chunk_size : int
        The maximum payload of a ``b'DATA'`` frame that is sent

    Attributes
    ----------
    _connection : adb_host.host_connection.AdbHostConnection, None
        The underlying connection, or ``None`` once the session is closed
    _listing_done : bool
        Whether the ``b'DONE'`` that ends a listing has been received
    _max_chunk_size : int
        The maximum payload of a ``b'DATA'`` frame that is sent

    """
    def __init__(self, connection, max_chunk_size=constants.MAX_SYNC_DATA):
        self._connection = connection
        self._max_chunk_size = check_chunk_size(max_chunk_size)
        self._listing_done = False

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_value, traceback):
        self.close()

    @property
    def max_chunk_size(self):
        """The maximum payload of a ``b'DATA'`` frame that is sent.

        Returns
        -------
        int
            ``self._max_chunk_size``

        """
        return self._max_chunk_size

    @max_chunk_size.setter
    def max_chunk_size(self, value):
        self._max_chunk_size = check_chunk_size(value)

    def close(self):
        """Detach the session from its connection.

        """
        self._connection = None

    def _check_open(self):
        if self._connection is None:
            raise exceptions.AdbConnectionError('The sync session has been closed')

        return self._connection

    # ======================================================================= #
    #                                                                         #
    #                                 Sending                                 #
    #                                                                         #
    # ======================================================================= #
    def send(self, command_id, data=b''):
        """Send one sync message.

        Parameters
        ----------
        command_id : bytes
            One of :const:`adb_host.constants.SYNC_IDS`, e.g. ``b'LIST'``
        data : str, bytes
            The payload; a device path for ``b'LIST'``, ``b'RECV'`` and ``b'STAT'``, or ``'<path>,<mode>'`` for ``b'SEND'``

        Raises
        ------
        adb_host.exceptions.InvalidCommandError
            ``command_id`` is not a sync id

        """
        if command_id not in constants.SYNC_IDS:
            raise exceptions.InvalidCommandError("Unknown sync command: {!r}".format(command_id))

        connection = self._check_open()
        if not isinstance(data, bytes):
            data = data.encode('utf-8')

        connection._write(struct.pack(constants.SYNC_HEADER_FORMAT, command_id, len(data)) + data)  # pylint: disable=protected-access

    def send_status(self, command_id, value):
        """Send a sync message whose length field carries ``value`` and which has no payload.

        Parameters
        ----------
        command_id : bytes
            Usually ``b'DONE'``
        value : int
            For ``b'DONE'``, the modification time in seconds since the epoch

        """
        connection = self._check_open()
        connection._write(struct.pack(constants.SYNC_HEADER_FORMAT, command_id, value & 0xFFFFFFFF))  # pylint: disable=protected-access

    def send_stream(self, stream, progress_callback=None):
        """Send the contents of ``stream`` as ``b'DATA'`` frames of at most :attr:`max_chunk_size` bytes.

        Parameters
        ----------
        stream : io.BufferedIOBase
            A binary stream that is read until it is exhausted
        progress_callback : function, None
            Called with the number of bytes in each chunk after it has been sent

        """
        self._check_open()

        while True:
            data = stream.read(self._max_chunk_size)
            if not data:
                break

            self.send(constants.DATA, data)
            if progress_callback:
                progress_callback(len(data))

    # ======================================================================= #
    #                                                                         #
    #                                Receiving                                #
    #                                                                         #
    # ======================================================================= #
    def read_directory_entry(self):
        """Read one entry of a listing started with ``b'LIST'``.

        Returns
        -------
        DeviceFile, None
            The entry, or ``None`` once the listing has ended; every later call returns ``None`` as well

        Raises
        ------
        adb_host.exceptions.AdbCommandFailureException
            The device replied ``b'FAIL'``
        adb_host.exceptions.InvalidResponseError
            The reply is neither ``b'DENT'`` nor ``b'DONE'``

        """
        connection = self._check_open()
        if self._listing_done:
            return None

        command_id, mode = struct.unpack(constants.SYNC_HEADER_FORMAT, connection._read_exactly(_SYNC_HEADER_SIZE))  # pylint: disable=protected-access

        if command_id == constants.FAIL:
            # The second word of a `FAIL` header is the message length
            raise self._read_failure(mode)

        if command_id not in (constants.DENT, constants.DONE):
            raise exceptions.InvalidResponseError('Expected one of {}, got {!r}'.format((constants.DENT, constants.DONE), command_id))

        size, mtime, namelen = struct.unpack(constants.SYNC_DENT_FORMAT, connection._read_exactly(_SYNC_DENT_SIZE))  # pylint: disable=protected-access

        if command_id == constants.DONE:
            self._listing_done = True
            return None

        filename = connection._read_exactly(namelen).decode('utf-8', DECODE_ERRORS)  # pylint: disable=protected-access
        return DeviceFile(filename, mode, size, mtime)

    def iter_directory(self):
        """Yield directory entries until the end of the listing.

        Yields
        ------
        DeviceFile
            The entries, in the order in which the device sent them

        """
        while True:
            entry = self.read_directory_entry()
            if entry is None:
                break

            yield entry

    def verify_status(self):
        """Read the ``b'OKAY'`` or ``b'FAIL'`` that answers a completed push.

        Raises
        ------
        adb_host.exceptions.AdbCommandFailureException
            The device replied ``b'FAIL'``
        adb_host.exceptions.InvalidResponseError
            The reply is neither ``b'OKAY'`` nor ``b'FAIL'``

        """
        connection = self._check_open()
        command_id, size = struct.unpack(constants.SYNC_HEADER_FORMAT, connection._read_exactly(_SYNC_HEADER_SIZE))  # pylint: disable=protected-access

        if command_id == constants.OKAY:
            connection._read_exactly(size)  # pylint: disable=protected-access
            return

        if command_id == constants.FAIL:
            raise self._read_failure(size)

        raise exceptions.InvalidResponseError('Expected one of {}, got {!r}'.format((constants.OKAY, constants.FAIL), command_id))

    def write_stream(self, stream, progress_callback=None):
        """Write the ``b'DATA'`` payloads sent in reply to ``b'RECV'`` to ``stream`` until ``b'DONE'`` arrives.

        Parameters
        ----------
        stream : io.BufferedIOBase
            A writable binary stream
        progress_callback : function, None
            Called with the number of bytes in each chunk after it has been written

        Raises
        ------
        adb_host.exceptions.AdbCommandFailureException
            The device replied ``b'FAIL'``
        adb_host.exceptions.AdbTransferError
            The connection was closed before ``b'DONE'`` arrived
        adb_host.exceptions.InvalidResponseError
            Got something other than ``b'DATA'``, ``b'DONE'`` or ``b'FAIL'``

        """
        connection = self._check_open()

        while True:
            command_id, size = struct.unpack(constants.SYNC_HEADER_FORMAT, connection._read_exactly(_SYNC_HEADER_SIZE))  # pylint: disable=protected-access

            if command_id == constants.DONE:
                return

            if command_id == constants.FAIL:
                raise self._read_failure(size)

            if command_id != constants.DATA:
                raise exceptions.InvalidResponseError('Expected one of {}, got {!r}'.format((constants.DATA, constants.DONE), command_id))

            if size > constants.MAX_SYNC_DATA:
                raise exceptions.InvalidResponseError('DATA frame of {} bytes exceeds the maximum of {}'.format(size, constants.MAX_SYNC_DATA))

            data = connection._read_exactly(size)  # pylint: disable=protected-access
            stream.write(data)
            if progress_callback:
                progress_callback(len(data))

    def stat(self, device_path):
        """Get a file's ``stat()`` information.

        Parameters
        ----------
        device_path : str
            The file on the device

        Returns
        -------
        mode : int
            The mode bits; all three values are 0 if the file does not exist
        size : int
            The size of the file
        mtime : int
            The last modified time for the file

        """
        self.send(constants.STAT, device_path)

        connection = self._check_open()
        command_id, mode, size, mtime = struct.unpack(constants.SYNC_STAT_FORMAT, connection._read_exactly(_SYNC_STAT_SIZE))  # pylint: disable=protected-access

        if command_id != constants.STAT:
            raise exceptions.InvalidResponseError('Expected {!r}, got {!r}'.format(constants.STAT, command_id))

        return mode, size, mtime

    def _read_failure(self, size):
        """Read the message of a ``b'FAIL'`` reply.

        Parameters
        ----------
        size : int
            The length of the message

        Returns
        -------
        adb_host.exceptions.AdbCommandFailureException
            An exception to raise, carrying the message

        """
        message = self._connection._read_exactly(size)  # pylint: disable=protected-access

        reason = message.decode('utf-8', DECODE_ERRORS)
        _LOGGER.debug("Sync command failed: %s", reason)
        return exceptions.AdbCommandFailureException(reason)
