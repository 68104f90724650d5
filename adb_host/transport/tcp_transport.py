# Copyright (c) 2021 Jeff Irion and contributors
#
# This file is part of the adb-host package.

"""A class for creating a socket connection with the ADB server and sending and receiving data.

* :class:`TcpTransport`

    * :meth:`TcpTransport.bulk_read`
    * :meth:`TcpTransport.bulk_write`
    * :meth:`TcpTransport.close`
    * :meth:`TcpTransport.connect`

"""


import select
import socket

from .base_transport import BaseTransport
from .. import constants
from ..exceptions import AdbTransferError, TcpTimeoutException


class TcpTransport(BaseTransport):
    """TCP connection object.

    Parameters
    ----------
    host : str
        The address of the ADB server; may be an IP address or a host name
    port : int
        The port on which the ADB server listens (default is 5037)

    Attributes
    ----------
    _connection : socket.socket, None
        A socket connection to the ADB server
    _host : str
        The address of the ADB server; may be an IP address or a host name
    _port : int
        The port on which the ADB server listens (default is 5037)

    """
    def __init__(self, host, port=constants.DEFAULT_ADB_PORT):
        self._host = host
        self._port = port

        self._connection = None

    def __repr__(self):
        return '{}({!r}, {})'.format(type(self).__name__, self._host, self._port)

    def close(self):
        """Close the socket connection.

        The socket is shut down first, which wakes up a read that is blocked in another thread.

        """
        if self._connection:
            try:
                self._connection.shutdown(socket.SHUT_RDWR)
            except OSError:
                pass

            self._connection.close()
            self._connection = None

    def connect(self, transport_timeout_s=None):
        """Create a socket connection to the ADB server.

        Parameters
        ----------
        transport_timeout_s : float, None
            Set the timeout on the socket instance

        """
        self._connection = socket.create_connection((self._host, self._port), timeout=transport_timeout_s)
        if transport_timeout_s:
            # Put the socket in non-blocking mode
            # https://docs.python.org/3/library/socket.html#socket.socket.settimeout
            self._connection.setblocking(False)

    def bulk_read(self, numbytes, transport_timeout_s=None):
        """Receive data from the socket.

        Parameters
        ----------
        numbytes : int
            The maximum amount of data to be received
        transport_timeout_s : float, None
            When the timeout argument is omitted, ``select.select`` blocks until at least one file descriptor is ready. A time-out value of zero specifies a poll and never blocks.

        Returns
        -------
        bytes
            The received data

        Raises
        ------
        AdbTransferError
            The connection has been closed.
        TcpTimeoutException
            Reading timed out.

        """
        connection = self._connection
        if connection is None:
            raise AdbTransferError('Reading from {}:{} failed: the connection is closed'.format(self._host, self._port))

        readable, _, _ = select.select([connection], [], [], transport_timeout_s)
        if readable:
            return connection.recv(numbytes)

        msg = 'Reading from {}:{} timed out ({} seconds)'.format(self._host, self._port, transport_timeout_s)
        raise TcpTimeoutException(msg)

    def bulk_write(self, data, transport_timeout_s=None):
        """Send data to the socket.

        Parameters
        ----------
        data : bytes
            The data to be sent
        transport_timeout_s : float, None
            When the timeout argument is omitted, ``select.select`` blocks until at least one file descriptor is ready. A time-out value of zero specifies a poll and never blocks.

        Returns
        -------
        int
            The number of bytes sent

        Raises
        ------
        AdbTransferError
            The connection has been closed.
        TcpTimeoutException
            Sending data timed out.  No data was sent.

        """
        connection = self._connection
        if connection is None:
            raise AdbTransferError('Sending data to {}:{} failed: the connection is closed'.format(self._host, self._port))

        _, writeable, _ = select.select([], [connection], [], transport_timeout_s)
        if writeable:
            return connection.send(data)

        msg = 'Sending data to {}:{} timed out after {} seconds. No data was sent.'.format(self._host, self._port, transport_timeout_s)
        raise TcpTimeoutException(msg)
