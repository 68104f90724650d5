# Copyright (c) 2021 Jeff Irion and contributors
#
# This file is part of the adb-host package.

"""Implement the :class:`AdbClient` class, which opens connections to the ADB server and runs host-level queries.

.. rubric:: Contents

* :class:`AdbClient`

    * :meth:`AdbClient.create_connection`
    * :meth:`AdbClient.device`
    * :meth:`AdbClient.devices`
    * :meth:`AdbClient.forward_kill_all`
    * :meth:`AdbClient.forward_list`
    * :meth:`AdbClient.host_command`
    * :attr:`AdbClient.max_chunk_size`
    * :meth:`AdbClient.version`

"""


import logging

from . import constants
from .adb_device import AdbDevice
from .hidden_helpers import DECODE_ERRORS, parse_devices, parse_forward_list
from .host_connection import AdbHostConnection
from .sync_session import check_chunk_size
from .transport.tcp_transport import TcpTransport


_LOGGER = logging.getLogger(__name__)


class AdbClient(object):
    """A client for the ADB server listening at ``host:port``.

    The client holds no connection itself; every operation opens its own via :meth:`create_connection`.

    Parameters
    ----------
    host : str
        The address of the ADB server
    port : int
        The port on which the ADB server listens
    default_transport_timeout_s : float, None
        Default timeout in seconds for reads and writes, or ``None`` to block
    max_chunk_size : int
        The maximum payload of a sync ``b'DATA'`` frame when pushing files

    Attributes
    ----------
    _default_transport_timeout_s : float, None
        Default timeout in seconds for reads and writes, or ``None`` to block
    _host : str
        The address of the ADB server
    _max_chunk_size : int
        The maximum payload of a sync ``b'DATA'`` frame when pushing files
    _port : int
        The port on which the ADB server listens

    """
    def __init__(self, host=constants.DEFAULT_ADB_HOST, port=constants.DEFAULT_ADB_PORT, default_transport_timeout_s=constants.DEFAULT_TRANSPORT_TIMEOUT_S, max_chunk_size=constants.MAX_SYNC_DATA):
        self._host = host
        self._port = port
        self._default_transport_timeout_s = default_transport_timeout_s
        self._max_chunk_size = check_chunk_size(max_chunk_size)

    def __repr__(self):
        return '{}({!r}, {})'.format(type(self).__name__, self._host, self._port)

    @property
    def host(self):
        """The address of the ADB server."""
        return self._host

    @property
    def port(self):
        """The port on which the ADB server listens."""
        return self._port

    @property
    def max_chunk_size(self):
        """The maximum payload of a sync ``b'DATA'`` frame when pushing files."""
        return self._max_chunk_size

    def create_connection(self, transport_timeout_s=constants.CLIENT_DEFAULT_TIMEOUT):
        """Open a new connection to the ADB server.

        Parameters
        ----------
        transport_timeout_s : float, None
            Timeout in seconds for reads and writes on this connection, or ``None`` to block; if omitted, the client's default is used

        Returns
        -------
        AdbHostConnection
            An open connection, owned by the caller

        Raises
        ------
        adb_host.exceptions.AdbConnectionError
            The ADB server could not be reached

        """
        if transport_timeout_s is constants.CLIENT_DEFAULT_TIMEOUT:
            transport_timeout_s = self._default_transport_timeout_s

        connection = AdbHostConnection(TcpTransport(self._host, self._port), transport_timeout_s)
        connection.connect()

        return connection

    def host_command(self, command, only_verify_response=False, transport_timeout_s=constants.CLIENT_DEFAULT_TIMEOUT):
        """Send a host command on a fresh connection and read the hex-length-prefixed reply.

        Parameters
        ----------
        command : str
            E.g., ``'host:version'`` or ``'host-serial:<serial>:get-state'``
        only_verify_response : bool
            Whether to return as soon as the command has been accepted
        transport_timeout_s : float, None
            Timeout in seconds for reads and writes

        Returns
        -------
        str, None
            The reply, or ``None`` if ``only_verify_response`` is true

        """
        _LOGGER.debug("Host command: %s", command)
        with self.create_connection(transport_timeout_s) as connection:
            connection.send(command)
            connection.verify_response()

            if only_verify_response:
                return None

            return connection.read_hex_prefixed().decode('utf-8', DECODE_ERRORS)

    def version(self):
        """Get the version of the ADB server's protocol.

        Returns
        -------
        int
            The version, e.g. ``41``

        """
        return int(self.host_command('host:version'), 16)

    def devices(self):
        """List the devices known to the ADB server.

        Returns
        -------
        list[AdbDevice]
            One handle per device, carrying the attributes reported by ``host:devices-l``

        """
        return [AdbDevice(self, serial, attributes) for serial, attributes in parse_devices(self.host_command('host:devices-l'))]

    def device(self, serial):
        """Get a handle for the device with the given serial.

        Parameters
        ----------
        serial : str
            The device serial

        Returns
        -------
        AdbDevice
            A handle; no connection is opened until an operation is performed

        """
        return AdbDevice(self, serial)

    def forward_list(self):
        """List all port forwards registered with the ADB server.

        Returns
        -------
        list[ForwardRule]
            The forwards

        """
        return parse_forward_list(self.host_command('host:list-forward'))

    def forward_kill_all(self):
        """Remove all port forwards.

        """
        self.host_command('host:killforward-all', only_verify_response=True)
