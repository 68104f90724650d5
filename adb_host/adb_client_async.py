# Copyright (c) 2021 Jeff Irion and contributors
#
# This file is part of the adb-host package.

"""Implement the :class:`AdbClientAsync` class, which opens connections to the ADB server and runs host-level queries.

.. rubric:: Contents

* :class:`AdbClientAsync`

    * :meth:`AdbClientAsync.create_connection`
    * :meth:`AdbClientAsync.device`
    * :meth:`AdbClientAsync.devices`
    * :meth:`AdbClientAsync.forward_kill_all`
    * :meth:`AdbClientAsync.forward_list`
    * :meth:`AdbClientAsync.host_command`
    * :attr:`AdbClientAsync.max_chunk_size`
    * :meth:`AdbClientAsync.version`

"""


import logging

from . import constants
from .adb_device_async import AdbDeviceAsync
from .hidden_helpers import DECODE_ERRORS, parse_devices, parse_forward_list
from .host_connection_async import AdbHostConnectionAsync
from .sync_session import check_chunk_size
from .transport.tcp_transport_async import TcpTransportAsync


_LOGGER = logging.getLogger(__name__)


class AdbClientAsync(object):
    """A client for the ADB server listening at ``host:port``.

    Parameters
    ----------
    host : str
        The address of the ADB server
    port : int
        The port on which the ADB server listens
    default_transport_timeout_s : float, None
        Default timeout in seconds for reads and writes, or ``None`` to wait indefinitely
    max_chunk_size : int
        The maximum payload of a sync ``b'DATA'`` frame when pushing files

    """
    def __init__(self, host=constants.DEFAULT_ADB_HOST, port=constants.DEFAULT_ADB_PORT, default_transport_timeout_s=constants.DEFAULT_TRANSPORT_TIMEOUT_S, max_chunk_size=constants.MAX_SYNC_DATA):
        self._host = host
        self._port = port
        self._default_transport_timeout_s = default_transport_timeout_s
        self._max_chunk_size = check_chunk_size(max_chunk_size)

    def __repr__(self):
        return '{}({!r}, {})'.format(type(self).__name__, self._host, self._port)

    @property
    def max_chunk_size(self):
        """The maximum payload of a sync ``b'DATA'`` frame when pushing files."""
        return self._max_chunk_size

    async def create_connection(self, transport_timeout_s=constants.CLIENT_DEFAULT_TIMEOUT):
        """Open a new connection to the ADB server.

        Parameters
        ----------
        transport_timeout_s : float, None
            Timeout in seconds for reads and writes on this connection, or ``None`` to block; if omitted, the client's default is used

        Returns
        -------
        AdbHostConnectionAsync
            An open connection, owned by the caller

        """
        if transport_timeout_s is constants.CLIENT_DEFAULT_TIMEOUT:
            transport_timeout_s = self._default_transport_timeout_s

        connection = AdbHostConnectionAsync(TcpTransportAsync(self._host, self._port), transport_timeout_s)
        await connection.connect()

        return connection

    async def host_command(self, command, only_verify_response=False, transport_timeout_s=constants.CLIENT_DEFAULT_TIMEOUT):
        """Send a host command on a fresh connection and read the hex-length-prefixed reply.

        Parameters
        ----------
        command : str
            E.g., ``'host:version'``
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
        async with await self.create_connection(transport_timeout_s) as connection:
            await connection.send(command)
            await connection.verify_response()

            if only_verify_response:
                return None

            return (await connection.read_hex_prefixed()).decode('utf-8', DECODE_ERRORS)

    async def version(self):
        """Get the version of the ADB server's protocol."""
        return int(await self.host_command('host:version'), 16)

    async def devices(self):
        """List the devices known to the ADB server.

        Returns
        -------
        list[AdbDeviceAsync]
            One handle per device, carrying the attributes reported by ``host:devices-l``

        """
        return [AdbDeviceAsync(self, serial, attributes) for serial, attributes in parse_devices(await self.host_command('host:devices-l'))]

    def device(self, serial):
        """Get a handle for the device with the given serial; no connection is opened."""
        return AdbDeviceAsync(self, serial)

    async def forward_list(self):
        """List all port forwards registered with the ADB server.

        Returns
        -------
        list[ForwardRule]
            The forwards

        """
        return parse_forward_list(await self.host_command('host:list-forward'))

    async def forward_kill_all(self):
        """Remove all port forwards."""
        await self.host_command('host:killforward-all', only_verify_response=True)
