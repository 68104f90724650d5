# Copyright (c) 2021 Jeff Irion and contributors
#
# This file is part of the adb-host package.

"""Implement the :class:`AdbDeviceAsync` class, which runs shell commands and FileSync operations on one device.

.. rubric:: Contents

* :class:`AdbDeviceAsync`

    * :meth:`AdbDeviceAsync._device_connection`
    * :meth:`AdbDeviceAsync._host_serial`
    * :meth:`AdbDeviceAsync._pull`
    * :meth:`AdbDeviceAsync._push`
    * :meth:`AdbDeviceAsync._service`
    * :attr:`AdbDeviceAsync.attributes`
    * :meth:`AdbDeviceAsync.create_device_connection`
    * :meth:`AdbDeviceAsync.exec_out`
    * :meth:`AdbDeviceAsync.forward`
    * :meth:`AdbDeviceAsync.forward_kill`
    * :meth:`AdbDeviceAsync.forward_list`
    * :meth:`AdbDeviceAsync.forward_raw`
    * :meth:`AdbDeviceAsync.get_devpath`
    * :meth:`AdbDeviceAsync.get_serialno`
    * :meth:`AdbDeviceAsync.get_state`
    * :meth:`AdbDeviceAsync.install`
    * :attr:`AdbDeviceAsync.is_usb`
    * :meth:`AdbDeviceAsync.launch`
    * :meth:`AdbDeviceAsync.list`
    * :meth:`AdbDeviceAsync.list_running`
    * :meth:`AdbDeviceAsync.pull`
    * :meth:`AdbDeviceAsync.push`
    * :attr:`AdbDeviceAsync.serial`
    * :meth:`AdbDeviceAsync.shell`
    * :meth:`AdbDeviceAsync.stat`
    * :meth:`AdbDeviceAsync.streaming_shell`
    * :meth:`AdbDeviceAsync.tcpip`
    * :meth:`AdbDeviceAsync.terminate`
    * :meth:`AdbDeviceAsync.terminate_all`
    * :meth:`AdbDeviceAsync.uninstall`

"""


from contextlib import asynccontextmanager
import logging
import os
import posixpath
import re
import time

import aiofiles
import aiofiles.os

from . import constants
from . import exceptions
from .hidden_helpers import DECODE_ERRORS, get_files_to_push, get_stream_size, is_readable_stream, is_writable_stream


_LOGGER = logging.getLogger(__name__)


class AdbDeviceAsync(object):
    """A class with methods for running ADB commands on one device through the ADB server.

    Parameters
    ----------
    client : adb_host.adb_client_async.AdbClientAsync
        The client whose :meth:`~adb_host.adb_client_async.AdbClientAsync.create_connection` opens connections
    serial : str
        The device serial
    attributes : dict, None
        Metadata about the device, as reported by ``host:devices-l``

    """

    def __init__(self, client, serial, attributes=None):
        self._client = client
        self._serial = serial
        self._attributes = dict(attributes or {})

    def __repr__(self):
        return '{}({!r})'.format(type(self).__name__, self._serial)

    @property
    def serial(self):
        """The device serial."""
        return self._serial

    @property
    def attributes(self):
        """A copy of the device's metadata."""
        return dict(self._attributes)

    @property
    def product(self):
        """The ``product`` attribute, or ``''``."""
        return self._attributes.get('product', '')

    @property
    def model(self):
        """The ``model`` attribute, or ``''``."""
        return self._attributes.get('model', '')

    @property
    def usb(self):
        """The ``usb`` attribute, or ``''``."""
        return self._attributes.get('usb', '')

    @property
    def transport_id(self):
        """The ``transport_id`` attribute, or ``''``."""
        return self._attributes.get('transport_id', '')

    @property
    def is_usb(self):
        """Whether the device is attached via USB."""
        return bool(self.usb)

    # ======================================================================= #
    #                                                                         #
    #                               Connections                               #
    #                                                                         #
    # ======================================================================= #
    async def create_device_connection(self, transport_timeout_s=constants.CLIENT_DEFAULT_TIMEOUT):
        """Open a connection to the ADB server and switch it to this device.

        Returns
        -------
        adb_host.host_connection_async.AdbHostConnectionAsync
            A connection that is routed to the device, owned by the caller

        Raises
        ------
        adb_host.exceptions.AdbCommandFailureException
            The device is unknown or offline

        """
        _LOGGER.debug("Opening a transport to device %s", self._serial)
        connection = await self._client.create_connection(transport_timeout_s)
        try:
            await connection.send('host:transport:' + self._serial)
            await connection.verify_response()
        except Exception:
            await connection.close()
            raise

        return connection

    @asynccontextmanager
    async def _device_connection(self, transport_timeout_s=constants.CLIENT_DEFAULT_TIMEOUT):
        """A connection to this device that is closed on exit."""
        connection = await self.create_device_connection(transport_timeout_s)
        try:
            yield connection
        finally:
            await connection.close()

    # ======================================================================= #
    #                                                                         #
    #                                 Services                                #
    #                                                                         #
    # ======================================================================= #
    async def _service(self, service, command, only_verify_response=False, transport_timeout_s=constants.CLIENT_DEFAULT_TIMEOUT):
        """Send ``service:command`` to the device and read the reply until the connection closes."""
        async with self._device_connection(transport_timeout_s) as connection:
            await connection.send('{}:{}'.format(service, command))
            await connection.verify_response()

            if only_verify_response:
                return None

            return await connection.read_all()

    async def shell(self, command, *args, decode=True, transport_timeout_s=constants.CLIENT_DEFAULT_TIMEOUT):
        """Run a shell command on the device and collect its output.

        Parameters
        ----------
        command : str
            The shell command
        *args : str
            Arguments appended to ``command``, separated by spaces
        decode : bool
            Whether to decode the output to ``str``
        transport_timeout_s : float, None
            Timeout in seconds for reads and writes

        Returns
        -------
        str, bytes
            The combined stdout and stderr of the command

        """
        if args:
            command = '{} {}'.format(command, ' '.join(args))
        if not command.strip():
            raise exceptions.InvalidCommandError('Shell command cannot be empty')

        output = await self._service('shell', command, transport_timeout_s=transport_timeout_s)
        return output.decode('utf-8', DECODE_ERRORS) if decode else output

    async def exec_out(self, command, decode=True, transport_timeout_s=constants.CLIENT_DEFAULT_TIMEOUT):
        """Run a command via the ``exec`` service, which does not mangle binary output."""
        if not command.strip():
            raise exceptions.InvalidCommandError('Command cannot be empty')

        output = await self._service('exec', command, transport_timeout_s=transport_timeout_s)
        return output.decode('utf-8', DECODE_ERRORS) if decode else output

    async def streaming_shell(self, command, decode=True, transport_timeout_s=constants.CLIENT_DEFAULT_TIMEOUT):
        """Run a shell command on the device and stream its output line by line.

        The returned connection belongs to the caller, who must close it.

        Returns
        -------
        connection : adb_host.host_connection_async.AdbHostConnectionAsync
            The open connection
        lines : async_generator
            The output lines, see :meth:`~adb_host.host_connection_async.AdbHostConnectionAsync.read_lines`

        """
        if not command.strip():
            raise exceptions.InvalidCommandError('Shell command cannot be empty')

        connection = await self.create_device_connection(transport_timeout_s)
        try:
            await connection.send('shell:' + command)
            await connection.verify_response()
        except Exception:
            await connection.close()
            raise

        return connection, connection.read_lines(decode)

    async def tcpip(self, port=constants.DEFAULT_ADBD_PORT):
        """Restart ``adbd`` on the device listening on TCP ``port``."""
        await self._service('tcpip', str(port), only_verify_response=True)

    # ======================================================================= #
    #                                                                         #
    #                                 FileSync                                #
    #                                                                         #
    # ======================================================================= #
    async def list(self, device_path, transport_timeout_s=constants.CLIENT_DEFAULT_TIMEOUT):
        """Return a directory listing of the given path.

        Returns
        -------
        files : list[DeviceFile]
            Filename, mode, size, and mtime info for the files in the directory, in the order the device sent them

        """
        if not device_path:
            raise exceptions.DevicePathInvalidError("Cannot list an empty device path")

        async with self._device_connection(transport_timeout_s) as connection:
            async with await connection.sync() as sync:
                await sync.send(constants.LIST, device_path)
                return [entry async for entry in sync.iter_directory()]

    async def stat(self, device_path, transport_timeout_s=constants.CLIENT_DEFAULT_TIMEOUT):
        """Get a file's ``stat()`` information as ``(mode, size, mtime)``."""
        if not device_path:
            raise exceptions.DevicePathInvalidError("Cannot stat an empty device path")

        async with self._device_connection(transport_timeout_s) as connection:
            async with await connection.sync() as sync:
                return await sync.stat(device_path)

    async def pull(self, device_path, local_path, progress_callback=None, transport_timeout_s=constants.CLIENT_DEFAULT_TIMEOUT):
        """Pull a file from the device.

        If the transfer fails, a file created at ``local_path`` is removed again.

        Parameters
        ----------
        device_path : str
            The file on the device that will be pulled
        local_path : str, BytesIO
            The path or writable binary stream where the file will be downloaded
        progress_callback : function, None
            Callback method that accepts ``device_path``, ``bytes_written``, and ``total_bytes``
        transport_timeout_s : float, None
            Timeout in seconds for reads and writes

        """
        if not device_path:
            raise exceptions.DevicePathInvalidError("Cannot pull from an empty device path")

        if is_writable_stream(local_path):
            await self._pull(device_path, local_path, progress_callback, transport_timeout_s)
            return

        try:
            async with aiofiles.open(local_path, 'wb') as stream:
                await self._pull(device_path, stream, progress_callback, transport_timeout_s)
        except Exception:
            if os.path.exists(local_path):
                await aiofiles.os.remove(local_path)
            raise

    async def _pull(self, device_path, stream, progress_callback, transport_timeout_s):
        callback = None
        if progress_callback:
            total_bytes = (await self.stat(device_path, transport_timeout_s))[1]

            def callback(num_bytes):
                progress_callback(device_path, num_bytes, total_bytes)

        async with self._device_connection(transport_timeout_s) as connection:
            async with await connection.sync() as sync:
                await sync.send(constants.RECV, device_path)
                await sync.write_stream(stream, callback)

    async def push(self, local_path, device_path, st_mode=constants.DEFAULT_PUSH_MODE, mtime=None, progress_callback=None, transport_timeout_s=constants.CLIENT_DEFAULT_TIMEOUT):
        """Push a file or directory to the device.

        Parameters
        ----------
        local_path : str, BytesIO
            A filename, directory, or readable binary stream to push to the device
        device_path : str
            Destination on the device to write to
        st_mode : int
            Mode bits for the file on the device
        mtime : int, None
            Modification time to set on the file; by default the local file's modification time, or the current time for a stream
        progress_callback : function, None
            Callback method that accepts ``device_path``, ``bytes_written``, and ``total_bytes``
        transport_timeout_s : float, None
            Timeout in seconds for reads and writes

        """
        if not device_path:
            raise exceptions.DevicePathInvalidError("Cannot push to an empty device path")

        local_path_is_dir, local_paths, device_paths = get_files_to_push(local_path, device_path)

        if local_path_is_dir:
            await self.shell('mkdir -p ' + device_path, transport_timeout_s=transport_timeout_s)
            for _local_path, _device_path in zip(local_paths, device_paths):
                await self.push(_local_path, _device_path, st_mode, mtime, progress_callback, transport_timeout_s)
            return

        if is_readable_stream(local_path):
            total_bytes = get_stream_size(local_path)
            await self._push(local_path, device_path, st_mode, int(time.time()) if mtime is None else mtime, progress_callback, total_bytes, transport_timeout_s)
            return

        if mtime is None:
            mtime = int((await aiofiles.os.stat(local_path)).st_mtime)

        total_bytes = os.path.getsize(local_path) if progress_callback else None
        async with aiofiles.open(local_path, 'rb') as stream:
            await self._push(stream, device_path, st_mode, mtime, progress_callback, total_bytes, transport_timeout_s)

    async def _push(self, stream, device_path, st_mode, mtime, progress_callback, total_bytes, transport_timeout_s):
        callback = None
        if progress_callback:
            def callback(num_bytes):
                progress_callback(device_path, num_bytes, total_bytes)

        async with self._device_connection(transport_timeout_s) as connection:
            async with await connection.sync(self._client.max_chunk_size) as sync:
                await sync.send(constants.SEND, '{},{}'.format(device_path, int(st_mode)))
                await sync.send_stream(stream, callback)
                await sync.send_status(constants.DONE, int(mtime))
                await sync.verify_status()

    # ======================================================================= #
    #                                                                         #
    #                           Host-serial commands                          #
    #                                                                         #
    # ======================================================================= #
    async def _host_serial(self, subcommand, only_verify_response=False):
        """Send ``host-serial:<serial>:<subcommand>`` and read the reply."""
        return await self._client.host_command('host-serial:{}:{}'.format(self._serial, subcommand), only_verify_response)

    async def get_state(self):
        """Get the state of the device: ``'online'``, ``'offline'``, ``'disconnected'`` or ``'UNKNOWN'``."""
        return constants.DEVICE_STATES.get(await self._host_serial('get-state'), constants.STATE_UNKNOWN)

    async def get_devpath(self):
        """Get the device path reported by the ADB server (e.g., ``'usb:1-1'``)."""
        return await self._host_serial('get-devpath')

    async def get_serialno(self):
        """Get the serial number reported by the ADB server."""
        return await self._host_serial('get-serialno')

    async def forward(self, local_port, remote_port, norebind=False):
        """Forward the local TCP port ``local_port`` to ``remote_port`` on the device."""
        await self.forward_raw('tcp:{}'.format(local_port), 'tcp:{}'.format(remote_port), norebind)

    async def forward_raw(self, local, remote, norebind=False):
        """Forward ``local`` to ``remote`` using ADB's socket specifications.

        Parameters
        ----------
        local : str
            E.g., ``'tcp:8080'``
        remote : str
            E.g., ``'localabstract:chrome_devtools_remote'``
        norebind : bool
            Whether to fail if ``local`` is already forwarded

        """
        subcommand = 'forward:norebind:{};{}' if norebind else 'forward:{};{}'
        await self._host_serial(subcommand.format(local, remote), only_verify_response=True)

    async def forward_kill(self, local_port):
        """Remove the forward of the local TCP port ``local_port``."""
        await self._host_serial('killforward:tcp:{}'.format(local_port), only_verify_response=True)

    async def forward_list(self):
        """List the port forwards of this device."""
        return [rule for rule in await self._client.forward_list() if rule.serial == self._serial]

    # ======================================================================= #
    #                                                                         #
    #                                   Apps                                  #
    #                                                                         #
    # ======================================================================= #
    async def install(self, apk_path, flags=None, reinstall=False):
        """Push an APK to :const:`adb_host.constants.DEVICE_TEMP_PATH` and install it with ``pm install``.

        Parameters
        ----------
        apk_path : str
            The local APK file
        flags : list[str], None
            Flags for ``pm install``; when given, ``reinstall`` is ignored
        reinstall : bool
            Whether to pass ``-r``

        Raises
        ------
        ValueError
            ``apk_path`` does not end with ``.apk``
        adb_host.exceptions.AdbCommandFailureException
            ``pm install`` did not report ``Success``

        """
        apk_name = os.path.basename(apk_path)
        if not apk_name.lower().endswith('.apk'):
            raise ValueError("APK file must have an extension of '.apk': {}".format(apk_path))

        remote_path = posixpath.join(constants.DEVICE_TEMP_PATH, apk_name)
        await self.push(apk_path, remote_path)

        if flags:
            args = list(flags)
        else:
            args = ['-r'] if reinstall else []

        output = await self.shell('pm install', *(args + [remote_path]))
        if 'Success' not in output:
            raise exceptions.AdbCommandFailureException('APK install failed: {}'.format(output.strip()))

    async def uninstall(self, package, keep_data=False):
        """Uninstall ``package``."""
        args = ['-k', package] if keep_data else [package]
        output = await self.shell('pm uninstall', *args)
        if 'Success' not in output:
            raise exceptions.AdbCommandFailureException('APK uninstall failed: {}'.format(output.strip()))

    async def launch(self, package):
        """Launch the main activity of ``package`` via ``monkey``."""
        output = await self.shell('monkey -p', package, '-c android.intent.category.LAUNCHER 1')
        if 'monkey aborted' in output:
            raise exceptions.AdbCommandFailureException('App launch failed: {}'.format(output.strip()))

    async def terminate(self, package):
        """Force-stop ``package``."""
        await self.shell('am force-stop', package)

    async def list_running(self):
        """List the installed packages that have a running process, in the order ``pm list packages`` reported them."""
        packages = re.findall(r'package:(\S+)', await self.shell('pm list packages'))
        processes = {line.split()[-1] for line in (await self.shell('ps; ps -A')).splitlines() if line.strip()}

        return [package for package in packages if package in processes]

    async def terminate_all(self, exclude_packages=()):
        """Force-stop every running package that is not in ``exclude_packages``."""
        for package in await self.list_running():
            if package not in exclude_packages:
                await self.terminate(package)
