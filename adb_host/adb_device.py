# Copyright (c) 2021 Jeff Irion and contributors
#
# This file is part of the adb-host package.

"""Implement the :class:`AdbDevice` class, which runs shell commands and FileSync operations on one device.

Every operation opens its own connection to the ADB server, sends ``host:transport:<serial>``, performs its exchange
and closes the connection, whether the operation succeeds or fails.

.. rubric:: Contents

* :class:`AdbDevice`

    * :meth:`AdbDevice._device_connection`
    * :meth:`AdbDevice._host_serial`
    * :meth:`AdbDevice._pull`
    * :meth:`AdbDevice._push`
    * :meth:`AdbDevice._service`
    * :attr:`AdbDevice.attributes`
    * :meth:`AdbDevice.create_device_connection`
    * :meth:`AdbDevice.exec_out`
    * :meth:`AdbDevice.forward`
    * :meth:`AdbDevice.forward_kill`
    * :meth:`AdbDevice.forward_list`
    * :meth:`AdbDevice.forward_raw`
    * :meth:`AdbDevice.get_devpath`
    * :meth:`AdbDevice.get_serialno`
    * :meth:`AdbDevice.get_state`
    * :meth:`AdbDevice.install`
    * :attr:`AdbDevice.is_usb`
    * :meth:`AdbDevice.launch`
    * :meth:`AdbDevice.list`
    * :meth:`AdbDevice.list_running`
    * :meth:`AdbDevice.pull`
    * :meth:`AdbDevice.push`
    * :attr:`AdbDevice.serial`
    * :meth:`AdbDevice.shell`
    * :meth:`AdbDevice.stat`
    * :meth:`AdbDevice.streaming_shell`
    * :meth:`AdbDevice.tcpip`
    * :meth:`AdbDevice.terminate`
    * :meth:`AdbDevice.terminate_all`
    * :meth:`AdbDevice.uninstall`

"""


from contextlib import contextmanager
import logging
import os
import posixpath
import re
import time

from . import constants
from . import exceptions
from .hidden_helpers import DECODE_ERRORS, get_files_to_push, get_stream_size, is_readable_stream, is_writable_stream


_LOGGER = logging.getLogger(__name__)


class AdbDevice(object):
    """A class with methods for running ADB commands on one device through the ADB server.

    Parameters
    ----------
    client : adb_host.adb_client.AdbClient
        The client whose :meth:`~adb_host.adb_client.AdbClient.create_connection` opens connections to the ADB server
    serial : str
        The device serial
    attributes : dict, None
        Metadata about the device, as reported by ``host:devices-l``

    Attributes
    ----------
    _attributes : dict
        Metadata about the device
    _client : adb_host.adb_client.AdbClient
        The client that opens connections to the ADB server
    _serial : str
        The device serial

    """

    def __init__(self, client, serial, attributes=None):
        self._client = client
        self._serial = serial
        self._attributes = dict(attributes or {})

    def __repr__(self):
        return '{}({!r})'.format(type(self).__name__, self._serial)

    # ======================================================================= #
    #                                                                         #
    #                       Properties & simple methods                       #
    #                                                                         #
    # ======================================================================= #
    @property
    def serial(self):
        """The device serial."""
        return self._serial

    @property
    def attributes(self):
        """A copy of the device's metadata.

        Returns
        -------
        dict
            E.g., ``{'state': 'device', 'product': 'sdk_gphone_x86', 'model': 'Android_SDK', 'transport_id': '1'}``

        """
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
    def create_device_connection(self, transport_timeout_s=constants.CLIENT_DEFAULT_TIMEOUT):
        """Open a connection to the ADB server and switch it to this device.

        Parameters
        ----------
        transport_timeout_s : float, None
            Timeout in seconds for reads and writes

        Returns
        -------
        adb_host.host_connection.AdbHostConnection
            A connection that is routed to the device, owned by the caller

        Raises
        ------
        adb_host.exceptions.AdbCommandFailureException
            The device is unknown or offline

        """
        _LOGGER.debug("Opening a transport to device %s", self._serial)
        connection = self._client.create_connection(transport_timeout_s)
        try:
            connection.send('host:transport:' + self._serial)
            connection.verify_response()
        except Exception:
            connection.close()
            raise

        return connection

    @contextmanager
    def _device_connection(self, transport_timeout_s=constants.CLIENT_DEFAULT_TIMEOUT):
        """A connection to this device that is closed on exit.

        Parameters
        ----------
        transport_timeout_s : float, None
            Timeout in seconds for reads and writes

        Yields
        ------
        adb_host.host_connection.AdbHostConnection
            A connection that is routed to the device

        """
        connection = self.create_device_connection(transport_timeout_s)
        try:
            yield connection
        finally:
            connection.close()

    def _host_serial(self, subcommand, only_verify_response=False):
        """Send ``host-serial:<serial>:<subcommand>`` and read the reply.

        Parameters
        ----------
        subcommand : str
            E.g., ``'get-state'``
        only_verify_response : bool
            Whether to return as soon as the command has been accepted

        Returns
        -------
        str, None
            The reply, or ``None`` if ``only_verify_response`` is true

        """
        return self._client.host_command('host-serial:{}:{}'.format(self._serial, subcommand), only_verify_response)

    # ======================================================================= #
    #                                                                         #
    #                                 Services                                #
    #                                                                         #
    # ======================================================================= #
    def _service(self, service, command, only_verify_response=False, transport_timeout_s=constants.CLIENT_DEFAULT_TIMEOUT):
        """Send ``service:command`` to the device and read the reply until the connection closes.

        Parameters
        ----------
        service : str
            The ADB service (e.g., ``'shell'``)
        command : str
            The command that will be sent
        only_verify_response : bool
            Whether to return as soon as the command has been accepted
        transport_timeout_s : float, None
            Timeout in seconds for reads and writes

        Returns
        -------
        bytes, None
            The output, or ``None`` if ``only_verify_response`` is true

        """
        with self._device_connection(transport_timeout_s) as connection:
            connection.send('{}:{}'.format(service, command))
            connection.verify_response()

            if only_verify_response:
                return None

            return connection.read_all()

    def shell(self, command, *args, decode=True, transport_timeout_s=constants.CLIENT_DEFAULT_TIMEOUT):
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

        Raises
        ------
        adb_host.exceptions.InvalidCommandError
            The command is empty

        """
        if args:
            command = '{} {}'.format(command, ' '.join(args))
        if not command.strip():
            raise exceptions.InvalidCommandError('Shell command cannot be empty')

        output = self._service('shell', command, transport_timeout_s=transport_timeout_s)
        return output.decode('utf-8', DECODE_ERRORS) if decode else output

    def exec_out(self, command, decode=True, transport_timeout_s=constants.CLIENT_DEFAULT_TIMEOUT):
        """Run a command via the ``exec`` service, which does not mangle binary output.

        Parameters
        ----------
        command : str
            The command
        decode : bool
            Whether to decode the output to ``str``
        transport_timeout_s : float, None
            Timeout in seconds for reads and writes

        Returns
        -------
        str, bytes
            The output of the command

        """
        if not command.strip():
            raise exceptions.InvalidCommandError('Command cannot be empty')

        output = self._service('exec', command, transport_timeout_s=transport_timeout_s)
        return output.decode('utf-8', DECODE_ERRORS) if decode else output

    def streaming_shell(self, command, decode=True, transport_timeout_s=constants.CLIENT_DEFAULT_TIMEOUT):
        """Run a shell command on the device and stream its output line by line.

        The returned connection belongs to the caller, who must close it.  Closing it from another thread ends
        the iteration over ``lines``.

        Parameters
        ----------
        command : str
            The shell command
        decode : bool
            Whether to decode each line to ``str``
        transport_timeout_s : float, None
            Timeout in seconds for reads and writes

        Returns
        -------
        connection : adb_host.host_connection.AdbHostConnection
            The open connection
        lines : generator
            The output lines, see :meth:`~adb_host.host_connection.AdbHostConnection.read_lines`

        """
        if not command.strip():
            raise exceptions.InvalidCommandError('Shell command cannot be empty')

        connection = self.create_device_connection(transport_timeout_s)
        try:
            connection.send('shell:' + command)
            connection.verify_response()
        except Exception:
            connection.close()
            raise

        return connection, connection.read_lines(decode)

    def tcpip(self, port=constants.DEFAULT_ADBD_PORT):
        """Restart ``adbd`` on the device listening on TCP ``port``.

        Parameters
        ----------
        port : int
            The TCP port

        """
        self._service('tcpip', str(port), only_verify_response=True)

    # ======================================================================= #
    #                                                                         #
    #                                 FileSync                                #
    #                                                                         #
    # ======================================================================= #
    def list(self, device_path, transport_timeout_s=constants.CLIENT_DEFAULT_TIMEOUT):
        """Return a directory listing of the given path.

        Parameters
        ----------
        device_path : str
            Directory to list
        transport_timeout_s : float, None
            Timeout in seconds for reads and writes

        Returns
        -------
        files : list[DeviceFile]
            Filename, mode, size, and mtime info for the files in the directory, in the order the device sent them

        """
        if not device_path:
            raise exceptions.DevicePathInvalidError("Cannot list an empty device path")

        with self._device_connection(transport_timeout_s) as connection, connection.sync() as sync:
            sync.send(constants.LIST, device_path)
            return list(sync.iter_directory())

    def stat(self, device_path, transport_timeout_s=constants.CLIENT_DEFAULT_TIMEOUT):
        """Get a file's ``stat()`` information.

        Parameters
        ----------
        device_path : str
            The file on the device for which we will get information
        transport_timeout_s : float, None
            Timeout in seconds for reads and writes

        Returns
        -------
        mode : int
            The mode bits
        size : int
            The size of the file
        mtime : int
            The last modified time for the file

        """
        if not device_path:
            raise exceptions.DevicePathInvalidError("Cannot stat an empty device path")

        with self._device_connection(transport_timeout_s) as connection, connection.sync() as sync:
            return sync.stat(device_path)

    def pull(self, device_path, local_path, progress_callback=None, transport_timeout_s=constants.CLIENT_DEFAULT_TIMEOUT):
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
            self._pull(device_path, local_path, progress_callback, transport_timeout_s)
            return

        try:
            with open(local_path, 'wb') as stream:
                self._pull(device_path, stream, progress_callback, transport_timeout_s)
        except Exception:
            if os.path.exists(local_path):
                os.remove(local_path)
            raise

    def _pull(self, device_path, stream, progress_callback, transport_timeout_s):
        """Pull a file from the device into the writable ``stream``.

        Parameters
        ----------
        device_path : str
            The file on the device that will be pulled
        stream : io.BufferedIOBase
            File-like object for writing to
        progress_callback : function, None
            Callback method that accepts ``device_path``, ``bytes_written``, and ``total_bytes``
        transport_timeout_s : float, None
            Timeout in seconds for reads and writes

        """
        callback = None
        if progress_callback:
            total_bytes = self.stat(device_path, transport_timeout_s)[1]

            def callback(num_bytes):
                progress_callback(device_path, num_bytes, total_bytes)

        with self._device_connection(transport_timeout_s) as connection, connection.sync() as sync:
            sync.send(constants.RECV, device_path)
            sync.write_stream(stream, callback)

    def push(self, local_path, device_path, st_mode=constants.DEFAULT_PUSH_MODE, mtime=None, progress_callback=None, transport_timeout_s=constants.CLIENT_DEFAULT_TIMEOUT):
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
            self.shell('mkdir -p ' + device_path, transport_timeout_s=transport_timeout_s)
            for _local_path, _device_path in zip(local_paths, device_paths):
                self.push(_local_path, _device_path, st_mode, mtime, progress_callback, transport_timeout_s)
            return

        if is_readable_stream(local_path):
            self._push(local_path, device_path, st_mode, int(time.time()) if mtime is None else mtime, progress_callback, transport_timeout_s)
            return

        with open(local_path, 'rb') as stream:
            if mtime is None:
                mtime = int(os.fstat(stream.fileno()).st_mtime)

            self._push(stream, device_path, st_mode, mtime, progress_callback, transport_timeout_s)

    def _push(self, stream, device_path, st_mode, mtime, progress_callback, transport_timeout_s):
        """Push a readable binary stream to the device.

        Parameters
        ----------
        stream : io.BufferedIOBase
            File-like object for reading from
        device_path : str
            Destination on the device to write to
        st_mode : int
            Mode bits for the file
        mtime : int
            Modification time
        progress_callback : function, None
            Callback method that accepts ``device_path``, ``bytes_written``, and ``total_bytes``
        transport_timeout_s : float, None
            Timeout in seconds for reads and writes

        Raises
        ------
        adb_host.exceptions.AdbCommandFailureException
            The device rejected the file

        """
        callback = None
        if progress_callback:
            total_bytes = get_stream_size(stream)

            def callback(num_bytes):
                progress_callback(device_path, num_bytes, total_bytes)

        with self._device_connection(transport_timeout_s) as connection, connection.sync(self._client.max_chunk_size) as sync:
            sync.send(constants.SEND, '{},{}'.format(device_path, int(st_mode)))
            sync.send_stream(stream, callback)
            sync.send_status(constants.DONE, int(mtime))
            sync.verify_status()

    # ======================================================================= #
    #                                                                         #
    #                           Host-serial commands                          #
    #                                                                         #
    # ======================================================================= #
    def get_state(self):
        """Get the state of the device.

        Returns
        -------
        str
            One of ``'online'``, ``'offline'``, ``'disconnected'`` or ``'UNKNOWN'``

        """
        return constants.DEVICE_STATES.get(self._host_serial('get-state'), constants.STATE_UNKNOWN)

    def get_devpath(self):
        """Get the device path reported by the ADB server (e.g., ``'usb:1-1'``)."""
        return self._host_serial('get-devpath')

    def get_serialno(self):
        """Get the serial number reported by the ADB server."""
        return self._host_serial('get-serialno')

    def forward(self, local_port, remote_port, norebind=False):
        """Forward the local TCP port ``local_port`` to ``remote_port`` on the device.

        Parameters
        ----------
        local_port : int
            The port on this machine
        remote_port : int
            The port on the device
        norebind : bool
            Whether to fail if ``local_port`` is already forwarded

        """
        self.forward_raw('tcp:{}'.format(local_port), 'tcp:{}'.format(remote_port), norebind)

    def forward_raw(self, local, remote, norebind=False):
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
        self._host_serial(subcommand.format(local, remote), only_verify_response=True)

    def forward_kill(self, local_port):
        """Remove the forward of the local TCP port ``local_port``.

        """
        self._host_serial('killforward:tcp:{}'.format(local_port), only_verify_response=True)

    def forward_list(self):
        """List the port forwards of this device.

        Returns
        -------
        list[ForwardRule]
            The forwards whose serial is this device's

        """
        return [rule for rule in self._client.forward_list() if rule.serial == self._serial]

    # ======================================================================= #
    #                                                                         #
    #                                   Apps                                  #
    #                                                                         #
    # ======================================================================= #
    def install(self, apk_path, flags=None, reinstall=False):
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
        self.push(apk_path, remote_path)

        if flags:
            args = list(flags)
        else:
            args = ['-r'] if reinstall else []

        output = self.shell('pm install', *(args + [remote_path]))
        if 'Success' not in output:
            raise exceptions.AdbCommandFailureException('APK install failed: {}'.format(output.strip()))

    def uninstall(self, package, keep_data=False):
        """Uninstall ``package``.

        Raises
        ------
        adb_host.exceptions.AdbCommandFailureException
            ``pm uninstall`` did not report ``Success``

        """
        args = ['-k', package] if keep_data else [package]
        output = self.shell('pm uninstall', *args)
        if 'Success' not in output:
            raise exceptions.AdbCommandFailureException('APK uninstall failed: {}'.format(output.strip()))

    def launch(self, package):
        """Launch the main activity of ``package`` via ``monkey``."""
        output = self.shell('monkey -p', package, '-c android.intent.category.LAUNCHER 1')
        if 'monkey aborted' in output:
            raise exceptions.AdbCommandFailureException('App launch failed: {}'.format(output.strip()))

    def terminate(self, package):
        """Force-stop ``package``."""
        self.shell('am force-stop', package)

    def list_running(self):
        """List the installed packages that have a running process.

        Returns
        -------
        list[str]
            The package names, in the order ``pm list packages`` reported them

        """
        packages = re.findall(r'package:(\S+)', self.shell('pm list packages'))

        # The process name is the last column of `ps` output
        processes = {line.split()[-1] for line in self.shell('ps; ps -A').splitlines() if line.strip()}

        return [package for package in packages if package in processes]

    def terminate_all(self, exclude_packages=()):
        """Force-stop every running package that is not in ``exclude_packages``.

        Parameters
        ----------
        exclude_packages : list[str], tuple[str]
            Packages that are left running

        """
        for package in self.list_running():
            if package not in exclude_packages:
                self.terminate(package)
