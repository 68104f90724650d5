# Copyright (c) 2021 Jeff Irion and contributors
#
# This file is part of the adb-host package.

"""Implement helpers for the :class:`~adb_host.adb_device.AdbDevice` and :class:`~adb_host.adb_device_async.AdbDeviceAsync` classes.

.. rubric:: Contents

* :class:`DeviceFile`

    * :attr:`DeviceFile.is_dir`
    * :attr:`DeviceFile.last_modified`

* :class:`ForwardRule`

* :func:`get_files_to_push`
* :func:`get_stream_size`
* :func:`hex_length`
* :func:`is_readable_stream`
* :func:`is_writable_stream`
* :func:`parse_devices`
* :func:`parse_forward_list`

"""


from collections import namedtuple
from datetime import datetime, timezone
import os

from . import constants


DECODE_ERRORS = 'backslashreplace'


class DeviceFile(namedtuple('DeviceFile', ['filename', 'mode', 'size', 'mtime'])):
    """One entry of a directory listing.

    Parameters
    ----------
    filename : str
        The name of the entry, relative to the listed directory
    mode : int
        The POSIX mode bits
    size : int
        The size in bytes
    mtime : int
        The modification time, in seconds since the epoch

    """
    __slots__ = ()

    @property
    def is_dir(self):
        """Whether the directory bit (``1 << 14``) is set in ``mode``.

        Returns
        -------
        bool
            Whether this entry is a directory

        """
        return self.mode & constants.DIRECTORY_BIT == constants.DIRECTORY_BIT

    @property
    def last_modified(self):
        """The modification time as a timezone-aware :class:`~datetime.datetime`.

        Returns
        -------
        datetime.datetime
            ``mtime`` in UTC

        """
        return datetime.fromtimestamp(self.mtime, timezone.utc)


#: A port forward registered with the ADB server
ForwardRule = namedtuple('ForwardRule', ['serial', 'local', 'remote'])


def hex_length(data):
    """Prefix ``data`` with its length as 4 lowercase hex digits.

    Parameters
    ----------
    data : bytes
        The payload

    Returns
    -------
    bytes
        ``b'%04x' % len(data)`` followed by ``data``

    """
    return b'%04x' % len(data) + data


def is_readable_stream(obj):
    """Whether ``obj`` is a binary stream rather than a path."""
    return hasattr(obj, 'read')


def is_writable_stream(obj):
    """Whether ``obj`` is a binary stream rather than a path."""
    return hasattr(obj, 'write')


def get_files_to_push(local_path, device_path):
    """Get a list of the file(s) to push.

    Parameters
    ----------
    local_path : str, BytesIO
        A path to a local file or directory, or a stream
    device_path : str
        A path to a file or directory on the device

    Returns
    -------
    local_path_is_dir : bool
        Whether or not ``local_path`` is a directory
    local_paths : list[str]
        A list of the file(s) to push
    device_paths : list[str]
        A list of destination paths on the device that corresponds to ``local_paths``

    """
    local_path_is_dir = not is_readable_stream(local_path) and os.path.isdir(local_path)
    if not local_path_is_dir:
        return False, [local_path], [device_path]

    names = sorted(os.listdir(local_path))
    local_paths = [os.path.join(local_path, name) for name in names]
    device_paths = [device_path.rstrip('/') + '/' + name for name in names]

    return True, local_paths, device_paths


def parse_devices(output):
    """Parse the reply to ``host:devices-l``.

    Each line looks like ``<serial> <state> key:value key:value ...``.

    Parameters
    ----------
    output : str
        The text returned by the ADB server

    Returns
    -------
    list[tuple[str, dict]]
        ``(serial, attributes)`` pairs; the attributes include the ``state``

    """
    devices = []
    for line in output.splitlines():
        fields = line.split()
        if len(fields) < 2:
            continue

        attributes = {'state': fields[1]}
        for field in fields[2:]:
            key, sep, value = field.partition(':')
            if sep:
                attributes[key] = value

        devices.append((fields[0], attributes))

    return devices


def parse_forward_list(output):
    """Parse the reply to ``host:list-forward``.

    Parameters
    ----------
    output : str
        Lines of the form ``<serial> <local> <remote>``

    Returns
    -------
    list[ForwardRule]
        The registered forwards, in the order the server listed them

    """
    rules = []
    for line in output.splitlines():
        fields = line.split()
        if len(fields) == 3:
            rules.append(ForwardRule(*fields))

    return rules


def get_stream_size(stream):
    """Get the number of bytes remaining in a seekable stream.

    Parameters
    ----------
    stream : io.IOBase
        A binary stream

    Returns
    -------
    int, None
        The number of bytes between the current position and the end, or ``None`` if the stream is not seekable

    """
    if not getattr(stream, 'seekable', lambda: False)():
        return None

    position = stream.tell()
    end = stream.seek(0, os.SEEK_END)
    stream.seek(position)

    return end - position
