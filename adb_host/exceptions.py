# Copyright (c) 2021 Jeff Irion and contributors
#
# This file is part of the adb-host package.

"""ADB-related exceptions.

"""


class AdbCommandFailureException(Exception):
    """A ``b'FAIL'`` reply was received; the message is the reason sent by the peer.

    """


class AdbConnectionError(Exception):
    """A connection to the ADB server could not be established or is no longer usable.

    """


class AdbTransferError(OSError):
    """The connection was closed or broke in the middle of a frame or transfer.

    """


class DevicePathInvalidError(Exception):
    """A file command was passed an invalid path.

    """


class InvalidCommandError(Exception):
    """The command cannot be sent (empty, or too long to frame).

    """


class InvalidResponseError(Exception):
    """Got a malformed or unexpected response from the peer.

    """


class InvalidTransportError(Exception):
    """The provided transport does not implement the necessary methods: ``close``, ``connect``, ``bulk_read``, and ``bulk_write``.

    """


class TcpTimeoutException(Exception):
    """TCP connection timed read/write operation exceeded the allowed time.

    """
