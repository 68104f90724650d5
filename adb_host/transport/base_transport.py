# Copyright (c) 2021 Jeff Irion and contributors
#
# This file is part of the adb-host package.

"""A base class for transports used to communicate with the ADB server.

* :class:`BaseTransport`

    * :meth:`BaseTransport.bulk_read`
    * :meth:`BaseTransport.bulk_write`
    * :meth:`BaseTransport.close`
    * :meth:`BaseTransport.connect`

"""


from abc import ABC, abstractmethod


class BaseTransport(ABC):
    """A base transport class.

    """

    @abstractmethod
    def close(self):
        """Close the connection.

        """

    @abstractmethod
    def connect(self, transport_timeout_s=None):
        """Create a connection to the ADB server.

        Parameters
        ----------
        transport_timeout_s : float, None
            A connection timeout

        """

    @abstractmethod
    def bulk_read(self, numbytes, transport_timeout_s=None):
        """Read data from the ADB server.

        Parameters
        ----------
        numbytes : int
            The maximum amount of data to be received
        transport_timeout_s : float, None
            A timeout for the read operation

        Returns
        -------
        bytes
            The received data; ``b''`` once the peer has closed the connection

        """

    @abstractmethod
    def bulk_write(self, data, transport_timeout_s=None):
        """Send data to the ADB server.

        Parameters
        ----------
        data : bytes
            The data to be sent
        transport_timeout_s : float, None
            A timeout for the write operation

        Returns
        -------
        int
            The number of bytes sent

        """
