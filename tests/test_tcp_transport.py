import socket
import threading
import unittest
from unittest.mock import patch

from adb_host.exceptions import AdbTransferError, TcpTimeoutException
from adb_host.transport.tcp_transport import TcpTransport

from . import patchers


class TestTcpTransport(unittest.TestCase):
    def setUp(self):
        """Create a ``TcpTransport`` and connect to a TCP service.

        """
        self.transport = TcpTransport('host', 5037)
        with patchers.PATCH_CREATE_CONNECTION:
            self.transport.connect(transport_timeout_s=1)

    def tearDown(self):
        """Close the socket connection."""
        self.transport.close()

    def test_repr(self):
        self.assertEqual(repr(self.transport), "TcpTransport('host', 5037)")

    def test_connect_with_timeout(self):
        """Connect with a timeout, which puts the socket in non-blocking mode.

        """
        self.transport.close()
        with patchers.PATCH_CREATE_CONNECTION as create_connection:
            self.transport.connect(transport_timeout_s=1)
            create_connection.assert_called_once_with(('host', 5037), timeout=1)

    def test_connect_refused(self):
        """A refused connection raises the ``OSError`` of the socket module.

        """
        self.transport.close()
        with patch('socket.create_connection', side_effect=ConnectionRefusedError):
            with self.assertRaises(OSError):
                self.transport.connect()

    def test_bulk_read(self):
        """Read data in pieces, then time out.

        """
        # Provide the `recv` return values
        self.transport._connection._recv = b'TEST1TEST2'

        with patchers.PATCH_SELECT_SUCCESS:
            self.assertEqual(self.transport.bulk_read(5, transport_timeout_s=1), b'TEST1')
            self.assertEqual(self.transport.bulk_read(5, transport_timeout_s=1), b'TEST2')

        with patchers.PATCH_SELECT_FAIL:
            with self.assertRaises(TcpTimeoutException):
                self.transport.bulk_read(4, transport_timeout_s=1)

    def test_bulk_read_closed(self):
        self.transport.close()
        with self.assertRaises(AdbTransferError):
            self.transport.bulk_read(4)

    def test_close_oserror(self):
        """Test that an `OSError` exception is handled when closing the socket.

        """
        with patch('{}.patchers.FakeSocket.shutdown'.format(__name__), side_effect=OSError):
            self.transport.close()

        self.assertIsNone(self.transport._connection)

    def test_close_twice(self):
        self.transport.close()
        self.transport.close()
        self.assertIsNone(self.transport._connection)

    def test_bulk_write(self):
        """Write data, then time out.

        """
        with patchers.PATCH_SELECT_SUCCESS:
            self.assertEqual(self.transport.bulk_write(b'TEST', transport_timeout_s=1), 4)

        with patchers.PATCH_SELECT_FAIL:
            with self.assertRaises(TcpTimeoutException):
                self.transport.bulk_write(b'FAIL', transport_timeout_s=1)

    def test_bulk_write_closed(self):
        self.transport.close()
        with self.assertRaises(AdbTransferError):
            self.transport.bulk_write(b'TEST')


class TestTcpTransportClose(unittest.TestCase):
    def test_close_wakes_blocked_read(self):
        """Closing the transport from another thread ends a blocking read.

        """
        local, remote = socket.socketpair()
        self.addCleanup(remote.close)

        transport = TcpTransport('host', 5037)
        with patch('socket.create_connection', return_value=local):
            transport.connect()

        results = []

        def read():
            try:
                results.append(transport.bulk_read(4))
            except (OSError, ValueError) as exc:
                results.append(exc)

        thread = threading.Thread(target=read, daemon=True)
        thread.start()
        thread.join(0.2)
        self.assertTrue(thread.is_alive())

        transport.close()
        thread.join(5)
        self.assertFalse(thread.is_alive())
        self.assertEqual(len(results), 1)
        self.assertNotEqual(results[0], b'TEST')
