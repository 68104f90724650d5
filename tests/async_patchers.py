from contextlib import asynccontextmanager
from unittest.mock import AsyncMock, patch

from adb_host.exceptions import AdbTransferError
from adb_host.transport.tcp_transport_async import TcpTransportAsync


def async_mock_open(read_data=b""):
    class AsyncMockFile:
        def __init__(self, read_data):
            self.read_data = read_data
            _async_mock_open.written = read_data[:0]

        async def read(self, size=-1):
            if size == -1:
                ret = self.read_data
                self.read_data = self.read_data[:0]
                return ret

            n = min(size, len(self.read_data))
            ret = self.read_data[:n]
            self.read_data = self.read_data[n:]
            return ret

        async def write(self, b):
            _async_mock_open.written += b

    @asynccontextmanager
    async def _async_mock_open(*args, **kwargs):
        yield AsyncMockFile(read_data)

    return _async_mock_open


class FakeStreamWriter:
    def __init__(self):
        self.written = b''

    def close(self):
        pass

    async def wait_closed(self):
        pass

    def write(self, data):
        self.written += data

    async def drain(self):
        pass


class FakeStreamReader:
    async def read(self, numbytes):
        return b'TEST'


class FakeTcpTransportAsync(TcpTransportAsync):
    """A transport that replays ``bulk_read_data`` and records what is written in ``bulk_write_data``."""
    def __init__(self, *args, **kwargs):
        TcpTransportAsync.__init__(self, *args, **kwargs)
        self.bulk_read_data = b''
        self.bulk_write_data = b''
        self.close_count = 0

    async def close(self):
        self._reader = None
        self._writer = None
        self.close_count += 1

    async def connect(self, transport_timeout_s=None):
        self._reader = True
        self._writer = True

    async def bulk_read(self, numbytes, transport_timeout_s=None):
        if self._reader is None:
            raise AdbTransferError('The connection is closed')

        ret = self.bulk_read_data[:numbytes]
        self.bulk_read_data = self.bulk_read_data[numbytes:]
        return ret

    async def bulk_write(self, data, transport_timeout_s=None):
        if self._writer is None:
            raise AdbTransferError('The connection is closed')

        self.bulk_write_data += data
        return len(data)


def fake_transports_async(*replies):
    """Create one :class:`FakeTcpTransportAsync` per connection, each replaying one of ``replies``."""
    transports = []
    for reply in replies:
        transport = FakeTcpTransportAsync('host', 5037)
        transport.bulk_read_data = reply
        transports.append(transport)

    return transports


# `TcpTransportAsync` patches
def patch_tcp_transport_async(transports):
    """Make ``AdbClientAsync.create_connection`` hand out ``transports`` in order."""
    return patch('adb_host.adb_client_async.TcpTransportAsync', side_effect=transports)


def async_patch(*args, **kwargs):
    return patch(*args, new_callable=AsyncMock, **kwargs)
