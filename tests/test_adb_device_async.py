import inspect
from io import BytesIO
import logging
import os
import sys
import tempfile
import unittest
from unittest.mock import patch

from adb_host import adb_device_async, constants, exceptions
from adb_host.adb_client_async import AdbClientAsync
from adb_host.hidden_helpers import DeviceFile, ForwardRule
from adb_host.host_connection_async import AdbHostConnectionAsync
from adb_host.sync_session_async import AdbSyncSessionAsync

from .async_patchers import FakeTcpTransportAsync, async_mock_open, async_patch, fake_transports_async, patch_tcp_transport_async
from .async_wrapper import awaiter
from .filesync_helpers import FileSyncListMessage, FileSyncMessage, FileSyncStatMessage, device_prologue, fail, host_frame, join_messages, okay


# https://stackoverflow.com/a/7483862
_LOGGER = logging.getLogger('adb_host.adb_device_async')
_LOGGER.setLevel(logging.DEBUG)
_LOGGER.addHandler(logging.StreamHandler(sys.stdout))


SYNC_OKAY = okay() + okay()


class TestAdbDeviceAsync(unittest.TestCase):
    def setUp(self):
        self.client = AdbClientAsync('host', 5037)
        self.device = self.client.device('serial')
        self.progress_callback_calls = []

        def _progress_callback(device_path, current, total_bytes):
            self.progress_callback_calls.append((device_path, current, total_bytes))

        self.progress_callback = _progress_callback

    def assertAllClosed(self, transports):
        for transport in transports:
            self.assertIsNone(transport._reader)
            self.assertEqual(transport.bulk_read_data, b'')

    def test_no_sync_references(self):
        """Make sure there are no references to sync code."""
        adb_device_async_source = inspect.getsource(adb_device_async)
        self.assertTrue("base_transport." not in adb_device_async_source)
        self.assertTrue("host_connection." not in adb_device_async_source)
        self.assertTrue("adb_device." not in adb_device_async_source)
        self.assertTrue("AdbDevice." not in adb_device_async_source)

    @awaiter
    async def test_version(self):
        transports = fake_transports_async(okay(b'0029'))
        with patch_tcp_transport_async(transports):
            self.assertEqual(await self.client.version(), 41)

        self.assertEqual(transports[0].bulk_write_data, host_frame(b'host:version'))
        self.assertAllClosed(transports)

    @awaiter
    async def test_devices(self):
        transports = fake_transports_async(okay(b'serial device model:Fake\n'))
        with patch_tcp_transport_async(transports):
            devices = await self.client.devices()

        self.assertEqual([device.serial for device in devices], ['serial'])
        self.assertEqual(devices[0].attributes, {'state': 'device', 'model': 'Fake'})
        self.assertEqual(devices[0].model, 'Fake')
        self.assertFalse(devices[0].is_usb)

    @awaiter
    async def test_create_connection_refused(self):
        with async_patch('asyncio.open_connection', side_effect=ConnectionRefusedError):
            with self.assertRaises(exceptions.AdbConnectionError):
                await self.client.create_connection()

    @awaiter
    async def test_shell(self):
        transports = fake_transports_async(okay() + okay() + b'TEST\n')
        with patch_tcp_transport_async(transports):
            self.assertEqual(await self.device.shell('echo TEST'), 'TEST\n')

        self.assertEqual(transports[0].bulk_write_data, device_prologue() + host_frame(b'shell:echo TEST'))
        self.assertAllClosed(transports)

    @awaiter
    async def test_shell_empty_command(self):
        with self.assertRaises(exceptions.InvalidCommandError):
            await self.device.shell('')

    @awaiter
    async def test_shell_device_not_found(self):
        transports = fake_transports_async(fail(b"device 'serial' not found"))
        with patch_tcp_transport_async(transports):
            with self.assertRaises(exceptions.AdbCommandFailureException) as cm:
                await self.device.shell('echo TEST')

        self.assertEqual(str(cm.exception), "device 'serial' not found")
        self.assertEqual(transports[0].close_count, 1)
        self.assertAllClosed(transports)

    @awaiter
    async def test_streaming_shell(self):
        transports = fake_transports_async(okay() + okay() + b'line 1\nline 2\r\n')
        with patch_tcp_transport_async(transports):
            connection, lines = await self.device.streaming_shell('logcat')

        async with connection:
            self.assertEqual([line async for line in lines], ['line 1', 'line 2'])

        self.assertAllClosed(transports)

    @awaiter
    async def test_streaming_shell_rejected(self):
        transports = fake_transports_async(okay() + fail(b'closed'))
        with patch_tcp_transport_async(transports):
            with self.assertRaises(exceptions.AdbCommandFailureException):
                await self.device.streaming_shell('logcat')

        self.assertAllClosed(transports)

    @awaiter
    async def test_list(self):
        listing = join_messages(FileSyncListMessage(constants.DENT, 0o100644, 5, 2000, b'file.txt'),
                                FileSyncListMessage(constants.DENT, 0o040755, 4096, 1000, b'dir'),
                                FileSyncListMessage(constants.DONE))
        transports = fake_transports_async(SYNC_OKAY + listing)
        with patch_tcp_transport_async(transports):
            entries = await self.device.list('/sdcard')

        self.assertEqual(entries, [DeviceFile('file.txt', 0o100644, 5, 2000), DeviceFile('dir', 0o040755, 4096, 1000)])
        self.assertAllClosed(transports)

    @awaiter
    async def test_list_fail(self):
        transports = fake_transports_async(SYNC_OKAY + FileSyncMessage(constants.FAIL, data=b'Permission denied').pack())
        with patch_tcp_transport_async(transports):
            with self.assertRaises(exceptions.AdbCommandFailureException):
                await self.device.list('/data')

        self.assertAllClosed(transports)

    @awaiter
    async def test_stat(self):
        transports = fake_transports_async(SYNC_OKAY + FileSyncStatMessage(0o100644, 5, 2000).pack())
        with patch_tcp_transport_async(transports):
            self.assertEqual(await self.device.stat('/sdcard/file.txt'), (0o100644, 5, 2000))

    @awaiter
    async def test_push_stream(self):
        transports = fake_transports_async(SYNC_OKAY + FileSyncMessage(constants.OKAY).pack())
        with patch_tcp_transport_async(transports):
            await self.device.push(BytesIO(b'Hello world'), '/sdcard/hello.txt', mtime=1600000000, progress_callback=self.progress_callback)

        expected = device_prologue() + host_frame(b'sync:') + join_messages(FileSyncMessage(constants.SEND, data=b'/sdcard/hello.txt,436'),
                                                                            FileSyncMessage(constants.DATA, data=b'Hello world'),
                                                                            FileSyncMessage(constants.DONE, arg0=1600000000))
        self.assertEqual(transports[0].bulk_write_data, expected)
        self.assertEqual(self.progress_callback_calls, [('/sdcard/hello.txt', 11, 11)])
        self.assertAllClosed(transports)

    @awaiter
    async def test_push_file(self):
        """Local files are read with ``aiofiles``."""
        transports = fake_transports_async(SYNC_OKAY + FileSyncMessage(constants.OKAY).pack())
        with patch_tcp_transport_async(transports), patch('adb_host.adb_device_async.aiofiles.open', async_mock_open(read_data=b'contents')):
            await self.device.push('file.txt', '/sdcard/file.txt', mtime=7)

        expected = join_messages(FileSyncMessage(constants.SEND, data=b'/sdcard/file.txt,436'),
                                 FileSyncMessage(constants.DATA, data=b'contents'),
                                 FileSyncMessage(constants.DONE, arg0=7))
        self.assertTrue(transports[0].bulk_write_data.endswith(expected))

    @awaiter
    async def test_push_fail(self):
        transports = fake_transports_async(SYNC_OKAY + FileSyncMessage(constants.FAIL, data=b'Read-only file system').pack())
        with patch_tcp_transport_async(transports):
            with self.assertRaises(exceptions.AdbCommandFailureException):
                await self.device.push(BytesIO(b'data'), '/system/file', mtime=1)

        self.assertAllClosed(transports)

    @awaiter
    async def test_pull_stream(self):
        data = join_messages(FileSyncMessage(constants.DATA, data=b'Hello '),
                             FileSyncMessage(constants.DATA, data=b'world'),
                             FileSyncMessage(constants.DONE, arg0=0))
        transports = fake_transports_async(SYNC_OKAY + FileSyncStatMessage(0o100644, 11, 0).pack(), SYNC_OKAY + data)
        stream = BytesIO()
        with patch_tcp_transport_async(transports):
            await self.device.pull('/sdcard/hello.txt', stream, self.progress_callback)

        self.assertEqual(stream.getvalue(), b'Hello world')
        self.assertEqual(self.progress_callback_calls, [('/sdcard/hello.txt', 6, 11), ('/sdcard/hello.txt', 5, 11)])
        self.assertAllClosed(transports)

    @awaiter
    async def test_pull_file(self):
        """Local files are written with ``aiofiles``."""
        data = join_messages(FileSyncMessage(constants.DATA, data=b'contents'), FileSyncMessage(constants.DONE, arg0=0))
        transports = fake_transports_async(SYNC_OKAY + data)
        mock_open = async_mock_open()
        with patch_tcp_transport_async(transports), patch('adb_host.adb_device_async.aiofiles.open', mock_open):
            await self.device.pull('/sdcard/file.txt', 'file.txt')

        self.assertEqual(mock_open.written, b'contents')

    @awaiter
    async def test_pull_file_fail(self):
        transports = fake_transports_async(SYNC_OKAY + FileSyncMessage(constants.FAIL, data=b'No such file or directory').pack())
        with patch_tcp_transport_async(transports), patch('adb_host.adb_device_async.aiofiles.open', async_mock_open()), \
                patch('os.path.exists', return_value=True), async_patch('aiofiles.os.remove') as remove:
            with self.assertRaises(exceptions.AdbCommandFailureException):
                await self.device.pull('/sdcard/file.txt', 'file.txt')

        remove.assert_called_once_with('file.txt')
        self.assertAllClosed(transports)

    @awaiter
    async def test_get_state(self):
        transports = fake_transports_async(okay(b'offline'))
        with patch_tcp_transport_async(transports):
            self.assertEqual(await self.device.get_state(), constants.STATE_OFFLINE)

        self.assertEqual(transports[0].bulk_write_data, host_frame(b'host-serial:serial:get-state'))

    @awaiter
    async def test_empty_device_path(self):
        with self.assertRaises(exceptions.DevicePathInvalidError):
            await self.device.list('')

        with self.assertRaises(exceptions.DevicePathInvalidError):
            await self.device.pull('', BytesIO())

        with self.assertRaises(exceptions.DevicePathInvalidError):
            await self.device.push(BytesIO(), '')

    @awaiter
    async def test_create_connection_timeout(self):
        """An omitted timeout uses the client's default, while ``None`` blocks."""
        client = AdbClientAsync('host', 5037, default_transport_timeout_s=5)
        transports = fake_transports_async(b'', b'')
        with patch_tcp_transport_async(transports):
            async with await client.create_connection() as connection:
                self.assertEqual(connection._transport_timeout_s, 5)

            async with await client.create_connection(None) as connection:
                self.assertIsNone(connection._transport_timeout_s)

    @awaiter
    async def test_sync_send_unknown_id(self):
        transport = FakeTcpTransportAsync('host', 5037)
        connection = AdbHostConnectionAsync(transport)
        await connection.connect()
        sync = AdbSyncSessionAsync(connection)

        with self.assertRaises(exceptions.InvalidCommandError):
            await sync.send(b'NOPE', '/sdcard')

        self.assertEqual(transport.bulk_write_data, b'')

    @awaiter
    async def test_exec_out(self):
        transports = fake_transports_async(okay() + okay() + b'\x89PNG\r\n')
        with patch_tcp_transport_async(transports):
            self.assertEqual(await self.device.exec_out('screencap -p', decode=False), b'\x89PNG\r\n')

        self.assertEqual(transports[0].bulk_write_data, device_prologue() + host_frame(b'exec:screencap -p'))
        self.assertAllClosed(transports)

    @awaiter
    async def test_tcpip(self):
        transports = fake_transports_async(okay() + okay())
        with patch_tcp_transport_async(transports):
            self.assertIsNone(await self.device.tcpip())

        self.assertEqual(transports[0].bulk_write_data, device_prologue() + host_frame(b'tcpip:5555'))
        self.assertAllClosed(transports)

    @awaiter
    async def test_get_devpath_serialno(self):
        transports = fake_transports_async(okay(b'usb:1-1'), okay(b'serial'))
        with patch_tcp_transport_async(transports):
            self.assertEqual(await self.device.get_devpath(), 'usb:1-1')
            self.assertEqual(await self.device.get_serialno(), 'serial')

        self.assertEqual(transports[1].bulk_write_data, host_frame(b'host-serial:serial:get-serialno'))

    @awaiter
    async def test_forward(self):
        transports = fake_transports_async(okay(), okay(), okay())
        with patch_tcp_transport_async(transports):
            await self.device.forward(8080, 80)
            await self.device.forward_raw('tcp:9090', 'localabstract:chrome_devtools_remote', norebind=True)
            await self.device.forward_kill(8080)

        self.assertEqual(transports[0].bulk_write_data, host_frame(b'host-serial:serial:forward:tcp:8080;tcp:80'))
        self.assertEqual(transports[1].bulk_write_data, host_frame(b'host-serial:serial:forward:norebind:tcp:9090;localabstract:chrome_devtools_remote'))
        self.assertEqual(transports[2].bulk_write_data, host_frame(b'host-serial:serial:killforward:tcp:8080'))

    @awaiter
    async def test_forward_list(self):
        reply = okay(b'serial tcp:8080 tcp:80\nother tcp:9090 tcp:90\n')
        transports = fake_transports_async(reply, reply)
        with patch_tcp_transport_async(transports):
            self.assertEqual(await self.client.forward_list(), [ForwardRule('serial', 'tcp:8080', 'tcp:80'), ForwardRule('other', 'tcp:9090', 'tcp:90')])
            self.assertEqual(await self.device.forward_list(), [ForwardRule('serial', 'tcp:8080', 'tcp:80')])

        self.assertEqual(transports[0].bulk_write_data, host_frame(b'host:list-forward'))

    @awaiter
    async def test_forward_kill_all(self):
        transports = fake_transports_async(okay())
        with patch_tcp_transport_async(transports):
            self.assertIsNone(await self.client.forward_kill_all())

        self.assertEqual(transports[0].bulk_write_data, host_frame(b'host:killforward-all'))

    # ======================================================================= #
    #                                                                         #
    #                                   Apps                                  #
    #                                                                         #
    # ======================================================================= #
    @awaiter
    async def test_install(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            apk_path = os.path.join(tmpdir, 'app.apk')
            with open(apk_path, 'wb') as f:
                f.write(b'PK')

            transports = fake_transports_async(SYNC_OKAY + FileSyncMessage(constants.OKAY).pack(), okay() + okay() + b'Success\n')
            with patch_tcp_transport_async(transports):
                await self.device.install(apk_path, reinstall=True)

        self.assertIn(FileSyncMessage(constants.DATA, data=b'PK').pack(), transports[0].bulk_write_data)
        self.assertEqual(transports[1].bulk_write_data, device_prologue() + host_frame(b'shell:pm install -r /data/local/tmp/app.apk'))
        self.assertAllClosed(transports)

    @awaiter
    async def test_install_not_apk(self):
        with self.assertRaises(ValueError):
            await self.device.install('app.zip')

    @awaiter
    async def test_uninstall(self):
        transports = fake_transports_async(okay() + okay() + b'Success\n', okay() + okay() + b'Failure\n')
        with patch_tcp_transport_async(transports):
            await self.device.uninstall('com.example', keep_data=True)
            with self.assertRaises(exceptions.AdbCommandFailureException):
                await self.device.uninstall('com.example')

        self.assertEqual(transports[0].bulk_write_data, device_prologue() + host_frame(b'shell:pm uninstall -k com.example'))

    @awaiter
    async def test_launch_terminate(self):
        transports = fake_transports_async(okay() + okay() + b'Events injected: 1\n', okay() + okay() + b'** monkey aborted\n', okay() + okay())
        with patch_tcp_transport_async(transports):
            await self.device.launch('com.example')
            with self.assertRaises(exceptions.AdbCommandFailureException):
                await self.device.launch('com.example')
            await self.device.terminate('com.example')

        self.assertEqual(transports[2].bulk_write_data, device_prologue() + host_frame(b'shell:am force-stop com.example'))
        self.assertAllClosed(transports)

    @awaiter
    async def test_list_running_terminate_all(self):
        packages = b'package:com.android.systemui\npackage:com.example.stopped\npackage:com.example.app\n'
        processes = b'USER PID PPID VSZ RSS WCHAN ADDR S NAME\n' \
                    b'system 812 301 9876543 123456 0 0 S com.android.systemui\n' \
                    b'u0_a100 2301 301 8765432 98765 0 0 S com.example.app\n'
        transports = fake_transports_async(okay() + okay() + packages, okay() + okay() + processes,
                                           okay() + okay() + packages, okay() + okay() + processes, okay() + okay())
        with patch_tcp_transport_async(transports):
            self.assertEqual(await self.device.list_running(), ['com.android.systemui', 'com.example.app'])
            await self.device.terminate_all(exclude_packages=('com.android.systemui',))

        self.assertEqual(transports[1].bulk_write_data, device_prologue() + host_frame(b'shell:ps; ps -A'))
        self.assertEqual(transports[4].bulk_write_data, device_prologue() + host_frame(b'shell:am force-stop com.example.app'))
        self.assertAllClosed(transports)
