"""Constants used throughout the code.

"""


import stat


#: Address of the ADB server
DEFAULT_ADB_HOST = '127.0.0.1'

#: Port on which the ADB server listens
DEFAULT_ADB_PORT = 5037

#: Port used by ``adbd`` when it is switched to TCP mode
DEFAULT_ADBD_PORT = 5555

#: Default timeout for :meth:`adb_host.transport.tcp_transport.TcpTransport.bulk_read` and :meth:`adb_host.transport.tcp_transport.TcpTransport.bulk_write`; ``None`` blocks
DEFAULT_TRANSPORT_TIMEOUT_S = None

#: Placeholder for an omitted ``transport_timeout_s`` argument, which selects the client's default timeout; an explicit ``None`` blocks
CLIENT_DEFAULT_TIMEOUT = object()

#: Number of bytes requested per read when draining a connection
MAX_READ_SIZE = 4096

#: A host command payload is prefixed by its length as 4 hex digits
MAX_COMMAND_LENGTH = 0xFFFF

#: Maximum amount of data in a sync ``DATA`` frame (``SYNC_DATA_MAX`` in the ADB server)
MAX_SYNC_DATA = 64 * 1024

#: Default mode for pushed files
DEFAULT_PUSH_MODE = 0o664

#: Directory bit of a POSIX mode
DIRECTORY_BIT = stat.S_IFDIR

#: Where APKs are staged before ``pm install``
DEVICE_TEMP_PATH = '/data/local/tmp'

# Host protocol status replies
OKAY = b'OKAY'
FAIL = b'FAIL'

HOST_IDS = (OKAY, FAIL)

# Sync protocol command ids
DATA = b'DATA'
DENT = b'DENT'
DONE = b'DONE'
LIST = b'LIST'
RECV = b'RECV'
SEND = b'SEND'
STAT = b'STAT'

SYNC_IDS = (DATA, DENT, DONE, FAIL, LIST, OKAY, RECV, SEND, STAT)

#: A sync message header is a 4-byte id followed by a little-endian length
SYNC_HEADER_FORMAT = b'<4sI'

#: Rest of a ``DENT``/``DONE`` listing header after the id and mode: size, mtime, name length
SYNC_DENT_FORMAT = b'<3I'

#: ``STAT`` reply: id, mode, size, mtime
SYNC_STAT_FORMAT = b'<4s3I'

#: ``host-serial:<serial>:get-state`` replies
STATE_UNKNOWN = 'UNKNOWN'
STATE_ONLINE = 'online'
STATE_OFFLINE = 'offline'
STATE_DISCONNECTED = 'disconnected'

DEVICE_STATES = {'': STATE_DISCONNECTED, 'offline': STATE_OFFLINE, 'device': STATE_ONLINE}
