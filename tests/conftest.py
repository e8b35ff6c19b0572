"""
pytest 配置和共享夹具
"""

import socket
import threading
import time
from collections import deque
from typing import Callable, Iterable, List, Optional

import pytest

from netsock import (
    EventFlag, IPAddress, SocketBase, SocketClient, SocketFlags, SocketServer,
    Transport, TransportError,
)
from protocol import make_reply


# ============================================================================
# 脚本化的传输层
# ============================================================================

class FakeTransport(Transport):
    """
    按脚本返回数据的传输层

    Attributes:
        chunks: 待读取的数据块，每次 read 最多返回一个数据块
        write_limits: 每次 write 最多接受的字节数，用完后不再限制
        written: 已写入的全部字节
        eof: 数据块读完后报告连接断开
        read_sizes: 每次 read 请求的字节数
    """

    def __init__(self, chunks: Iterable[bytes] = (), write_limits: Optional[List[int]] = None,
                 eof: bool = False):
        self.chunks = deque(bytes(c) for c in chunks)
        self.write_limits = deque(write_limits or [])
        self.written = bytearray()
        self.eof = eof
        self.lost = False
        self.non_blocking = False
        self.timeout_ms = 600 * 1000
        self.read_sizes: List[int] = []
        self.write_calls = 0
        self.select_calls = 0
        self.peer: Optional[IPAddress] = None
        self.local: Optional[IPAddress] = None

    def feed(self, data: bytes):
        self.chunks.append(bytes(data))

    def connect(self, stream: bool = True) -> TransportError:
        return TransportError.NOERROR

    def read(self, view: memoryview) -> int:
        self.read_sizes.append(len(view))
        if self.lost:
            return -1
        if not self.chunks:
            if self.eof:
                self.lost = True
                return 0
            return -1

        chunk = self.chunks[0]
        count = min(len(view), len(chunk))
        view[:count] = chunk[:count]
        if count < len(chunk):
            self.chunks[0] = chunk[count:]
        else:
            self.chunks.popleft()
        return count

    def write(self, view: memoryview) -> int:
        self.write_calls += 1
        if self.lost:
            return -1
        limit = self.write_limits.popleft() if self.write_limits else len(view)
        count = min(limit, len(view))
        if count <= 0:
            return -1
        self.written += view[:count]
        return count

    def shutdown(self):
        self.lost = True

    def set_non_blocking(self, non_blocking: bool):
        self.non_blocking = non_blocking

    def set_timeout(self, milliseconds: int):
        self.timeout_ms = milliseconds

    def select(self, flags: EventFlag, timeout_ms: Optional[int] = None) -> EventFlag:
        self.select_calls += 1
        result = EventFlag.NONE
        if self.chunks and flags & EventFlag.INPUT:
            result |= EventFlag.INPUT
        if not self.lost and flags & EventFlag.OUTPUT:
            result |= EventFlag.OUTPUT
        if self.lost or (self.eof and not self.chunks):
            result |= EventFlag.LOST
        result &= flags

        if not result:
            timeout_ms = self.timeout_ms if timeout_ms is None else timeout_ms
            time.sleep(min(timeout_ms, 50) / 1000.0)
        return result

    def get_local(self) -> Optional[IPAddress]:
        return self.local

    def get_peer(self) -> Optional[IPAddress]:
        return self.peer

    def set_peer(self, address: Optional[IPAddress]) -> TransportError:
        self.peer = address
        return TransportError.NOERROR

    def set_local(self, address: IPAddress) -> TransportError:
        self.local = address
        return TransportError.NOERROR

    def set_reusable(self):
        pass


@pytest.fixture
def fake_socket() -> Callable:
    """创建挂接 FakeTransport 的已连接 SocketBase"""

    def factory(chunks: Iterable[bytes] = (), flags: SocketFlags = SocketFlags.NONE,
                timeout: int = 0, loop=None, **kwargs):
        transport = FakeTransport(chunks, **kwargs)
        sock = SocketBase(flags, loop=loop)
        sock.set_timeout(timeout)
        sock.attach_transport(transport)
        sock.set_connection_state(True)
        return sock, transport

    return factory


# ============================================================================
# 本地回环连接
# ============================================================================

LOCALHOST = '127.0.0.1'


@pytest.fixture
def free_port() -> int:
    """获取一个当前空闲的端口"""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind((LOCALHOST, 0))
        return s.getsockname()[1]


@pytest.fixture
def loopback_pair():
    """
    创建一对已连接的流套接字

    返回工厂函数 make(loop=None, flags=NONE) -> (client, peer, server)
    """
    created = []

    def make(loop=None, flags: SocketFlags = SocketFlags.NONE):
        server = SocketServer(IPAddress(LOCALHOST, 0), flags, loop)
        assert server.ok
        client = SocketClient(flags)
        client.set_timeout(5)
        assert client.connect(IPAddress(LOCALHOST, server.get_local().port))
        peer = server.accept()
        assert peer is not None
        peer.set_timeout(5)
        created.extend([client, peer, server])
        return client, peer, server

    yield make

    for sock in created:
        sock.destroy()


# ============================================================================
# SOCKS4 代理
# ============================================================================

class FakeSocks4Proxy:
    """
    只服务一个连接的 SOCKS4/4a 代理

    读取完整的请求后发送 reply，然后等待客户端关闭连接。

    Attributes:
        address: 代理监听地址
        request: 收到的请求字节
        reply: 发送给客户端的响应（为空时不响应，直接关闭）
    """

    def __init__(self, reply: bytes = make_reply()):
        self.reply = reply
        self.request = b''
        self.listener = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        self.listener.bind((LOCALHOST, 0))
        self.listener.listen(1)
        self.listener.settimeout(5)
        self.address = IPAddress(LOCALHOST, self.listener.getsockname()[1])
        self.thread = threading.Thread(target=self._serve, daemon=True)
        self.thread.start()

    @staticmethod
    def _complete(data: bytes) -> bool:
        if len(data) < 8:
            return False
        # 0.0.0.x 表示请求中还附带主机名
        needed = 2 if data[4:7] == b'\x00\x00\x00' and data[7] else 1
        return data[8:].count(b'\x00') >= needed

    def _serve(self):
        try:
            conn, _ = self.listener.accept()
        except OSError:
            return

        with conn:
            conn.settimeout(5)
            data = b''
            try:
                while not self._complete(data):
                    chunk = conn.recv(1024)
                    if not chunk:
                        break
                    data += chunk
                self.request = data
                if self._complete(data) and self.reply:
                    conn.sendall(self.reply)
                    conn.recv(1024)
            except OSError:
                self.request = data

    def close(self):
        self.listener.close()
        self.thread.join(5)


@pytest.fixture
def socks4_proxy():
    """创建 FakeSocks4Proxy 的工厂，测试结束时关闭全部代理"""
    proxies = []

    def make(reply: bytes = make_reply()) -> FakeSocks4Proxy:
        proxy = FakeSocks4Proxy(reply)
        proxies.append(proxy)
        return proxy

    yield make

    for proxy in proxies:
        proxy.close()
