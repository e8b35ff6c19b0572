"""
DatagramSocket 测试
"""

import logging

import pytest

from netsock import DatagramSocket, IPAddress, SocketFlags


@pytest.fixture
def endpoints():
    """两个绑定在本地回环地址上的数据报套接字"""
    a = DatagramSocket(IPAddress('127.0.0.1', 0))
    b = DatagramSocket(IPAddress('127.0.0.1', 0))
    a.set_timeout(2)
    b.set_timeout(2)
    yield a, b
    a.destroy()
    b.destroy()


class TestDatagram:
    """无连接收发"""

    def test_bind(self, endpoints):
        a, _ = endpoints
        assert a.ok
        local = a.get_local()
        assert local.host == '127.0.0.1'
        assert local.port != 0

    def test_send_and_receive(self, endpoints):
        a, b = endpoints
        a.send_to(b.get_local(), b'ping')
        assert not a.error
        assert a.last_count == 4

        buffer = bytearray(64)
        sender = b.recv_from(buffer)
        assert sender == a.get_local()
        assert b.last_count == 4
        assert bytes(buffer[:4]) == b'ping'

    def test_reply_to_sender(self, endpoints):
        a, b = endpoints
        a.send_to(b.get_local(), b'ping')
        buffer = bytearray(64)
        sender = b.recv_from(buffer)

        b.send_to(sender, b'pong')
        assert a.recv_from(buffer) == b.get_local()
        assert bytes(buffer[:a.last_count]) == b'pong'

    def test_send_to_destination_not_kept(self, endpoints):
        """send_to 的目标只对本次发送有效，之后的 write 没有目标"""
        a, b = endpoints
        assert a.get_peer() is None
        a.send_to(b.get_local(), b'ping')
        assert not a.error
        assert a.get_peer() is None

        a.write(b'stray')
        assert a.error
        assert a.last_count == 0

        buffer = bytearray(64)
        b.recv_from(buffer)
        assert bytes(buffer[:b.last_count]) == b'ping'
        b.set_timeout(0)
        assert b.recv_from(buffer) is None

    def test_send_to_restores_previous_peer(self, endpoints):
        a, b = endpoints
        other = DatagramSocket(IPAddress('127.0.0.1', 0))
        try:
            b.send_to(a.get_local(), b'hello')
            buffer = bytearray(64)
            assert a.recv_from(buffer) == b.get_local()

            a.send_to(other.get_local(), b'elsewhere')
            assert a.get_peer() == b.get_local()
        finally:
            other.destroy()

    def test_recv_timeout(self, endpoints):
        a, _ = endpoints
        a.set_timeout(0)
        assert a.recv_from(bytearray(8)) is None
        assert a.error

    def test_bind_failure(self, endpoints, caplog):
        """地址已被占用时 ok 为 False"""
        a, _ = endpoints
        with caplog.at_level(logging.WARNING, logger='netsock-datagram'):
            other = DatagramSocket(a.get_local())
        assert not other.ok
        assert other.recv_from(bytearray(8)) is None
        assert other.error
        other.destroy()


class TestPinnedPeer:
    """connect 固定对端后的地址检查"""

    def test_mismatched_send_rejected(self, endpoints, caplog):
        a, b = endpoints
        assert a.connect(b.get_local())

        with caplog.at_level(logging.WARNING, logger='netsock-datagram'):
            a.send_to(IPAddress('127.0.0.1', 9), b'nope')
        assert a.error
        assert a.last_count == 0
        assert caplog.records

    def test_matching_send_allowed(self, endpoints):
        a, b = endpoints
        assert a.connect(b.get_local())
        a.send_to(b.get_local(), b'hi')
        assert not a.error

        buffer = bytearray(8)
        assert b.recv_from(buffer) == a.get_local()
        assert bytes(buffer[:2]) == b'hi'

    def test_write_on_pinned(self, endpoints):
        a, b = endpoints
        assert a.connect(b.get_local())
        a.write(b'direct')
        assert a.last_count == 6

        buffer = bytearray(8)
        b.recv_from(buffer)
        assert bytes(buffer[:6]) == b'direct'

    def test_mismatched_receive_rejected(self, endpoints):
        a, b = endpoints
        assert a.connect(b.get_local())
        assert a.recv_from(bytearray(8), address=IPAddress('127.0.0.1', 9)) is None
        assert a.error
        assert a.last_count == 0

    def test_pinned_receive_reports_peer(self, endpoints):
        a, b = endpoints
        assert a.connect(b.get_local())
        b.send_to(a.get_local(), b'hello')

        buffer = bytearray(8)
        assert a.recv_from(buffer, address=b.get_local()) == b.get_local()
        assert bytes(buffer[:5]) == b'hello'

    def test_reuse_flag(self):
        sock = DatagramSocket(IPAddress('127.0.0.1', 0), SocketFlags.REUSEADDR)
        try:
            assert sock.ok
        finally:
            sock.destroy()
