"""
回退缓冲区和 peek/unread 测试
"""

from netsock import PushbackBuffer, SocketBase, SocketFlags


class TestPushbackBuffer:
    """PushbackBuffer 测试"""

    def test_empty(self):
        """新建的缓冲区为空"""
        buffer = PushbackBuffer()
        assert not buffer
        assert len(buffer) == 0
        assert buffer.take(memoryview(bytearray(4))) == 0

    def test_take_advances_cursor(self):
        """take 移动游标，peek 模式不移动"""
        buffer = PushbackBuffer()
        buffer.push(b'abcdef')

        out = bytearray(2)
        assert buffer.take(memoryview(out), peek=True) == 2
        assert buffer.cursor == 0
        assert buffer.take(memoryview(out)) == 2
        assert out == b'ab'
        assert buffer.cursor == 2
        assert len(buffer) == 4

    def test_released_when_drained(self):
        """完全读空时释放缓冲区并重置游标"""
        buffer = PushbackBuffer()
        buffer.push(b'abc')

        out = bytearray(8)
        assert buffer.take(memoryview(out)) == 3
        assert not buffer
        assert buffer.cursor == 0
        assert buffer.getvalue() == b''

    def test_push_prepends_and_drops_consumed(self):
        """新数据插入到未消费数据之前，已消费的前缀被丢弃"""
        buffer = PushbackBuffer()
        buffer.push(b'abcdef')
        buffer.take(memoryview(bytearray(2)))

        buffer.push(b'XY')
        assert buffer.getvalue() == b'XYcdef'
        assert buffer.cursor == 0

    def test_push_empty_is_noop(self):
        buffer = PushbackBuffer()
        assert buffer.push(b'') == 0
        assert not buffer


class TestUnread:
    """unread 测试"""

    def test_unread_order(self):
        """最近 unread 的数据最先被读到"""
        sock = SocketBase()
        sock.unread(b'world')
        sock.unread(b'hello ')

        buffer = bytearray(11)
        sock.read(buffer)
        assert sock.last_count == 11
        assert bytes(buffer) == b'hello world'

    def test_unread_reports_count(self):
        """unread 总是成功，last_count 为放回的字节数"""
        sock = SocketBase()
        sock.unread(b'abcdef', 4)
        assert not sock.error
        assert sock.last_count == 4
        assert sock.pushback.getvalue() == b'abcd'

    def test_unread_after_partial_read(self, fake_socket):
        """部分读取后 unread 的数据排在剩余数据之前"""
        sock, _ = fake_socket()
        sock.unread(b'abcdef')

        head = bytearray(2)
        sock.read(head)
        assert bytes(head) == b'ab'

        sock.unread(b'XY')
        rest = bytearray(6)
        sock.read(rest)
        assert bytes(rest) == b'XYcdef'

    def test_pushback_served_before_transport(self, fake_socket):
        """读操作先取回退缓冲区，再从传输层读取剩余部分"""
        sock, transport = fake_socket([b'tail'])
        sock.set_flags(SocketFlags.WAITALL)
        sock.unread(b'head-')

        buffer = bytearray(9)
        sock.read(buffer)
        assert not sock.error
        assert bytes(buffer) == b'head-tail'
        assert transport.read_sizes == [4]


class TestPeek:
    """peek 测试"""

    def test_peek_is_idempotent(self, fake_socket):
        """连续 peek 得到相同的数据，之后的 read 仍从头开始"""
        sock, _ = fake_socket([b'hello world'])
        before = len(sock.pushback)

        first = bytearray(5)
        second = bytearray(5)
        sock.peek(first)
        sock.peek(second)
        assert bytes(first) == bytes(second) == b'hello'

        consumed = bytearray(5)
        sock.read(consumed)
        assert bytes(consumed) == b'hello'
        assert len(sock.pushback) == before

        sock.unread(consumed)

        buffer = bytearray(11)
        sock.set_flags(SocketFlags.WAITALL)
        sock.read(buffer)
        assert sock.last_count == 11
        assert bytes(buffer) == b'hello world'

    def test_peek_without_data(self, fake_socket):
        """没有数据时 peek 失败且不修改回退缓冲区"""
        sock, _ = fake_socket()
        sock.peek(bytearray(4))
        assert sock.error
        assert sock.last_count == 0
        assert not sock.pushback
