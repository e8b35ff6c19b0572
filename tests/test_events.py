"""
事件通知和 EventLoop 测试
"""

import logging

from netsock import (
    EventFlag, EventLoop, IPAddress, Notification, SocketClient, SocketEvent, SocketServer,
)


def _has(events, notification):
    return any(event.event_type == notification for event in events)


class TestEventLoop:
    """EventLoop 队列测试"""

    def test_post_is_deferred(self):
        """post 只入队，处理器在 process_pending 时才被调用"""
        loop = EventLoop()
        try:
            received = []
            event = SocketEvent(Notification.INPUT, socket=None, id=3)
            loop.post(received.append, event)
            assert received == []
            assert loop.process_pending() == 1
            assert received == [event]
        finally:
            loop.close()

    def test_events_posted_by_handler_wait_for_next_round(self):
        loop = EventLoop()
        try:
            order = []

            def first(event):
                order.append('first')
                loop.post(lambda e: order.append('second'), event)

            loop.post(first, SocketEvent(Notification.OUTPUT, socket=None))
            loop.process_pending()
            assert order == ['first']
            loop.process_pending()
            assert order == ['first', 'second']
        finally:
            loop.close()

    def test_handler_exception_logged(self, caplog):
        """处理器异常被记录，后续事件继续分发"""
        loop = EventLoop()
        try:
            received = []

            def broken(event):
                raise RuntimeError('boom')

            loop.post(broken, SocketEvent(Notification.INPUT, socket=None))
            loop.post(received.append, SocketEvent(Notification.LOST, socket=None))
            with caplog.at_level(logging.ERROR, logger='netsock-events'):
                assert loop.process_pending() == 2
            assert len(received) == 1
            assert caplog.records
        finally:
            loop.close()

    def test_run_until(self):
        loop = EventLoop()
        try:
            done = []
            loop.post(done.append, SocketEvent(Notification.INPUT, socket=None))
            assert loop.run(until=lambda: done, timeout=1.0)
            assert not loop.run(until=lambda: False, timeout=0.1)
        finally:
            loop.close()


class TestSocketNotifications:
    """真实连接上的通知投递"""

    def test_input_and_lost(self, loopback_pair):
        loop = EventLoop()
        try:
            client, peer, _ = loopback_pair(loop=loop)
            events = []
            peer.set_event_handler(events.append, id=7)
            peer.set_client_data('ctx')
            peer.set_notify(EventFlag.INPUT | EventFlag.LOST)
            peer.notify(True)

            client.write(b'ping')
            # 调度器运行之前不会投递
            assert events == []

            assert loop.run(until=lambda: _has(events, Notification.INPUT), timeout=2.0)
            event = events[0]
            assert event.event_type == Notification.INPUT
            assert event.socket is peer
            assert event.id == 7
            assert event.client_data == 'ctx'

            buffer = bytearray(4)
            peer.read(buffer)
            assert bytes(buffer) == b'ping'

            client.close()
            assert loop.run(until=lambda: _has(events, Notification.LOST), timeout=2.0)
            assert not peer.is_connected()
        finally:
            loop.close()

    def test_masked_events_not_delivered(self, loopback_pair):
        """未订阅或未启用通知时不投递"""
        loop = EventLoop()
        try:
            client, peer, _ = loopback_pair(loop=loop)
            events = []
            peer.set_event_handler(events.append)
            peer.set_notify(EventFlag.LOST)
            peer.notify(True)

            client.write(b'ping')
            loop.run(timeout=0.3)
            assert events == []

            peer.notify(False)
            client.close()
            loop.run(timeout=0.3)
            assert events == []
        finally:
            loop.close()

    def test_connection_notification(self):
        """新连接到达时服务器收到 CONNECTION 通知"""
        loop = EventLoop()
        server = SocketServer(IPAddress('127.0.0.1', 0), loop=loop)
        client = SocketClient()
        try:
            events = []
            server.set_event_handler(events.append)
            server.set_notify(EventFlag.CONNECTION)
            server.notify(True)

            assert client.connect(IPAddress('127.0.0.1', server.get_local().port))
            assert loop.run(until=lambda: events, timeout=2.0)
            assert events[0].event_type == Notification.CONNECTION

            peer = server.accept(wait=False)
            assert peer is not None
            peer.destroy()
        finally:
            client.destroy()
            server.destroy()
            loop.close()

    def test_no_loop_drops_events(self, fake_socket):
        """没有调度器时通知被丢弃"""
        sock, _ = fake_socket([b'x'])
        events = []
        sock.set_event_handler(events.append)
        sock.set_notify(EventFlag.INPUT)
        sock.notify(True)
        sock.on_request(Notification.INPUT)
        assert events == []

    def test_input_suppressed_while_reading(self, fake_socket):
        loop = EventLoop()
        try:
            sock, _ = fake_socket([b'x'], loop=loop)
            sock.set_event_handler(lambda event: None)
            sock.set_notify(EventFlag.INPUT)
            sock.notify(True)

            sock._reading = True
            sock.on_request(Notification.INPUT)
            assert not loop.pending

            sock._reading = False
            sock.on_request(Notification.INPUT)
            assert len(loop.pending) == 1
        finally:
            loop.close()
