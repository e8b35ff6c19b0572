"""
netsock 套接字包

本包提供了建立在系统套接字之上的缓冲、可配置阻塞策略的流和数据报 I/O，
主要功能包括：
- 按标志位（NOWAIT / WAITALL / BLOCK）控制的读写
- 回退缓冲区（peek / unread）
- 自带的就绪等待循环，可与 EventLoop 协作
- 带签名和长度的消息帧（read_msg / write_msg）
- SOCKS4/4a 代理连接
- 数据报套接字

使用示例：
    from netsock import SocketClient, IPAddress

    client = SocketClient()
    if client.connect(IPAddress('127.0.0.1', 9000)):
        client.write_msg(b'hello')
        buffer = bytearray(1024)
        client.read_msg(buffer)
        print(bytes(buffer[:client.last_count]))
"""

from .address import IPAddress, resolve_ipv4
from .transport import (
    EventFlag,
    Notification,
    TransportError,
    Transport,
    SocketTransport,
)
from .pushback import PushbackBuffer
from .events import SocketEvent, EventLoop
from .wait import WaitEngine
from .base import SocketBase, SocketFlags, SocketType, SocketState
from .client import SocketClient, ProxyType
from .server import SocketServer
from .datagram import DatagramSocket

__all__ = [
    'IPAddress',
    'resolve_ipv4',
    'EventFlag',
    'Notification',
    'TransportError',
    'Transport',
    'SocketTransport',
    'PushbackBuffer',
    'SocketEvent',
    'EventLoop',
    'WaitEngine',
    'SocketBase',
    'SocketFlags',
    'SocketType',
    'SocketState',
    'SocketClient',
    'ProxyType',
    'SocketServer',
    'DatagramSocket',
]
