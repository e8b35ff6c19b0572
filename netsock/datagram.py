"""
netsock - 数据报套接字

DatagramSocket 提供无连接的发送和接收。调用 connect 固定对端后，
send_to/recv_from 只接受与固定对端完全相同的地址，
其他地址应改用 write/read。
"""

import logging
from typing import Callable, Optional

from .address import IPAddress
from .base import SocketBase, SocketFlags, SocketType
from .transport import SocketTransport, Transport, TransportError

logger = logging.getLogger('netsock-datagram')


class DatagramSocket(SocketBase):
    """
    数据报套接字

    Attributes:
        peer_address: connect 固定的对端地址
    """

    def __init__(self, address: IPAddress, flags: SocketFlags = SocketFlags.NONE, loop=None,
                 transport_factory: Callable[[], Transport] = SocketTransport):
        super().__init__(flags, SocketType.DATAGRAM, loop)
        self.peer_address: Optional[IPAddress] = None

        transport = transport_factory()
        transport.set_local(address)
        if self.flags & SocketFlags.REUSEADDR:
            transport.set_reusable()

        if transport.set_non_oriented() != TransportError.NOERROR:
            logger.warning(f"无法绑定数据报地址 {address}")
            transport.close()
            return

        self.attach_transport(transport)

    def connect(self, address: IPAddress) -> bool:
        """固定对端地址"""
        if self._transport is None:
            return False

        self._transport.set_peer(address)
        if self._transport.connect(stream=False) != TransportError.NOERROR:
            return False

        self.peer_address = address
        self.connected = True
        return True

    def _reject(self, address: Optional[IPAddress], operation: str) -> bool:
        if self._transport is None:
            self._error = True
            self._lcount = 0
            return True
        if not self.connected or address is None or address == self.peer_address:
            return False

        logger.warning(f"{operation}: 地址 {address} 与已连接的对端 {self.peer_address} 不同，"
                       f"请使用 {'write' if operation == 'send_to' else 'read'}")
        self._error = True
        self._lcount = 0
        return True

    def send_to(self, address: IPAddress, data, nbytes: Optional[int] = None) -> 'DatagramSocket':
        """
        向 address 发送一个数据报

        Returns:
            DatagramSocket: self，通过 error 和 last_count 获取结果
        """
        if self._reject(address, 'send_to'):
            return self

        if self.connected:
            self.write(data, nbytes)
            return self

        previous = self._transport.get_peer()
        self._transport.set_peer(address)
        try:
            self.write(data, nbytes)
        finally:
            # 目标地址只对本次发送有效
            self._transport.set_peer(previous)
        return self

    def recv_from(self, buffer, nbytes: Optional[int] = None,
                  address: Optional[IPAddress] = None) -> Optional[IPAddress]:
        """
        接收一个数据报

        Args:
            buffer: 可写缓冲区
            nbytes: 最多接收的字节数
            address: 期望的来源地址，仅用于检查已固定的对端

        Returns:
            Optional[IPAddress]: 发送方地址；被拒绝或读取失败时返回 None
        """
        if self._reject(address, 'recv_from'):
            return None

        self.read(buffer, nbytes)
        if self.error:
            return None
        return self.get_peer()
