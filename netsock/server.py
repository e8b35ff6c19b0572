"""
netsock - 服务器套接字

SocketServer 在本地地址上监听，并把接受的连接交给 SocketBase 对象。
"""

import logging
from typing import Callable, Optional

from .address import IPAddress
from .base import SocketBase, SocketFlags, SocketType
from .transport import EventFlag, SocketTransport, Transport, TransportError

logger = logging.getLogger('netsock-server')


class SocketServer(SocketBase):
    """
    监听套接字

    监听失败时 ok 为 False。
    """

    def __init__(self, address: IPAddress, flags: SocketFlags = SocketFlags.NONE, loop=None,
                 transport_factory: Callable[[], Transport] = SocketTransport):
        super().__init__(flags, SocketType.SERVER, loop)

        transport = transport_factory()
        transport.set_local(address)
        if self.flags & SocketFlags.REUSEADDR:
            transport.set_reusable()

        if transport.set_server() != TransportError.NOERROR:
            logger.warning(f"无法在 {address} 上监听")
            transport.close()
            return

        self.attach_transport(transport)
        logger.debug(f"监听 {self.get_local()}")

    def accept_with(self, sock: SocketBase, wait: bool = True) -> bool:
        """
        接受一个连接并交给 sock

        Args:
            sock: 接收连接的套接字
            wait: False 时只尝试一次非阻塞接受

        Returns:
            bool: 成功接受返回 True
        """
        if self._transport is None:
            return False

        if not wait:
            self._transport.set_non_blocking(True)
        child = self._transport.wait_connection()
        if not wait:
            self._transport.set_non_blocking(False)

        if child is None:
            return False

        sock.type = SocketType.BASE
        sock.attach_transport(child)
        sock.set_connection_state(True)
        logger.debug(f"接受来自 {child.get_peer()} 的连接")
        return True

    def accept(self, wait: bool = True) -> Optional[SocketBase]:
        """
        接受一个连接

        Returns:
            Optional[SocketBase]: 新连接的套接字（继承服务器的标志位），失败返回 None
        """
        sock = SocketBase(self.flags, loop=self.loop)
        if not self.accept_with(sock, wait):
            sock.destroy()
            return None
        return sock

    def wait_for_accept(self, seconds: int = -1, milliseconds: int = 0) -> bool:
        return self._wait(seconds, milliseconds, EventFlag.CONNECTION)
