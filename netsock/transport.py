"""
netsock - 传输层模块

本模块定义了 netsock 套接字所依赖的底层传输能力接口（Transport），
以及基于标准库 socket/select 的实现（SocketTransport）。

Transport 只负责单次系统调用级别的操作：连接、读、写、关闭、
就绪状态查询和地址管理。缓冲、等待循环和读写策略都由上层
SocketBase 实现。

就绪标志:
- INPUT: 有数据可读（或读操作会立即返回）
- OUTPUT: 可以写入
- CONNECTION: 连接已建立（客户端）或有新连接到达（服务器）
- LOST: 连接已断开

通知采用边沿触发：每个标志在被检测到后只触发一次，
INPUT 在每次读取后重新启用，OUTPUT 在写入未能全部完成后重新启用。
"""

import errno
import select
import socket
import logging
from abc import ABC, abstractmethod
from enum import IntEnum, IntFlag
from typing import Any, Callable, Dict, Optional, Tuple

from .address import IPAddress

logger = logging.getLogger('netsock-transport')

_CONNECT_IN_PROGRESS = (errno.EINPROGRESS, errno.EWOULDBLOCK, errno.EALREADY, 10035)
_LISTEN_BACKLOG = 5


# ============================================================================
# 就绪标志和通知类型
# ============================================================================

class Notification(IntEnum):
    """
    传输层通知类型
    """
    INPUT = 0
    OUTPUT = 1
    CONNECTION = 2
    LOST = 3

    @property
    def flag(self) -> 'EventFlag':
        return EventFlag(1 << self.value)


class EventFlag(IntFlag):
    """
    就绪标志位，可组合使用
    """
    NONE = 0
    INPUT = 1 << Notification.INPUT
    OUTPUT = 1 << Notification.OUTPUT
    CONNECTION = 1 << Notification.CONNECTION
    LOST = 1 << Notification.LOST
    ALL = INPUT | OUTPUT | CONNECTION | LOST


class TransportError(IntEnum):
    """
    传输层操作结果
    """
    NOERROR = 0
    INVSOCK = 1
    INVADDR = 2
    INVSTATE = 3
    IOERR = 4
    WOULDBLOCK = 5
    TIMEDOUT = 6
    MEMERR = 7


# 回调签名: callback(transport, notification, context)
TransportCallback = Callable[['Transport', Notification, Any], None]


# ============================================================================
# 传输层接口
# ============================================================================

class Transport(ABC):
    """
    底层传输能力接口

    read/write 返回传输的字节数，出错或超时返回 -1。
    阻塞模式下读写最多等待 set_timeout 设置的时间。
    """

    @abstractmethod
    def connect(self, stream: bool = True) -> TransportError:
        """连接到 set_peer 设置的对端"""

    @abstractmethod
    def read(self, view: memoryview) -> int:
        """读取数据到 view，返回读取的字节数"""

    @abstractmethod
    def write(self, view: memoryview) -> int:
        """写入 view 中的数据，返回写入的字节数"""

    @abstractmethod
    def shutdown(self):
        """关闭连接并释放系统句柄"""

    @abstractmethod
    def set_non_blocking(self, non_blocking: bool):
        """设置非阻塞模式"""

    @abstractmethod
    def set_timeout(self, milliseconds: int):
        """设置阻塞操作的超时时间（毫秒）"""

    @abstractmethod
    def select(self, flags: EventFlag, timeout_ms: Optional[int] = None) -> EventFlag:
        """查询就绪状态，最多等待 timeout_ms（默认使用 set_timeout 的值）"""

    @abstractmethod
    def get_local(self) -> Optional[IPAddress]:
        """获取本地地址"""

    @abstractmethod
    def get_peer(self) -> Optional[IPAddress]:
        """获取对端地址（数据报套接字为最近一次收到数据的来源）"""

    @abstractmethod
    def set_peer(self, address: Optional[IPAddress]) -> TransportError:
        """设置对端地址（数据报套接字为本次发送的目标，None 表示清除）"""

    @abstractmethod
    def set_local(self, address: IPAddress) -> TransportError:
        """设置绑定的本地地址"""

    @abstractmethod
    def set_reusable(self):
        """创建系统套接字时启用 SO_REUSEADDR"""

    def close(self):
        """释放传输层，取消所有回调"""
        self.unset_callback(EventFlag.ALL)
        self.shutdown()

    def set_server(self) -> TransportError:
        return TransportError.INVSOCK

    def wait_connection(self) -> Optional['Transport']:
        return None

    def set_non_oriented(self) -> TransportError:
        return TransportError.INVSOCK

    def set_callback(self, flags: EventFlag, callback: TransportCallback, context: Any = None):
        pass

    def unset_callback(self, flags: EventFlag):
        pass

    def dispatch_events(self):
        """由事件循环调用，触发已就绪的通知回调"""

    def poll_interest(self) -> EventFlag:
        """
        事件循环需要监视的方向

        Returns:
            EventFlag: INPUT 表示监视可读，OUTPUT 表示监视可写
        """
        return EventFlag.NONE

    def get_sock_opt(self, level: int, optname: int, buflen: int = 0):
        raise OSError(errno.ENOTSOCK, "传输层不支持套接字选项")

    def set_sock_opt(self, level: int, optname: int, value) -> TransportError:
        return TransportError.INVSOCK

    def fileno(self) -> int:
        return -1


# ============================================================================
# 基于系统套接字的实现
# ============================================================================

class SocketTransport(Transport):
    """
    基于标准库 socket 的 IPv4 传输层

    系统套接字始终处于非阻塞模式，阻塞语义通过 select 加超时实现。

    Attributes:
        stream: True 表示 TCP，False 表示 UDP
    """

    def __init__(self, sock: Optional[socket.socket] = None, stream: bool = True):
        self.stream = stream
        self._sock = sock
        self._server = False
        self._establishing = False
        self._dgram_connected = False
        self._non_blocking = False
        self._reusable = False
        self._timeout_ms = 10 * 60 * 1000
        self._local: Optional[IPAddress] = None
        self._peer: Optional[IPAddress] = None
        self._detected = EventFlag.NONE
        self._armed = EventFlag.ALL
        self._callbacks: Dict[Notification, Tuple[TransportCallback, Any]] = {}

        if sock is not None:
            sock.setblocking(False)

    # ------------------------------------------------------------------
    # 内部辅助
    # ------------------------------------------------------------------

    def _new_socket(self, kind: int) -> socket.socket:
        sock = socket.socket(socket.AF_INET, kind)
        if self._reusable:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        return sock

    def _release(self):
        if self._sock is not None:
            self._sock.close()
            self._sock = None

    def _wait_ready(self, for_write: bool, timeout_ms: int) -> bool:
        if self._sock is None:
            return False
        rlist, wlist = ([], [self._sock]) if for_write else ([self._sock], [])
        try:
            r, w, _ = select.select(rlist, wlist, [], max(timeout_ms, 0) / 1000.0)
        except (OSError, ValueError):
            return False
        return bool(r or w)

    def _on_connected(self):
        self._establishing = False
        try:
            self._local = IPAddress.from_sockaddr(self._sock.getsockname())
        except OSError:
            pass

    def _finish_connect(self) -> bool:
        err = self._sock.getsockopt(socket.SOL_SOCKET, socket.SO_ERROR)
        self._establishing = False
        if err:
            logger.debug(f"连接 {self._peer} 失败: {errno.errorcode.get(err, err)}")
            self._detected |= EventFlag.LOST
            return False
        self._on_connected()
        return True

    # ------------------------------------------------------------------
    # 连接管理
    # ------------------------------------------------------------------

    def connect(self, stream: bool = True) -> TransportError:
        if self._peer is None:
            return TransportError.INVADDR

        if not stream:
            if self._sock is None:
                return TransportError.INVSOCK
            try:
                self._sock.connect(self._peer.to_sockaddr())
            except OSError as e:
                logger.debug(f"数据报套接字连接 {self._peer} 失败: {e}")
                return TransportError.INVADDR
            self._dgram_connected = True
            return TransportError.NOERROR

        self._release()
        self.stream = True
        self._detected = EventFlag.NONE
        self._armed = EventFlag.ALL
        try:
            self._sock = self._new_socket(socket.SOCK_STREAM)
            if self._local is not None:
                self._sock.bind(self._local.to_sockaddr())
            self._sock.setblocking(False)
            err = self._sock.connect_ex(self._peer.to_sockaddr())
        except (socket.gaierror, UnicodeError) as e:
            logger.debug(f"无法解析地址 {self._peer}: {e}")
            self._release()
            return TransportError.INVADDR
        except OSError as e:
            logger.debug(f"创建套接字失败: {e}")
            self._release()
            return TransportError.IOERR

        if err == 0:
            self._on_connected()
            return TransportError.NOERROR

        if err not in _CONNECT_IN_PROGRESS:
            logger.debug(f"连接 {self._peer} 失败: {errno.errorcode.get(err, err)}")
            self._release()
            return TransportError.IOERR

        self._establishing = True
        if self._non_blocking:
            return TransportError.WOULDBLOCK

        if not self._wait_ready(True, self._timeout_ms):
            self._release()
            self._establishing = False
            return TransportError.TIMEDOUT

        if not self._finish_connect():
            self._release()
            return TransportError.IOERR
        return TransportError.NOERROR

    def set_server(self) -> TransportError:
        if self._local is None:
            return TransportError.INVADDR

        self._release()
        try:
            self._sock = self._new_socket(socket.SOCK_STREAM)
            self._sock.bind(self._local.to_sockaddr())
            self._sock.listen(_LISTEN_BACKLOG)
            self._sock.setblocking(False)
        except OSError as e:
            logger.warning(f"监听 {self._local} 失败: {e}")
            self._release()
            return TransportError.IOERR

        self._server = True
        self._on_connected()
        return TransportError.NOERROR

    def wait_connection(self) -> Optional['SocketTransport']:
        if not self._server or self._sock is None:
            return None
        if not self._non_blocking and not self._wait_ready(False, self._timeout_ms):
            return None

        try:
            child, addr = self._sock.accept()
        except OSError:
            return None
        finally:
            self._armed |= EventFlag.CONNECTION

        transport = SocketTransport(child)
        transport._peer = IPAddress.from_sockaddr(addr)
        transport._on_connected()
        transport._timeout_ms = self._timeout_ms
        return transport

    def set_non_oriented(self) -> TransportError:
        self._release()
        self.stream = False
        try:
            self._sock = self._new_socket(socket.SOCK_DGRAM)
            self._sock.bind((self._local or IPAddress()).to_sockaddr())
            self._sock.setblocking(False)
        except OSError as e:
            logger.warning(f"绑定数据报地址 {self._local} 失败: {e}")
            self._release()
            return TransportError.IOERR

        self._on_connected()
        return TransportError.NOERROR

    def shutdown(self):
        if self._sock is None:
            return
        try:
            self._sock.shutdown(socket.SHUT_RDWR)
        except OSError:
            # 未连接的套接字无法 shutdown
            pass
        self._release()
        self._establishing = False
        self._detected |= EventFlag.LOST

    # ------------------------------------------------------------------
    # 数据传输
    # ------------------------------------------------------------------

    def read(self, view: memoryview) -> int:
        if self._sock is None:
            return -1
        if not self._non_blocking and not self._wait_ready(False, self._timeout_ms):
            return -1

        self._armed |= EventFlag.INPUT
        try:
            if self.stream:
                count = self._sock.recv_into(view)
            else:
                count, addr = self._sock.recvfrom_into(view)
                if not self._dgram_connected:
                    self._peer = IPAddress.from_sockaddr(addr)
        except BlockingIOError:
            return -1
        except OSError as e:
            logger.debug(f"读取失败: {e}")
            self._detected |= EventFlag.LOST
            return -1

        if count == 0 and self.stream:
            self._detected |= EventFlag.LOST
        return count

    def write(self, view: memoryview) -> int:
        if self._sock is None:
            return -1
        if not self._non_blocking and not self._wait_ready(True, self._timeout_ms):
            return -1

        try:
            if self.stream or self._dgram_connected:
                count = self._sock.send(view)
            elif self._peer is None:
                return -1
            else:
                count = self._sock.sendto(view, self._peer.to_sockaddr())
        except BlockingIOError:
            self._armed |= EventFlag.OUTPUT
            return -1
        except OSError as e:
            logger.debug(f"写入失败: {e}")
            self._detected |= EventFlag.LOST
            return -1

        if count < len(view):
            self._armed |= EventFlag.OUTPUT
        return count

    # ------------------------------------------------------------------
    # 就绪状态
    # ------------------------------------------------------------------

    def select(self, flags: EventFlag, timeout_ms: Optional[int] = None) -> EventFlag:
        if self._sock is None or self._detected & EventFlag.LOST:
            return flags & EventFlag.LOST

        timeout_ms = self._timeout_ms if timeout_ms is None else timeout_ms
        sock = self._sock
        rlist = [sock] if not self._establishing and (
            self._server or flags & (EventFlag.INPUT | EventFlag.LOST)) else []
        wlist = [sock] if self._establishing or (
            not self._server and flags & EventFlag.OUTPUT) else []
        if not rlist and not wlist:
            return EventFlag.NONE

        try:
            r, w, _ = select.select(rlist, wlist, [], max(timeout_ms, 0) / 1000.0)
        except (OSError, ValueError):
            self._detected |= EventFlag.LOST
            return flags & EventFlag.LOST

        result = EventFlag.NONE
        if self._establishing:
            if w:
                if self._finish_connect():
                    result |= EventFlag.CONNECTION | EventFlag.OUTPUT
                else:
                    result |= EventFlag.LOST
        elif self._server:
            if r:
                result |= EventFlag.CONNECTION
        else:
            if r:
                result |= self._probe_input()
            if w:
                result |= EventFlag.OUTPUT

        return result & (flags | EventFlag.CONNECTION)

    def _probe_input(self) -> EventFlag:
        if not self.stream:
            return EventFlag.INPUT
        try:
            data = self._sock.recv(1, socket.MSG_PEEK)
        except BlockingIOError:
            return EventFlag.NONE
        except OSError:
            self._detected |= EventFlag.LOST
            return EventFlag.LOST
        if not data:
            self._detected |= EventFlag.LOST
            return EventFlag.LOST
        return EventFlag.INPUT

    def set_callback(self, flags: EventFlag, callback: TransportCallback, context: Any = None):
        for notification in Notification:
            if flags & notification.flag:
                self._callbacks[notification] = (callback, context)

    def unset_callback(self, flags: EventFlag):
        for notification in Notification:
            if flags & notification.flag:
                self._callbacks.pop(notification, None)

    def dispatch_events(self):
        if self._sock is None and not self._detected & EventFlag.LOST:
            return
        if not self._callbacks:
            return

        detected = self.select(EventFlag.ALL, timeout_ms=0)
        for notification in (Notification.CONNECTION, Notification.INPUT,
                             Notification.OUTPUT, Notification.LOST):
            flag = notification.flag
            if not (detected & flag and self._armed & flag):
                continue
            self._armed &= ~flag
            entry = self._callbacks.get(notification)
            if entry is not None:
                callback, context = entry
                callback(self, notification, context)

    def poll_interest(self) -> EventFlag:
        if self._sock is None or not self._callbacks:
            return EventFlag.NONE
        if self._detected & EventFlag.LOST:
            # 连接断开后只等待尚未投递的 LOST 通知
            if self._armed & EventFlag.LOST:
                return EventFlag.INPUT
            return EventFlag.NONE
        if self._establishing:
            return EventFlag.OUTPUT
        interest = EventFlag.NONE
        if self._armed & (EventFlag.INPUT | EventFlag.CONNECTION):
            interest |= EventFlag.INPUT
        if not self._server and self._armed & EventFlag.OUTPUT:
            interest |= EventFlag.OUTPUT
        return interest

    # ------------------------------------------------------------------
    # 属性和选项
    # ------------------------------------------------------------------

    def set_non_blocking(self, non_blocking: bool):
        self._non_blocking = bool(non_blocking)

    def set_timeout(self, milliseconds: int):
        self._timeout_ms = max(int(milliseconds), 0)

    @property
    def timeout_ms(self) -> int:
        return self._timeout_ms

    def set_reusable(self):
        self._reusable = True

    def set_local(self, address: IPAddress) -> TransportError:
        if self._server or (self._sock is not None and self.stream):
            return TransportError.INVSTATE
        self._local = address
        return TransportError.NOERROR

    def set_peer(self, address: Optional[IPAddress]) -> TransportError:
        if self._server:
            return TransportError.INVSTATE
        self._peer = address
        return TransportError.NOERROR

    def get_local(self) -> Optional[IPAddress]:
        if self._sock is not None:
            try:
                return IPAddress.from_sockaddr(self._sock.getsockname())
            except OSError:
                pass
        return self._local

    def get_peer(self) -> Optional[IPAddress]:
        return self._peer

    def get_sock_opt(self, level: int, optname: int, buflen: int = 0):
        if self._sock is None:
            raise OSError(errno.EBADF, "套接字未初始化")
        if buflen:
            return self._sock.getsockopt(level, optname, buflen)
        return self._sock.getsockopt(level, optname)

    def set_sock_opt(self, level: int, optname: int, value) -> TransportError:
        if self._sock is None:
            return TransportError.INVSOCK
        try:
            self._sock.setsockopt(level, optname, value)
        except OSError as e:
            logger.debug(f"设置套接字选项失败: {e}")
            return TransportError.IOERR
        return TransportError.NOERROR

    def fileno(self) -> int:
        return self._sock.fileno() if self._sock is not None else -1
