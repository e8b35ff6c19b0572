"""
netsock - 套接字基础类

本模块定义了所有 netsock 套接字共享的核心功能，包括：
- 按标志位策略执行的读写（read/write/peek/unread/discard）
- 带签名和长度的消息帧读写（read_msg/write_msg）
- 回退缓冲区
- 就绪等待（委托给 WaitEngine）
- 状态保存/恢复栈
- 事件通知（延迟投递到 EventLoop）

读写操作不抛出 I/O 异常，结果通过 error 和 last_count 两个属性报告。

标志位组合（按以下顺序检查）:
- NOWAIT: 只尝试一次非阻塞传输
- WAITALL（可与 BLOCK 组合）: 必须传输全部请求的字节才算成功
- BLOCK: 不经过等待循环，直接执行阻塞传输
- NONE: 先等待就绪，再执行一次传输，允许部分传输
"""

import logging
from dataclasses import dataclass
from enum import Enum, IntEnum, IntFlag
from typing import Any, List, Optional, Tuple

from protocol import FRAME_HEADER_SIZE, MAX_DISCARD_SIZE, FrameHeader, make_header, make_trailer

from .address import IPAddress
from .events import EventHandler, SocketEvent
from .pushback import PushbackBuffer
from .transport import EventFlag, Notification, Transport, TransportError
from .wait import WaitEngine

logger = logging.getLogger('netsock-base')


# ============================================================================
# 标志位和状态
# ============================================================================

class SocketFlags(IntFlag):
    """
    套接字读写策略标志位
    """
    NONE = 0
    NOWAIT = 1
    WAITALL = 2
    BLOCK = 4
    REUSEADDR = 8


class SocketType(IntEnum):
    """
    套接字类型
    """
    UNINIT = 0
    CLIENT = 1
    SERVER = 2
    BASE = 3
    DATAGRAM = 4


class Direction(Enum):
    READ = 'read'
    WRITE = 'write'


@dataclass
class SocketState:
    """
    save_state 保存的套接字配置快照

    Attributes:
        flags: 读写策略标志位
        notify: 是否启用事件通知
        event_mask: 订阅的事件标志
        client_data: 客户数据
    """
    flags: SocketFlags
    notify: bool
    event_mask: EventFlag
    client_data: Any


def _socket_callback(transport: Transport, notification: Notification, context: 'SocketBase'):
    """传输层回调，context 为注册回调时传入的套接字"""
    context.on_request(notification)


# ============================================================================
# 套接字基础类
# ============================================================================

class SocketBase:
    """
    套接字基础类

    每个套接字独占一个传输层对象，关闭或销毁套接字时一并释放。
    不进行内部加锁，同一个套接字的调用必须由调用者串行化。

    Attributes:
        type: 套接字类型
        flags: 读写策略标志位
        loop: 协作调度器（EventLoop），为 None 时等待循环自行控制节奏
        connected: 是否已连接
        establishing: 是否正在建立连接（非阻塞连接进行中）
        timeout: 默认超时时间（秒）
        pushback: 回退缓冲区
        local_address: set_local 设置的本地地址
        handler: 事件处理器（不持有所有权）
        id: 事件处理器标识
        client_data: 随事件投递的客户数据
        event_mask: 订阅的事件标志
    """

    DEFAULT_TIMEOUT = 600

    def __init__(self, flags: SocketFlags = SocketFlags.NONE,
                 socket_type: SocketType = SocketType.UNINIT, loop=None):
        self._transport: Optional[Transport] = None
        self.type = socket_type
        self.flags = SocketFlags(flags)
        self.loop = loop

        # 状态
        self.connected = False
        self.establishing = False
        self._reading = False
        self._writing = False
        self._error = False
        self._lcount = 0
        self.timeout = self.DEFAULT_TIMEOUT
        self.being_deleted = False

        self.pushback = PushbackBuffer()
        self.local_address: Optional[IPAddress] = None
        self._states: List[SocketState] = []
        self._waiter = WaitEngine(self)

        # 事件
        self.id = -1
        self.handler: Optional[EventHandler] = None
        self.client_data: Any = None
        self._notify = False
        self.event_mask = EventFlag.NONE

    # ------------------------------------------------------------------
    # 传输层管理
    # ------------------------------------------------------------------

    @property
    def transport(self) -> Optional[Transport]:
        return self._transport

    def attach_transport(self, transport: Transport):
        """
        接管传输层：设置超时、注册回调并加入调度器

        Args:
            transport: 新的传输层对象，由本套接字独占
        """
        if self._transport is not None and self._transport is not transport:
            self._release_transport()

        self._transport = transport
        transport.set_timeout(self.timeout * 1000)
        transport.set_callback(EventFlag.ALL, _socket_callback, self)
        if self.loop is not None:
            self.loop.register(transport)

    def _release_transport(self):
        transport = self._transport
        if transport is None:
            return
        self._transport = None
        transport.unset_callback(EventFlag.ALL)
        if self.loop is not None:
            self.loop.unregister(transport)
        transport.close()

    def close(self) -> bool:
        """
        关闭连接

        中断正在进行的等待，取消回调，关闭并释放传输层。

        Returns:
            bool: 总是返回 True
        """
        self.interrupt_wait()
        self._release_transport()
        self.connected = False
        self.establishing = False
        return True

    def destroy(self) -> bool:
        """关闭套接字并停止一切事件投递"""
        self.being_deleted = True
        self.close()
        self.notify(False)
        self.handler = None
        self.pushback.clear()
        self._states.clear()
        return True

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.destroy()

    # ------------------------------------------------------------------
    # 状态查询
    # ------------------------------------------------------------------

    @property
    def ok(self) -> bool:
        return self._transport is not None

    @property
    def error(self) -> bool:
        """最近一次 I/O 操作是否失败"""
        return self._error

    @property
    def last_count(self) -> int:
        """最近一次 I/O 操作传输的字节数"""
        return self._lcount

    @property
    def reading(self) -> bool:
        return self._reading

    @property
    def writing(self) -> bool:
        return self._writing

    def is_connected(self) -> bool:
        return self.connected

    def is_disconnected(self) -> bool:
        return not self.connected

    def is_data(self) -> bool:
        return self.wait_for_read(0, 0)

    def set_connection_state(self, connected: bool):
        """由等待循环和通知更新连接状态（connected 与 establishing 互斥）"""
        self.connected = connected
        self.establishing = False

    # ------------------------------------------------------------------
    # 基本读写
    # ------------------------------------------------------------------

    @staticmethod
    def _view(buffer, nbytes: Optional[int], writable: bool = False) -> memoryview:
        view = memoryview(buffer).cast('B')
        if writable and view.readonly:
            raise ValueError("读取需要可写的缓冲区")
        if nbytes is None:
            return view
        if nbytes < 0 or nbytes > len(view):
            raise ValueError(f"无效的字节数: {nbytes}（缓冲区大小 {len(view)}）")
        return view[:nbytes]

    def _update_error(self, requested: int):
        if self.flags & SocketFlags.WAITALL:
            self._error = self._lcount != requested
        else:
            self._error = self._lcount == 0

    def read(self, buffer, nbytes: Optional[int] = None) -> 'SocketBase':
        """
        读取数据到 buffer

        Args:
            buffer: 可写缓冲区（bytearray、memoryview 等）
            nbytes: 最多读取的字节数，默认为缓冲区大小

        Returns:
            SocketBase: self，通过 error 和 last_count 获取结果
        """
        view = self._view(buffer, nbytes, writable=True)

        # 读取期间屏蔽 INPUT 事件
        self._reading = True
        try:
            self._lcount = self._transfer(Direction.READ, view)
            self._update_error(len(view))
        finally:
            self._reading = False
        return self

    def write(self, data, nbytes: Optional[int] = None) -> 'SocketBase':
        """
        写入 data 中的数据

        Args:
            data: bytes-like 对象
            nbytes: 写入的字节数，默认为全部

        Returns:
            SocketBase: self，通过 error 和 last_count 获取结果
        """
        view = self._view(data, nbytes)

        self._writing = True
        try:
            self._lcount = self._transfer(Direction.WRITE, view)
            self._update_error(len(view))
        finally:
            self._writing = False
        return self

    def _transfer(self, direction: Direction, view: memoryview) -> int:
        """
        按当前标志位执行一次读或写

        读方向先从回退缓冲区取数据。

        Args:
            direction: 传输方向
            view: 读取目标或写入来源

        Returns:
            int: 传输的字节数
        """
        total = 0
        if direction is Direction.READ:
            total = self.pushback.take(view)
            view = view[total:]

        transport = self._transport
        if transport is None or not len(view):
            return total

        if direction is Direction.READ:
            operation, wait_ready = transport.read, self.wait_for_read
        else:
            operation, wait_ready = transport.write, self.wait_for_write

        if self.flags & SocketFlags.NOWAIT:
            transport.set_non_blocking(True)
            ret = operation(view)
            transport.set_non_blocking(False)
            if ret > 0:
                total += ret
            return total

        more = True
        while more:
            if not self.flags & SocketFlags.BLOCK and not wait_ready():
                break

            ret = operation(view)
            if ret > 0:
                total += ret
                view = view[ret:]

            # 未设置 WAITALL 时一次成功的传输后即返回
            more = ret > 0 and len(view) > 0 and bool(self.flags & SocketFlags.WAITALL)

        return total

    def peek(self, buffer, nbytes: Optional[int] = None) -> 'SocketBase':
        """读取数据但不消费：读到的数据放回回退缓冲区"""
        view = self._view(buffer, nbytes, writable=True)

        self._reading = True
        try:
            self._lcount = self._transfer(Direction.READ, view)
            self.pushback.push(view[:self._lcount])
            self._update_error(len(view))
        finally:
            self._reading = False
        return self

    def unread(self, data, nbytes: Optional[int] = None) -> 'SocketBase':
        """
        将数据放回套接字，后续读取最先得到这些数据

        Args:
            data: 要放回的数据
            nbytes: 放回的字节数，默认为全部

        Returns:
            SocketBase: self，error 总是 False，last_count 为 nbytes
        """
        view = self._view(data, nbytes)
        if len(view):
            self.pushback.push(view)

        self._error = False
        self._lcount = len(view)
        return self

    def discard(self) -> 'SocketBase':
        """
        丢弃当前可读的所有数据

        以 NOWAIT 模式反复读取，直到某次读取少于 MAX_DISCARD_SIZE 字节。
        last_count 为丢弃的总字节数，error 总是 False。
        """
        scratch = memoryview(bytearray(MAX_DISCARD_SIZE))
        total = 0

        self._reading = True
        old_flags = self.flags
        self.flags = SocketFlags.NOWAIT
        try:
            while True:
                ret = self._transfer(Direction.READ, scratch)
                total += ret
                if ret != MAX_DISCARD_SIZE:
                    break
        finally:
            self.flags = old_flags
            self._reading = False

        self._lcount = total
        self._error = False
        return self

    # ------------------------------------------------------------------
    # 消息帧读写
    # ------------------------------------------------------------------

    def write_msg(self, data, nbytes: Optional[int] = None) -> 'SocketBase':
        """
        以消息帧格式写入数据：帧头 + 负载 + 帧尾

        写入期间强制使用 WAITALL（保留原有的 BLOCK 位），结束后恢复原标志。
        last_count 为实际写入的负载字节数。
        """
        view = self._view(data, nbytes)

        self._writing = True
        old_flags = self.flags
        self.flags = (old_flags & SocketFlags.BLOCK) | SocketFlags.WAITALL
        try:
            self._error, self._lcount = self._write_frame(view)
        finally:
            self.flags = old_flags
            self._writing = False
        return self

    def _write_frame(self, view: memoryview) -> Tuple[bool, int]:
        header = memoryview(make_header(len(view)))
        if self._transfer(Direction.WRITE, header) < FRAME_HEADER_SIZE:
            return True, 0

        total = self._transfer(Direction.WRITE, view)
        if total < len(view):
            return True, total

        if self._transfer(Direction.WRITE, memoryview(make_trailer())) < FRAME_HEADER_SIZE:
            return True, total
        return False, total

    def read_msg(self, buffer, nbytes: Optional[int] = None) -> 'SocketBase':
        """
        读取一个消息帧的负载到 buffer

        负载长于 nbytes 时只保留前 nbytes 字节，其余字节被读出并丢弃
        （不计入 last_count），以保证下一个帧的边界不被破坏。
        签名无效时记录警告并返回错误。
        """
        view = self._view(buffer, nbytes, writable=True)

        self._reading = True
        old_flags = self.flags
        self.flags = (old_flags & SocketFlags.BLOCK) | SocketFlags.WAITALL
        try:
            self._error, self._lcount = self._read_frame(view)
        finally:
            self.flags = old_flags
            self._reading = False
        return self

    def _read_frame(self, view: memoryview) -> Tuple[bool, int]:
        raw = bytearray(FRAME_HEADER_SIZE)
        if self._transfer(Direction.READ, memoryview(raw)) != FRAME_HEADER_SIZE:
            return True, 0

        header = FrameHeader.deserialize(raw)
        if not header.is_header:
            logger.warning(f"read_msg: 无效的帧头签名 {header.signature:#010x}")
            return True, 0

        length = header.length
        overflow = 0
        if length > len(view):
            overflow = length - len(view)
            length = len(view)

        total = 0
        if length:
            total = self._transfer(Direction.READ, view[:length])
            if total != length:
                return True, total

        if overflow:
            scratch = memoryview(bytearray(min(overflow, MAX_DISCARD_SIZE)))
            while overflow:
                ret = self._transfer(Direction.READ, scratch[:min(overflow, MAX_DISCARD_SIZE)])
                overflow -= ret
                if ret <= 0:
                    break
            if overflow:
                return True, total

        if self._transfer(Direction.READ, memoryview(raw)) != FRAME_HEADER_SIZE:
            return True, total

        trailer = FrameHeader.deserialize(raw)
        if not trailer.is_trailer:
            logger.warning(f"read_msg: 无效的帧尾签名 {trailer.signature:#010x}")
            return True, total
        return False, total

    # ------------------------------------------------------------------
    # 等待
    # ------------------------------------------------------------------

    def _wait(self, seconds: int, milliseconds: int, flags: EventFlag) -> bool:
        return self._waiter.wait(seconds, milliseconds, flags)

    def wait(self, seconds: int = -1, milliseconds: int = 0) -> bool:
        """等待任意一种就绪条件"""
        return self._wait(seconds, milliseconds, EventFlag.ALL)

    def wait_for_read(self, seconds: int = -1, milliseconds: int = 0) -> bool:
        """
        等待可读

        回退缓冲区中有数据时立即返回 True。返回 True 表示读操作会立即返回，
        不一定有数据可读（连接断开时也返回 True）。
        """
        if self.pushback:
            return True
        return self._wait(seconds, milliseconds, EventFlag.INPUT | EventFlag.LOST)

    def wait_for_write(self, seconds: int = -1, milliseconds: int = 0) -> bool:
        return self._wait(seconds, milliseconds, EventFlag.OUTPUT)

    def wait_for_lost(self, seconds: int = -1, milliseconds: int = 0) -> bool:
        return self._wait(seconds, milliseconds, EventFlag.LOST)

    def interrupt_wait(self):
        self._waiter.interrupt()

    # ------------------------------------------------------------------
    # 地址和选项
    # ------------------------------------------------------------------

    def get_peer(self) -> Optional[IPAddress]:
        if self._transport is None:
            return None
        return self._transport.get_peer()

    def get_local(self) -> Optional[IPAddress]:
        if self._transport is None:
            return None
        return self._transport.get_local()

    def set_local(self, address: IPAddress) -> bool:
        """保存本地地址，供之后的 connect 绑定使用"""
        if address is None or not address.host:
            return False
        self.local_address = address
        return True

    def get_option(self, level: int, optname: int, buflen: int = 0):
        """
        读取套接字选项

        Returns:
            选项值，失败时返回 None
        """
        if self._transport is None:
            return None
        try:
            return self._transport.get_sock_opt(level, optname, buflen)
        except OSError as e:
            logger.debug(f"读取套接字选项失败: {e}")
            return None

    def set_option(self, level: int, optname: int, value) -> bool:
        if self._transport is None:
            return False
        return self._transport.set_sock_opt(level, optname, value) == TransportError.NOERROR

    # ------------------------------------------------------------------
    # 配置和状态栈
    # ------------------------------------------------------------------

    def save_state(self):
        self._states.append(SocketState(
            flags=self.flags,
            notify=self._notify,
            event_mask=self.event_mask,
            client_data=self.client_data,
        ))

    def restore_state(self):
        """恢复最近一次 save_state 保存的配置，栈为空时不做任何事"""
        if not self._states:
            return
        state = self._states.pop()
        self.flags = state.flags
        self._notify = state.notify
        self.event_mask = state.event_mask
        self.client_data = state.client_data

    def set_timeout(self, seconds: int):
        self.timeout = seconds
        if self._transport is not None:
            self._transport.set_timeout(seconds * 1000)

    def set_flags(self, flags: SocketFlags):
        self.flags = SocketFlags(flags)

    # ------------------------------------------------------------------
    # 事件通知
    # ------------------------------------------------------------------

    def on_request(self, notification: Notification):
        """
        处理传输层通知

        更新连接状态，过滤读写进行中以及已经失效的就绪通知，
        然后把事件投递到调度器队列，由调度器稍后分发给处理器。

        Args:
            notification: 通知类型
        """
        if notification == Notification.CONNECTION:
            self.set_connection_state(True)
        elif notification == Notification.INPUT:
            if self._reading or self._transport is None or \
                    not self._transport.select(EventFlag.INPUT, timeout_ms=0):
                return
        elif notification == Notification.OUTPUT:
            if self._writing or self._transport is None or \
                    not self._transport.select(EventFlag.OUTPUT, timeout_ms=0):
                return
        elif notification == Notification.LOST:
            self.set_connection_state(False)

        flag = notification.flag
        if (self.event_mask & flag) != flag or not self._notify or self.handler is None:
            return
        if self.loop is None:
            logger.debug(f"没有调度器，丢弃事件: {notification.name}")
            return

        event = SocketEvent(
            event_type=notification,
            socket=self,
            id=self.id,
            client_data=self.client_data,
        )
        self.loop.post(self.handler, event)

    def notify(self, enable: bool):
        """启用或禁用事件通知"""
        self._notify = bool(enable)

    @property
    def notify_enabled(self) -> bool:
        return self._notify

    def set_notify(self, flags: EventFlag):
        """设置订阅的事件标志"""
        self.event_mask = EventFlag(flags)

    def set_event_handler(self, handler: EventHandler, id: int = -1):
        self.handler = handler
        self.id = id

    def set_client_data(self, data: Any):
        self.client_data = data
