"""
netsock - 事件通知和协作调度模块

本模块提供了套接字通知的延迟投递机制。传输层检测到就绪变化后，
SocketBase.on_request 只把事件放入 EventLoop 的待处理队列；
事件在调度器下一次运行时才被分发给处理器，因此处理器永远不会
嵌套在触发它的 read/write 调用内部执行。

EventLoop 同时也是 WaitEngine 使用的协作调度器：阻塞等待的每一轮
都会调用一次 yield_once，让其他套接字的通知有机会被处理。
"""

import logging
import selectors
import time
from collections import deque
from dataclasses import dataclass
from typing import Any, Callable, Deque, Dict, Optional, Tuple

from .transport import EventFlag, Notification, Transport

logger = logging.getLogger('netsock-events')


@dataclass
class SocketEvent:
    """
    套接字事件

    Attributes:
        event_type: 通知类型
        socket: 产生事件的套接字
        id: 注册处理器时指定的标识
        client_data: 套接字上附带的客户数据
    """
    event_type: Notification
    socket: Any
    id: int = -1
    client_data: Any = None


EventHandler = Callable[[SocketEvent], None]


class EventLoop:
    """
    单线程协作调度器

    Attributes:
        pending: 待分发的 (处理器, 事件) 队列
    """

    def __init__(self):
        self.pending: Deque[Tuple[EventHandler, SocketEvent]] = deque()
        self._transports: Dict[int, Transport] = {}
        self._selector = selectors.DefaultSelector()

    def register(self, transport: Transport):
        """注册需要检测就绪变化的传输层"""
        self._transports[id(transport)] = transport
        self._sync_selector()

    def unregister(self, transport: Transport):
        self._transports.pop(id(transport), None)
        self._sync_selector()

    def _sync_selector(self):
        if self._selector is None:
            return
        wanted = {}
        for transport in self._transports.values():
            fd = transport.fileno()
            interest = transport.poll_interest()
            mask = 0
            if interest & EventFlag.INPUT:
                mask |= selectors.EVENT_READ
            if interest & EventFlag.OUTPUT:
                mask |= selectors.EVENT_WRITE
            if fd >= 0 and mask:
                wanted[fd] = (transport, mask)

        for key in list(self._selector.get_map().values()):
            entry = wanted.get(key.fd)
            if entry is None or entry[0] is not key.data:
                self._selector.unregister(key.fileobj)
        for fd, (transport, mask) in wanted.items():
            key = self._selector.get_map().get(fd)
            if key is None:
                self._selector.register(fd, mask, transport)
            elif key.events != mask:
                self._selector.modify(fd, mask, transport)

    def post(self, handler: EventHandler, event: SocketEvent):
        """将事件加入待处理队列（不立即调用处理器）"""
        self.pending.append((handler, event))

    def process_pending(self) -> int:
        """
        分发当前队列中的所有事件

        处理器中新投递的事件留到下一轮处理。处理器内部的阻塞等待
        会嵌套调用 yield_once，队列可能在这里被提前取空。

        Returns:
            int: 分发的事件数
        """
        count = 0
        for _ in range(len(self.pending)):
            if not self.pending:
                break
            handler, event = self.pending.popleft()
            count += 1
            try:
                handler(event)
            except Exception as e:
                logger.error(f"事件处理器异常: {event.event_type.name}, error={e}", exc_info=True)
        return count

    def yield_once(self, timeout_ms: int = 0) -> int:
        """
        运行一轮调度

        最多等待 timeout_ms 毫秒，直到某个已注册的传输层就绪，
        让就绪的传输层触发通知回调，然后分发待处理事件。

        Args:
            timeout_ms: 最长等待时间（毫秒）

        Returns:
            int: 分发的事件数
        """
        self._sync_selector()
        timeout = 0 if self.pending else max(timeout_ms, 0) / 1000.0

        if self._selector is not None and self._selector.get_map():
            ready = self._selector.select(timeout)
            for key, _ in ready:
                key.data.dispatch_events()
            # 文件描述符可能在回调中被关闭
            self._sync_selector()
        elif timeout:
            time.sleep(timeout)

        return self.process_pending()

    def run(self, until: Optional[Callable[[], bool]] = None, timeout: float = 1.0,
            slice_ms: int = 50) -> bool:
        """
        循环运行调度直到条件满足或超时

        Args:
            until: 返回 True 时停止；为 None 时运行到超时
            timeout: 最长运行时间（秒）
            slice_ms: 每轮最长等待时间（毫秒）

        Returns:
            bool: 条件满足返回 True，超时返回 False
        """
        deadline = time.monotonic() + timeout
        while True:
            if until is not None and until():
                return True
            left_ms = int((deadline - time.monotonic()) * 1000)
            if left_ms <= 0:
                return False
            self.yield_once(min(slice_ms, left_ms))

    def close(self):
        """停止监视所有传输层，之后只能分发已投递的事件"""
        self._transports.clear()
        if self._selector is not None:
            self._selector.close()
            self._selector = None
