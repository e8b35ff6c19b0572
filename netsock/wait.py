"""
netsock - 等待引擎

WaitEngine 把 "超时 + 期望的就绪标志" 转换为一次阻塞等待。
所有非 NOWAIT 模式下的读、写、连接和接受操作都通过它等待。

等待策略在每次调用时选择一次：
- 存在协作调度器（EventLoop）时：每轮以零超时查询传输层，
  然后让出一次给调度器，由调度器负责休眠和分发其他事件；
- 不存在调度器时：每轮查询传输层的超时被限制在 50 毫秒以内
  （剩余时间更短时使用剩余时间），避免忙等。

中断标志是一次性的：每次等待开始时清除，close() 等外部操作设置后，
当前等待在下一轮查询前返回 False。
"""

import time
import logging

from .transport import EventFlag, Transport

logger = logging.getLogger('netsock-wait')

# 未使用调度器时每轮 select 的最长等待时间（毫秒）
POLL_SLICE_MS = 50


class _SliceStrategy:
    """缩短传输层自身的查询超时"""

    def begin(self, transport: Transport, timeout_ms: int):
        transport.set_timeout(min(timeout_ms, POLL_SLICE_MS))

    def poll(self, transport: Transport, flags: EventFlag) -> EventFlag:
        return transport.select(flags)

    def pause(self, transport: Transport, time_left_ms: int):
        if time_left_ms < POLL_SLICE_MS:
            transport.set_timeout(time_left_ms)


class _YieldStrategy:
    """每轮让出一次给协作调度器"""

    def __init__(self, loop):
        self.loop = loop

    def begin(self, transport: Transport, timeout_ms: int):
        pass

    def poll(self, transport: Transport, flags: EventFlag) -> EventFlag:
        return transport.select(flags, timeout_ms=0)

    def pause(self, transport: Transport, time_left_ms: int):
        self.loop.yield_once(min(time_left_ms, POLL_SLICE_MS))


class WaitEngine:
    """
    套接字的就绪等待循环

    Attributes:
        owner: 所属的 SocketBase，提供传输层、超时、调度器和连接状态
        interrupted: 中断请求标志
    """

    def __init__(self, owner):
        self.owner = owner
        self.interrupted = False

    def interrupt(self):
        """请求中断正在进行的等待"""
        self.interrupted = True

    def wait(self, seconds: int, milliseconds: int, flags: EventFlag) -> bool:
        """
        等待期望的就绪条件

        Args:
            seconds: 超时秒数，-1 表示使用套接字的默认超时
            milliseconds: 附加的毫秒数（seconds 为 -1 时忽略）
            flags: 期望的就绪标志

        Returns:
            bool: 期望的条件出现返回 True；超时、被中断或连接断开
                  （且未请求 LOST）返回 False
        """
        owner = self.owner
        self.interrupted = False

        transport = owner.transport
        if transport is None:
            return False

        if seconds != -1:
            timeout_ms = seconds * 1000 + milliseconds
        else:
            timeout_ms = owner.timeout * 1000

        if owner.loop is not None:
            strategy = _YieldStrategy(owner.loop)
        else:
            strategy = _SliceStrategy()

        deadline = time.monotonic() + timeout_ms / 1000.0
        strategy.begin(transport, timeout_ms)
        valid_result = False
        was_establishing = owner.establishing

        try:
            while True:
                result = strategy.poll(transport, flags | EventFlag.LOST)

                # 连接已建立（客户端）或有新连接到达（服务器）
                if result & EventFlag.CONNECTION:
                    owner.set_connection_state(True)
                    valid_result = True
                    break

                if result & (EventFlag.INPUT | EventFlag.OUTPUT):
                    valid_result = True
                    break

                if result & EventFlag.LOST:
                    owner.set_connection_state(False)
                    valid_result = bool(flags & EventFlag.LOST)
                    break

                time_left_ms = int((deadline - time.monotonic()) * 1000)
                if not timeout_ms or time_left_ms <= 0 or self.interrupted:
                    break

                strategy.pause(transport, time_left_ms)

                # 调度器运行期间套接字可能已被关闭
                if owner.transport is not transport:
                    break

                # 调度器分发的 CONNECTION 通知已经完成了连接，传输层不会再次报告
                if flags & EventFlag.CONNECTION and was_establishing and owner.connected:
                    valid_result = True
                    break
        finally:
            transport.set_timeout(owner.timeout * 1000)

        return valid_result
