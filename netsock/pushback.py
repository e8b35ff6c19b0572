"""
netsock - 回退缓冲区

PushbackBuffer 保存通过 peek/unread 放回的字节。读操作先从这里取数据，
再访问传输层。新放回的数据总是插入到最前面，因此最近一次 unread 的
数据最先被读到。
"""

from typing import Optional


class PushbackBuffer:
    """
    带读取游标的回退字节队列

    缓冲区在完全读空时释放，游标同时归零。

    Attributes:
        cursor: 已消费的字节数
    """

    def __init__(self):
        self._data: Optional[bytes] = None
        self.cursor = 0

    def __len__(self) -> int:
        if self._data is None:
            return 0
        return len(self._data) - self.cursor

    def __bool__(self) -> bool:
        return self._data is not None

    def push(self, data) -> int:
        """
        将数据插入到缓冲区最前面

        Args:
            data: 任意 bytes-like 对象

        Returns:
            int: 插入的字节数
        """
        data = bytes(data)
        if not data:
            return 0

        if self._data is None:
            self._data = data
        else:
            self._data = data + self._data[self.cursor:]
        self.cursor = 0
        return len(data)

    def take(self, view: memoryview, peek: bool = False) -> int:
        """
        从缓冲区复制最多 len(view) 字节到 view

        Args:
            view: 可写的目标缓冲区
            peek: 为 True 时不移动游标

        Returns:
            int: 复制的字节数
        """
        size = min(len(view), len(self))
        if not size:
            return 0

        view[:size] = self._data[self.cursor:self.cursor + size]
        if not peek:
            self.cursor += size
            if self.cursor == len(self._data):
                self.clear()
        return size

    def clear(self):
        self._data = None
        self.cursor = 0

    def getvalue(self) -> bytes:
        """返回尚未消费的数据副本"""
        if self._data is None:
            return b''
        return self._data[self.cursor:]
