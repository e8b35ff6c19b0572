"""
netsock - 消息帧协议模块
定义 read_msg/write_msg 使用的帧格式常量和帧头/帧尾编解码。

功能概述:
本模块提供了带签名和长度的消息帧定义。写入端在负载前后分别
附加帧头和帧尾，读取端通过校验两个签名尽早发现流不同步
（例如对端使用了不同的协议）。

帧格式:
┌──────────────┬──────────────┬─────────────┬──────────────┬──────────────┐
│ 头部签名     │ 负载长度     │    负载     │ 尾部签名     │ 保留（全零） │
│ 4 字节       │ 4 字节       │  可变长度   │ 4 字节       │ 4 字节       │
└──────────────┴──────────────┴─────────────┴──────────────┴──────────────┘

头部签名为 0xFEEDDEAD，尾部签名为 0xDEADFEED。
所有多字节字段使用小端序。
"""

import struct
from typing import Tuple
from dataclasses import dataclass


# ============================================================================
# 协议常量
# ============================================================================

HEADER_SIGNATURE = 0xFEEDDEAD
TRAILER_SIGNATURE = 0xDEADFEED
FRAME_HEADER_SIZE = 8
MAX_MESSAGE_SIZE = 0xFFFFFFFF

# 丢弃多余字节时使用的单次读取上限
MAX_DISCARD_SIZE = 10 * 1024

_FRAME_STRUCT = struct.Struct('<II')


# ============================================================================
# 帧头 / 帧尾
# ============================================================================

@dataclass
class FrameHeader:
    """
    消息帧的 8 字节头部或尾部

    头部和尾部使用同一种布局：4 字节签名 + 4 字节长度。
    尾部的长度字段固定为 0。

    Attributes:
        signature: 签名（HEADER_SIGNATURE 或 TRAILER_SIGNATURE）
        length: 负载长度（尾部为 0）
    """
    signature: int
    length: int = 0

    SIZE = FRAME_HEADER_SIZE

    def serialize(self) -> bytes:
        """
        将帧头序列化为 8 字节

        Returns:
            bytes: 序列化后的字节

        Raises:
            struct.error: 如果长度超过 32 位无符号整数范围
        """
        return _FRAME_STRUCT.pack(self.signature, self.length)

    @classmethod
    def deserialize(cls, data: bytes) -> 'FrameHeader':
        """
        从字节反序列化帧头

        Args:
            data: 至少 8 字节的数据

        Returns:
            FrameHeader: 解析出的帧头

        Raises:
            ValueError: 如果数据不足 8 字节
        """
        if len(data) < cls.SIZE:
            raise ValueError("数据不足以解析帧头")
        signature, length = _FRAME_STRUCT.unpack(bytes(data[:cls.SIZE]))
        return cls(signature, length)

    @property
    def is_header(self) -> bool:
        return self.signature == HEADER_SIGNATURE

    @property
    def is_trailer(self) -> bool:
        return self.signature == TRAILER_SIGNATURE


def make_header(length: int) -> bytes:
    """创建帧头：头部签名 + 负载长度"""
    return FrameHeader(HEADER_SIGNATURE, length).serialize()


def make_trailer() -> bytes:
    """创建帧尾：尾部签名 + 4 个零字节"""
    return FrameHeader(TRAILER_SIGNATURE, 0).serialize()


def make_message(payload: bytes) -> bytes:
    """
    构造完整的消息帧

    主要用于测试和需要一次性发送整帧的场景。

    Args:
        payload: 负载数据

    Returns:
        bytes: 帧头 + 负载 + 帧尾
    """
    return make_header(len(payload)) + bytes(payload) + make_trailer()


def split_message(data: bytes) -> Tuple[bytes, bytes]:
    """
    从字节流中拆出一个完整的消息帧

    Args:
        data: 以帧头开始的字节数据

    Returns:
        Tuple[bytes, bytes]: (负载, 剩余字节)

    Raises:
        ValueError: 如果签名无效或数据不完整
    """
    header = FrameHeader.deserialize(data)
    if not header.is_header:
        raise ValueError(f"无效的帧头签名: {header.signature:#010x}")

    end = FRAME_HEADER_SIZE + header.length
    if len(data) < end + FRAME_HEADER_SIZE:
        raise ValueError("数据不足以解析负载")

    trailer = FrameHeader.deserialize(data[end:])
    if not trailer.is_trailer:
        raise ValueError(f"无效的帧尾签名: {trailer.signature:#010x}")

    return bytes(data[FRAME_HEADER_SIZE:end]), bytes(data[end + FRAME_HEADER_SIZE:])
