"""
netsock 协议包

本包提供了 netsock 使用的线路格式定义，包括：
- 带签名和长度的消息帧（read_msg/write_msg）
- SOCKS4/4a 请求和响应

使用示例：
    from protocol import make_message, split_message

    data = make_message(b'hello world')
    payload, remaining = split_message(data)
"""

from .core import (
    # 协议常量
    HEADER_SIGNATURE,
    TRAILER_SIGNATURE,
    FRAME_HEADER_SIZE,
    MAX_MESSAGE_SIZE,
    MAX_DISCARD_SIZE,

    # 帧头
    FrameHeader,

    # 函数式接口
    make_header,
    make_trailer,
    make_message,
    split_message,
)
from .socks4 import SOCKS4, build_request, is_granted, make_reply
