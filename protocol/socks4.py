"""
netsock - SOCKS4/4a 协议模块

本模块定义了 SOCKS4 和 SOCKS4a 客户端握手使用的常量、
请求构造和响应解析函数。

请求格式:
┌────────┬────────┬──────────┬────────────┬──────────────┬─────────────────┐
│ 版本   │ 命令   │ 目标端口 │ 目标 IP    │ 用户名 + NUL │ 主机名 + NUL    │
│ 1 字节 │ 1 字节 │ 2 字节   │ 4 字节     │ 可变长度     │ 仅 4a，可变长度 │
└────────┴────────┴──────────┴────────────┴──────────────┴─────────────────┘

端口使用大端序（网络字节序）。SOCKS4a 在无法解析主机名时
发送 0.0.0.1 作为目标 IP，并在用户名之后附加主机名，由代理解析。

响应固定为 8 字节，第 0 字节必须为 0，第 1 字节为 90 表示请求被批准。
"""

import struct
from typing import Optional


# ============================================================================
# SOCKS4 协议常量
# ============================================================================

class SOCKS4:
    """
    SOCKS4 协议常量定义
    """
    VERSION = 0x04
    CMD_CONNECT = 0x01
    REPLY_VERSION = 0x00
    REP_GRANTED = 90
    REP_REJECTED = 91
    REP_NO_IDENTD = 92
    REP_BAD_USERID = 93
    REPLY_SIZE = 8
    MAX_REQUEST_SIZE = 512
    # SOCKS4a: 0.0.0.x（x 非零）表示由代理解析主机名
    UNRESOLVED_IP = bytes([0, 0, 0, 1])


def build_request(port: int, ip: Optional[bytes], login: str = '',
                  hostname: Optional[str] = None) -> bytes:
    """
    构造 SOCKS4/4a CONNECT 请求

    Args:
        port: 目标端口
        ip: 4 字节目标 IPv4 地址；为 None 时表示需要代理解析（SOCKS4a）
        login: 代理用户名
        hostname: 目标主机名，仅在 ip 为 None 时使用

    Returns:
        bytes: 完整的请求字节

    Raises:
        ValueError: 参数无效或请求超过 512 字节
    """
    if ip is None:
        if not hostname:
            raise ValueError("SOCKS4a 请求需要主机名")
        address = SOCKS4.UNRESOLVED_IP
    else:
        if len(ip) != 4:
            raise ValueError(f"无效的 IPv4 地址长度: {len(ip)}")
        address = bytes(ip)

    request = struct.pack('>BBH', SOCKS4.VERSION, SOCKS4.CMD_CONNECT, port) + address
    request += login.encode('utf-8') + b'\x00'
    if ip is None:
        request += hostname.encode('utf-8') + b'\x00'

    if len(request) >= SOCKS4.MAX_REQUEST_SIZE:
        raise ValueError(f"代理请求过长: {len(request)} 字节")
    return request


def is_granted(reply: bytes) -> bool:
    """
    检查代理响应是否表示连接已批准

    Args:
        reply: 代理返回的 8 字节响应

    Returns:
        bool: 响应完整且 reply[0] == 0、reply[1] == 90 时返回 True
    """
    if len(reply) < SOCKS4.REPLY_SIZE:
        return False
    return reply[0] == SOCKS4.REPLY_VERSION and reply[1] == SOCKS4.REP_GRANTED


def make_reply(code: int = SOCKS4.REP_GRANTED, version: int = SOCKS4.REPLY_VERSION) -> bytes:
    """构造 8 字节代理响应（用于代理端和测试）"""
    return bytes([version, code]) + b'\x00' * 6
