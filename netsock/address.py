"""
netsock - 地址模块

IPAddress 是一个不可变的 (host, port) 值类型，地址比较使用结构相等。
"""

import ipaddress
import socket
import logging
from dataclasses import dataclass
from typing import Optional, Tuple

logger = logging.getLogger('netsock-address')


@dataclass(frozen=True)
class IPAddress:
    """
    IPv4 地址值类型

    Attributes:
        host: 主机名或点分十进制 IPv4 地址
        port: 端口号（0-65535）
    """
    host: str = '0.0.0.0'
    port: int = 0

    def __post_init__(self):
        if not 0 <= self.port <= 0xFFFF:
            raise ValueError(f"无效的端口号: {self.port}")

    @classmethod
    def from_sockaddr(cls, sockaddr: Tuple) -> 'IPAddress':
        """从 socket 模块返回的 (host, port) 元组创建地址"""
        return cls(sockaddr[0], sockaddr[1])

    @classmethod
    def parse(cls, text: str, default_port: int = 0) -> 'IPAddress':
        """
        解析 "host:port" 形式的字符串

        Args:
            text: 地址字符串，端口可省略
            default_port: 省略端口时使用的端口

        Returns:
            IPAddress: 解析出的地址

        Raises:
            ValueError: 端口不是整数
        """
        host, sep, port = text.rpartition(':')
        if not sep:
            return cls(text, default_port)
        return cls(host or '0.0.0.0', int(port))

    def to_sockaddr(self) -> Tuple[str, int]:
        return (self.host, self.port)

    def ip_literal(self) -> Optional[bytes]:
        """
        如果 host 是 IPv4 字面量则返回 4 字节地址，否则返回 None
        """
        try:
            return ipaddress.IPv4Address(self.host).packed
        except ValueError:
            return None

    def __str__(self):
        return f"{self.host}:{self.port}"


def resolve_ipv4(host: str) -> Optional[bytes]:
    """
    将主机名解析为 4 字节 IPv4 地址

    Args:
        host: 主机名

    Returns:
        Optional[bytes]: 解析成功返回 4 字节地址，失败返回 None
    """
    try:
        return socket.inet_aton(socket.gethostbyname(host))
    except (socket.gaierror, socket.herror, UnicodeError, OSError) as e:
        logger.debug(f"无法解析主机名 {host}: {e}")
        return None
