"""
netsock - 客户端套接字

SocketClient 负责建立连接：直接连接，或者通过 SOCKS4/SOCKS4a 代理连接。

连接状态:
    空闲 -> 建立中（非阻塞连接返回 WOULDBLOCK） -> 已连接 / 失败

SOCKS4/4a 握手总是以阻塞方式进行：
1. 连接到代理服务器
2. 发送 CONNECT 请求（BLOCK | WAITALL，超时 60 秒）
3. 读取 8 字节响应，只有 reply[0] == 0 且 reply[1] == 90 才算成功
4. 任何失败都会关闭传输层；标志位和超时在所有路径上恢复

SOCKS5 和 HTTP 代理只是占位实现：连接到代理后直接报告成功。
"""

import logging
from enum import IntEnum
from typing import Callable, Optional

from protocol import SOCKS4, build_request, is_granted

from .address import IPAddress, resolve_ipv4
from .base import SocketBase, SocketFlags, SocketType
from .transport import EventFlag, SocketTransport, Transport, TransportError

logger = logging.getLogger('netsock-client')

# 等待代理响应的超时时间（秒）
PROXY_TIMEOUT = 60


class ProxyType(IntEnum):
    """
    代理类型
    """
    NONE = 0
    SOCKS4 = 1
    SOCKS4A = 2
    SOCKS5 = 3
    HTTP = 4


class SocketClient(SocketBase):
    """
    客户端流套接字

    Attributes:
        transport_factory: 每次 connect 时创建新传输层的工厂
        resolver: 主机名解析函数，返回 4 字节 IPv4 地址或 None
        proxy_type: 代理类型
        proxy_address: 代理服务器地址
        proxy_login: 代理用户名
        proxy_password: 代理密码（SOCKS4 不使用）
    """

    def __init__(self, flags: SocketFlags = SocketFlags.NONE, loop=None,
                 transport_factory: Callable[[], Transport] = SocketTransport,
                 resolver: Callable[[str], Optional[bytes]] = resolve_ipv4):
        super().__init__(flags, SocketType.CLIENT, loop)
        self.transport_factory = transport_factory
        self.resolver = resolver
        self.proxy_type = ProxyType.NONE
        self.proxy_address: Optional[IPAddress] = None
        self.proxy_login = ''
        self.proxy_password = ''

    def set_proxy(self, address: IPAddress, proxy_type: ProxyType,
                  login: str = '', password: str = ''):
        """
        设置代理服务器

        Args:
            address: 代理服务器地址
            proxy_type: 代理类型（不能为 NONE）
            login: 代理用户名
            password: 代理密码

        Raises:
            ValueError: 代理类型无效
        """
        if proxy_type not in (ProxyType.SOCKS4, ProxyType.SOCKS4A,
                              ProxyType.SOCKS5, ProxyType.HTTP):
            raise ValueError(f"无效的代理类型: {proxy_type}")
        self.proxy_address = address
        self.proxy_type = ProxyType(proxy_type)
        self.proxy_login = login
        self.proxy_password = password

    def clear_proxy(self):
        self.proxy_type = ProxyType.NONE
        self.proxy_address = None

    def connect(self, address: IPAddress, local: Optional[IPAddress] = None,
                wait: bool = True) -> bool:
        """
        连接到 address

        Args:
            address: 目标地址
            local: 绑定的本地地址，默认使用 set_local 保存的地址
            wait: False 时发起非阻塞连接，之后用 wait_on_connect 等待结果

        Returns:
            bool: 连接立即建立返回 True；非阻塞连接进行中或失败返回 False
                  （进行中时 establishing 为 True）
        """
        if self._transport is not None:
            self.close()

        self.connected = False
        self.establishing = False
        self.pushback.clear()

        transport = self.transport_factory()
        self.attach_transport(transport)

        if not wait:
            transport.set_non_blocking(True)

        if self.flags & SocketFlags.REUSEADDR:
            transport.set_reusable()

        if local is None:
            local = self.local_address
        if local is not None:
            transport.set_local(local)

        if self.proxy_type == ProxyType.NONE:
            transport.set_peer(address)
            err = transport.connect(stream=True)
        elif self.proxy_type == ProxyType.SOCKS4:
            err = self._connect_socks4(address, socks4a=False)
        elif self.proxy_type == ProxyType.SOCKS4A:
            err = self._connect_socks4(address, socks4a=True)
        elif self.proxy_type == ProxyType.SOCKS5:
            err = self._connect_socks5(address)
        else:
            err = self._connect_http(address)

        if not wait:
            transport.set_non_blocking(False)

        if err == TransportError.NOERROR:
            self.connected = True
            logger.debug(f"已连接到 {address}")
        else:
            self.connected = False
            if err == TransportError.WOULDBLOCK:
                self.establishing = True
            else:
                logger.debug(f"连接 {address} 失败: {err.name}")

        return self.connected

    def wait_on_connect(self, seconds: int = -1, milliseconds: int = 0) -> bool:
        """
        等待非阻塞连接的结果

        Returns:
            bool: 已连接返回 True；没有进行中的连接返回 False；
                  否则返回等待结果（连接失败时也返回 True，需要检查 is_connected）
        """
        if self.connected:
            return True
        if not self.establishing or self._transport is None:
            return False
        return self._wait(seconds, milliseconds, EventFlag.CONNECTION | EventFlag.LOST)

    # ------------------------------------------------------------------
    # 代理握手
    # ------------------------------------------------------------------

    def _connect_proxy(self) -> TransportError:
        transport = self._transport
        # 代理握手总是阻塞进行
        transport.set_non_blocking(False)
        if self.proxy_address is None:
            return TransportError.INVADDR
        if transport.set_peer(self.proxy_address) != TransportError.NOERROR:
            return TransportError.INVSOCK
        if transport.connect(stream=True) != TransportError.NOERROR:
            logger.warning(f"无法连接到代理服务器 {self.proxy_address}")
            return TransportError.INVSOCK
        return TransportError.NOERROR

    def _connect_socks4(self, destination: IPAddress, socks4a: bool = False) -> TransportError:
        """
        通过 SOCKS4/SOCKS4a 代理连接到 destination

        Args:
            destination: 目标地址
            socks4a: 是否允许由代理解析主机名

        Returns:
            TransportError: 成功返回 NOERROR，任何失败返回 INVSOCK
        """
        err = self._connect_proxy()
        if err != TransportError.NOERROR:
            return err

        transport = self._transport
        ip = destination.ip_literal()
        if ip is None:
            ip = self.resolver(destination.host)

        if ip is None and not socks4a:
            logger.warning(f"无法解析 {destination.host}，且未启用 SOCKS4a")
            transport.shutdown()
            return TransportError.INVSOCK

        try:
            request = build_request(
                destination.port, ip, self.proxy_login,
                hostname=destination.host if ip is None else None
            )
        except ValueError as e:
            logger.warning(f"构造 SOCKS4 请求失败: {e}")
            transport.shutdown()
            return TransportError.INVSOCK

        old_timeout = self.timeout
        self.save_state()
        self.flags = SocketFlags.BLOCK | SocketFlags.WAITALL
        self.set_timeout(PROXY_TIMEOUT)
        self.connected = True
        try:
            self.write(request)
            if self.error or self.last_count != len(request):
                logger.warning("发送 SOCKS4 请求失败")
                return self._proxy_failed()

            reply = bytearray(SOCKS4.REPLY_SIZE)
            self.read(reply)
            if self.error or self.last_count != SOCKS4.REPLY_SIZE:
                logger.warning("读取 SOCKS4 响应失败")
                return self._proxy_failed()

            if not is_granted(reply):
                logger.warning(f"代理拒绝连接: {destination}, code={reply[1]}")
                return self._proxy_failed()
        finally:
            self.restore_state()
            self.set_timeout(old_timeout)

        logger.info(f"已通过 SOCKS4 代理 {self.proxy_address} 连接到 {destination}")
        return TransportError.NOERROR

    def _proxy_failed(self) -> TransportError:
        self.connected = False
        if self._transport is not None:
            self._transport.shutdown()
        return TransportError.INVSOCK

    def _connect_socks5(self, destination: IPAddress) -> TransportError:
        # TODO: 实现 SOCKS5 方法协商和 CONNECT 请求
        logger.warning(f"SOCKS5 代理握手未实现，直接使用代理连接: {destination}")
        return self._connect_proxy()

    def _connect_http(self, destination: IPAddress) -> TransportError:
        # TODO: 实现 HTTP CONNECT 请求
        logger.warning(f"HTTP 代理握手未实现，直接使用代理连接: {destination}")
        return self._connect_proxy()
