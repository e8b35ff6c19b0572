"""
netsock - 配置管理模块
加载和保存配置文件，管理客户端和服务器配置。

功能概述:
本模块提供了配置管理功能，包括：
1. 套接字配置（超时、标志位）
2. 代理配置（SOCKS4/SOCKS4a）
3. 客户端和服务器配置
4. 配置文件的加载和保存

配置文件格式（YAML）:

    client:
      server_host: 127.0.0.1
      server_port: 9000
      socket:
        timeout: 30
        flags: [waitall]
      proxy:
        type: socks4a
        host: 127.0.0.1
        port: 1080
        login: user

    server:
      host: 0.0.0.0
      port: 9000
      max_message_size: 65536
      socket:
        reuse_addr: true
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Optional

import yaml

from netsock import ProxyType, SocketFlags

logger = logging.getLogger(__name__)


# ============================================================================
# 配置数据类
# ============================================================================

@dataclass
class SocketConfig:
    """
    套接字配置数据类

    Attributes:
        timeout: 默认超时时间（秒，默认: 600）
        flags: 读写策略标志位名称列表（nowait、waitall、block）
        reuse_addr: 是否启用 SO_REUSEADDR（默认: False）
    """
    timeout: int = 600
    flags: list = None
    reuse_addr: bool = False

    def __post_init__(self):
        if self.flags is None:
            self.flags = []

    def socket_flags(self) -> SocketFlags:
        flags = parse_flags(self.flags)
        if self.reuse_addr:
            flags |= SocketFlags.REUSEADDR
        return flags


@dataclass
class ProxyConfig:
    """
    代理配置数据类

    Attributes:
        type: 代理类型（none、socks4、socks4a、socks5、http）
        host: 代理地址
        port: 代理端口（默认: 1080）
        login: 代理用户名
        password: 代理密码
    """
    type: str = 'none'
    host: str = '127.0.0.1'
    port: int = 1080
    login: str = ''
    password: str = ''

    @property
    def enabled(self) -> bool:
        return parse_proxy_type(self.type) != ProxyType.NONE


@dataclass
class ClientConfig:
    """
    客户端配置数据类

    Attributes:
        server_host: 服务器地址
        server_port: 服务器端口（默认: 9000）
        socket: 套接字配置
        proxy: 代理配置
    """
    server_host: str = '127.0.0.1'
    server_port: int = 9000
    socket: SocketConfig = field(default_factory=SocketConfig)
    proxy: ProxyConfig = field(default_factory=ProxyConfig)


@dataclass
class ServerConfig:
    """
    服务器配置数据类

    Attributes:
        host: 监听地址（默认: "0.0.0.0"）
        port: 监听端口（默认: 9000）
        socket: 套接字配置
        max_message_size: 单条消息的最大负载（默认: 65536），超出部分被丢弃
    """
    host: str = '0.0.0.0'
    port: int = 9000
    socket: SocketConfig = field(default_factory=SocketConfig)
    max_message_size: int = 65536


# ============================================================================
# 解析辅助
# ============================================================================

_FLAG_NAMES = {
    'none': SocketFlags.NONE,
    'nowait': SocketFlags.NOWAIT,
    'waitall': SocketFlags.WAITALL,
    'block': SocketFlags.BLOCK,
    'reuseaddr': SocketFlags.REUSEADDR,
}

_PROXY_NAMES = {
    'none': ProxyType.NONE,
    'socks4': ProxyType.SOCKS4,
    'socks4a': ProxyType.SOCKS4A,
    'socks5': ProxyType.SOCKS5,
    'http': ProxyType.HTTP,
}


def parse_flags(names: Optional[Iterable[str]]) -> SocketFlags:
    """
    将标志位名称列表转换为 SocketFlags

    Args:
        names: 名称列表（不区分大小写），也可以是单个字符串

    Returns:
        SocketFlags: 组合后的标志位

    Raises:
        ValueError: 存在未知的标志位名称
    """
    if not names:
        return SocketFlags.NONE
    if isinstance(names, str):
        names = [names]

    flags = SocketFlags.NONE
    for name in names:
        try:
            flags |= _FLAG_NAMES[str(name).strip().lower()]
        except KeyError:
            raise ValueError(f"未知的套接字标志: {name}")
    return flags


def parse_proxy_type(name: Optional[str]) -> ProxyType:
    """
    将代理类型名称转换为 ProxyType

    Raises:
        ValueError: 未知的代理类型
    """
    if not name:
        return ProxyType.NONE
    try:
        return _PROXY_NAMES[str(name).strip().lower()]
    except KeyError:
        raise ValueError(f"未知的代理类型: {name}")


def _socket_config_from_dict(data: Optional[Dict[str, Any]]) -> SocketConfig:
    data = data or {}
    return SocketConfig(
        timeout=int(data.get('timeout', 600)),
        flags=list(data.get('flags') or []),
        reuse_addr=bool(data.get('reuse_addr', False)),
    )


def client_config_from_dict(config_data: Optional[Dict[str, Any]]) -> ClientConfig:
    """从配置字典的 client 部分创建客户端配置"""
    client_conf = (config_data or {}).get('client') or {}
    proxy_conf = client_conf.get('proxy') or {}
    return ClientConfig(
        server_host=client_conf.get('server_host', '127.0.0.1'),
        server_port=int(client_conf.get('server_port', 9000)),
        socket=_socket_config_from_dict(client_conf.get('socket')),
        proxy=ProxyConfig(
            type=proxy_conf.get('type', 'none'),
            host=proxy_conf.get('host', '127.0.0.1'),
            port=int(proxy_conf.get('port', 1080)),
            login=proxy_conf.get('login', ''),
            password=proxy_conf.get('password', ''),
        ),
    )


def server_config_from_dict(config_data: Optional[Dict[str, Any]]) -> ServerConfig:
    """从配置字典的 server 部分创建服务器配置"""
    server_conf = (config_data or {}).get('server') or {}
    return ServerConfig(
        host=server_conf.get('host', '0.0.0.0'),
        port=int(server_conf.get('port', 9000)),
        socket=_socket_config_from_dict(server_conf.get('socket')),
        max_message_size=int(server_conf.get('max_message_size', 65536)),
    )


# ============================================================================
# 配置文件管理函数
# ============================================================================

def load_config(config_file: str) -> Dict[str, Any]:
    """
    加载配置文件

    从 YAML 格式的配置文件中加载配置数据

    Args:
        config_file: 配置文件路径

    Returns:
        Dict[str, Any]: 配置数据字典，如果文件不存在或格式错误则返回空字典
    """
    try:
        with open(config_file, 'r', encoding='utf-8') as f:
            return yaml.safe_load(f) or {}
    except FileNotFoundError:
        return {}
    except yaml.YAMLError as e:
        logger.warning(f"配置文件格式错误: {e}")
        return {}


def save_config(config_file: str, config_data: Dict[str, Any]) -> bool:
    """
    保存配置文件

    Args:
        config_file: 配置文件路径
        config_data: 要保存的配置数据字典

    Returns:
        bool: 保存成功返回 True，失败返回 False
    """
    try:
        with open(config_file, 'w', encoding='utf-8') as f:
            yaml.dump(config_data, f, default_flow_style=False, allow_unicode=True)
        return True
    except (OSError, yaml.YAMLError) as e:
        logger.error(f"保存配置文件失败: {e}")
        return False
