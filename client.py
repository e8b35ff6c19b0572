#!/usr/bin/env python3
"""
netsock 消息回显客户端

连接到回显服务端（可选经过 SOCKS4/SOCKS4a 代理），
把命令行给出的每条消息用 write_msg 发送，并打印 read_msg 收到的回显。
"""

import sys
import logging
import argparse
from typing import List, Optional

from config import ClientConfig, client_config_from_dict, load_config, parse_proxy_type
from logger import log_context, setup_logging
from netsock import IPAddress, ProxyType, SocketClient

logger = logging.getLogger('netsock-echo-client')

# 回显缓冲区大小
REPLY_BUFFER_SIZE = 64 * 1024


def create_client(config: ClientConfig) -> SocketClient:
    """
    按配置创建客户端套接字（包括代理设置）

    Raises:
        ValueError: 配置中的标志位或代理类型无效
    """
    client = SocketClient(config.socket.socket_flags())
    client.set_timeout(config.socket.timeout)

    proxy_type = parse_proxy_type(config.proxy.type)
    if proxy_type != ProxyType.NONE:
        client.set_proxy(
            IPAddress(config.proxy.host, config.proxy.port),
            proxy_type,
            config.proxy.login,
            config.proxy.password,
        )
    return client


def run_client(config: ClientConfig, messages: List[str], out=None) -> int:
    """
    发送消息并打印回显

    Args:
        config: 客户端配置
        messages: 要发送的消息列表
        out: 输出流（默认: 标准输出）

    Returns:
        int: 退出码，全部成功返回 0
    """
    out = out or sys.stdout
    server = IPAddress(config.server_host, config.server_port)

    with create_client(config) as client:
        if not client.connect(server):
            logger.error(f"无法连接到 {server}")
            return 1

        reply = bytearray(REPLY_BUFFER_SIZE)
        with log_context(peer=str(server)):
            for message in messages:
                payload = message.encode('utf-8')
                client.write_msg(payload)
                if client.error:
                    logger.error("发送消息失败")
                    return 1

                client.read_msg(reply)
                if client.error:
                    logger.error("读取回显失败")
                    return 1

                text = bytes(reply[:client.last_count]).decode('utf-8', errors='replace')
                print(text, file=out)
                logger.debug(f"回显 {client.last_count} 字节")

    return 0


def main(argv: Optional[List[str]] = None):
    """
    主函数 - 解析命令行参数并运行客户端

    命令行参数:
        --config, -c: 配置文件路径 (默认: config.yaml)
        --server: 服务器地址
        --server-port: 服务器端口
        --proxy: 代理地址 host:port
        --proxy-type: 代理类型 (socks4, socks4a, socks5, http)
        --login: 代理用户名
        --debug, -d: 启用调试模式
        messages: 要发送的消息
    """
    parser = argparse.ArgumentParser(description='netsock 消息回显客户端')
    parser.add_argument('--config', '-c', default='config.yaml', help='配置文件路径')
    parser.add_argument('--server', default=None, help='服务器地址')
    parser.add_argument('--server-port', type=int, default=None, help='服务器端口')
    parser.add_argument('--proxy', default=None, help='代理地址 (host:port)')
    parser.add_argument('--proxy-type', default=None,
                        choices=['none', 'socks4', 'socks4a', 'socks5', 'http'], help='代理类型')
    parser.add_argument('--login', default=None, help='代理用户名')
    parser.add_argument('--debug', '-d', action='store_true', help='启用调试模式')
    parser.add_argument('messages', nargs='+', help='要发送的消息')
    args = parser.parse_args(argv)

    setup_logging(args.debug, args.config)

    # 命令行参数优先于配置文件
    config = client_config_from_dict(load_config(args.config))
    if args.server:
        config.server_host = args.server
    if args.server_port is not None:
        config.server_port = args.server_port
    if args.proxy:
        proxy = IPAddress.parse(args.proxy, default_port=config.proxy.port)
        config.proxy.host = proxy.host
        config.proxy.port = proxy.port
        if args.proxy_type is None and not config.proxy.enabled:
            config.proxy.type = 'socks4'
    if args.proxy_type:
        config.proxy.type = args.proxy_type
    if args.login is not None:
        config.proxy.login = args.login

    try:
        return run_client(config, args.messages)
    except ValueError as e:
        logger.error(f"配置错误: {e}")
        return 1
    except KeyboardInterrupt:
        logger.info("收到键盘中断信号")
        return 0


if __name__ == '__main__':
    exit(main())
