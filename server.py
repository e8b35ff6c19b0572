#!/usr/bin/env python3
"""
netsock 消息回显服务端

协议:
1. 客户端连接后发送 read_msg/write_msg 格式的消息帧
2. 服务端把每个消息的负载原样回显（超过 max_message_size 的部分被截断）

服务端是单线程的：所有客户端都挂在同一个 EventLoop 上，
新连接、可读和断开都通过延迟投递的事件通知处理。
"""

import logging
import argparse
from typing import Callable, Dict, Optional

from config import ServerConfig, load_config, server_config_from_dict
from logger import log_context, setup_logging
from netsock import (
    EventFlag, EventLoop, IPAddress, Notification, SocketBase, SocketEvent, SocketServer,
)

logger = logging.getLogger('netsock-echo-server')

# 服务器套接字的事件处理器标识
SERVER_ID = 0


class EchoServer:
    """
    消息回显服务端

    Attributes:
        config: 服务端配置
        loop: 协作调度器
        server: 监听套接字，start() 之前为 None
        clients: 客户端标识到套接字的映射
        messages: 已回显的消息数
    """

    def __init__(self, config: ServerConfig, loop: Optional[EventLoop] = None):
        self.config = config
        self.loop = loop or EventLoop()
        self.server: Optional[SocketServer] = None
        self.clients: Dict[int, SocketBase] = {}
        self.messages = 0
        self._next_id = SERVER_ID + 1
        self._buffer = bytearray(config.max_message_size)

    @property
    def address(self) -> Optional[IPAddress]:
        """实际监听的地址（端口为 0 时由系统分配）"""
        if self.server is None:
            return None
        return self.server.get_local()

    def start(self) -> bool:
        """
        开始监听

        Returns:
            bool: 监听成功返回 True
        """
        flags = self.config.socket.socket_flags()
        self.server = SocketServer(IPAddress(self.config.host, self.config.port), flags, self.loop)
        if not self.server.ok:
            logger.error(f"无法监听 {self.config.host}:{self.config.port}")
            return False

        self.server.set_timeout(self.config.socket.timeout)
        self.server.set_event_handler(self._on_server_event, SERVER_ID)
        self.server.set_notify(EventFlag.CONNECTION)
        self.server.notify(True)
        logger.info(f"回显服务端运行在 {self.address}")
        return True

    def _on_server_event(self, event: SocketEvent):
        if event.event_type != Notification.CONNECTION:
            return

        while True:
            sock = self.server.accept(wait=False)
            if sock is None:
                break

            client_id = self._next_id
            self._next_id += 1
            sock.set_timeout(self.config.socket.timeout)
            sock.set_client_data(str(sock.get_peer()))
            sock.set_event_handler(self._on_client_event, client_id)
            sock.set_notify(EventFlag.INPUT | EventFlag.LOST)
            sock.notify(True)
            self.clients[client_id] = sock
            logger.info(f"客户端 {client_id} 已连接: {sock.get_peer()}")

    def _on_client_event(self, event: SocketEvent):
        sock = self.clients.get(event.id)
        if sock is None:
            return

        with log_context(peer=event.client_data, socket=event.id):
            if event.event_type == Notification.LOST:
                logger.info("客户端断开连接")
                self._drop(event.id)
                return

            if event.event_type == Notification.INPUT:
                self._echo(event.id, sock)

    def _echo(self, client_id: int, sock: SocketBase):
        sock.read_msg(self._buffer)
        if sock.error:
            if sock.is_connected():
                logger.warning("读取消息失败，关闭连接")
            self._drop(client_id)
            return

        count = sock.last_count
        logger.debug(f"收到消息: {count} 字节")

        sock.write_msg(self._buffer, count)
        if sock.error:
            logger.warning("回显消息失败，关闭连接")
            self._drop(client_id)
            return
        self.messages += 1

    def _drop(self, client_id: int):
        sock = self.clients.pop(client_id, None)
        if sock is not None:
            sock.destroy()

    def serve_forever(self, until: Optional[Callable[[], bool]] = None, slice_ms: int = 100):
        """
        运行调度循环，直到 until 返回 True（为 None 时一直运行）
        """
        while until is None or not until():
            self.loop.yield_once(slice_ms)

    def stop(self):
        """关闭所有客户端和监听套接字"""
        for client_id in list(self.clients):
            self._drop(client_id)
        if self.server is not None:
            self.server.destroy()
            self.server = None
        logger.info(f"回显服务端已停止，共回显 {self.messages} 条消息")


def main():
    """主函数"""
    parser = argparse.ArgumentParser(description='netsock 消息回显服务端')
    parser.add_argument('--config', '-c', default='config.yaml', help='配置文件路径')
    parser.add_argument('--host', default=None, help='监听地址')
    parser.add_argument('--port', '-p', type=int, default=None, help='监听端口')
    parser.add_argument('--debug', '-d', action='store_true', help='启用调试模式')
    args = parser.parse_args()

    setup_logging(args.debug, args.config)

    # 命令行参数优先于配置文件
    config = server_config_from_dict(load_config(args.config))
    if args.host:
        config.host = args.host
    if args.port is not None:
        config.port = args.port

    server = EchoServer(config)
    if not server.start():
        return 1

    try:
        server.serve_forever()
    except KeyboardInterrupt:
        logger.info("收到键盘中断信号")
    finally:
        server.stop()
        server.loop.close()

    return 0


if __name__ == '__main__':
    exit(main())
