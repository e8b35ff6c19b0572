"""
配置管理测试
"""

import pytest

from config import (
    ClientConfig, ProxyConfig, SocketConfig, client_config_from_dict, load_config,
    parse_flags, parse_proxy_type, save_config, server_config_from_dict,
)
from netsock import ProxyType, SocketFlags


class TestParsing:
    """标志位和代理类型解析"""

    def test_parse_flags(self):
        assert parse_flags(['waitall', 'BLOCK']) == SocketFlags.WAITALL | SocketFlags.BLOCK
        assert parse_flags('nowait') == SocketFlags.NOWAIT
        assert parse_flags(None) == SocketFlags.NONE
        assert parse_flags([]) == SocketFlags.NONE

    def test_parse_unknown_flag(self):
        with pytest.raises(ValueError):
            parse_flags(['sometimes'])

    def test_parse_proxy_type(self):
        assert parse_proxy_type('SOCKS4a') == ProxyType.SOCKS4A
        assert parse_proxy_type('socks4') == ProxyType.SOCKS4
        assert parse_proxy_type(None) == ProxyType.NONE
        with pytest.raises(ValueError):
            parse_proxy_type('socks6')

    def test_socket_flags_with_reuse(self):
        config = SocketConfig(flags=['waitall'], reuse_addr=True)
        assert config.socket_flags() == SocketFlags.WAITALL | SocketFlags.REUSEADDR

    def test_proxy_enabled(self):
        assert not ProxyConfig().enabled
        assert ProxyConfig(type='socks4a').enabled


class TestConfigFile:
    """配置文件加载和保存"""

    def test_missing_file(self, tmp_path):
        assert load_config(str(tmp_path / 'missing.yaml')) == {}

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / 'broken.yaml'
        path.write_text('client: [unclosed', encoding='utf-8')
        assert load_config(str(path)) == {}

    def test_save_and_load(self, tmp_path):
        path = str(tmp_path / 'config.yaml')
        data = {
            'client': {
                'server_host': 'echo.example',
                'server_port': 9100,
                'socket': {'timeout': 30, 'flags': ['waitall']},
                'proxy': {'type': 'socks4a', 'host': '10.0.0.2', 'port': 1081, 'login': 'alice'},
            },
            'server': {
                'host': '127.0.0.1',
                'port': 9100,
                'max_message_size': 1024,
                'socket': {'reuse_addr': True},
            },
        }
        assert save_config(path, data)
        loaded = load_config(path)
        assert loaded == data

        client = client_config_from_dict(loaded)
        assert client.server_host == 'echo.example'
        assert client.server_port == 9100
        assert client.socket.timeout == 30
        assert client.socket.socket_flags() == SocketFlags.WAITALL
        assert parse_proxy_type(client.proxy.type) == ProxyType.SOCKS4A
        assert client.proxy.port == 1081
        assert client.proxy.login == 'alice'

        server = server_config_from_dict(loaded)
        assert server.host == '127.0.0.1'
        assert server.max_message_size == 1024
        assert server.socket.socket_flags() == SocketFlags.REUSEADDR

    def test_defaults(self):
        client = client_config_from_dict({})
        assert client == ClientConfig()
        server = server_config_from_dict(None)
        assert server.port == 9000
        assert server.socket.timeout == 600

    def test_save_failure(self, tmp_path):
        assert not save_config(str(tmp_path / 'missing-dir' / 'config.yaml'), {})
