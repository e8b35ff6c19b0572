"""
netsock - 日志管理模块

功能概述:
本模块为 netsock 的命令行工具提供日志初始化，包括：
1. 多级别日志记录（DEBUG, INFO, WARNING, ERROR, CRITICAL）
2. 日志文件轮转（按大小/按日期）
3. 带上下文的结构化格式（peer、socket）
4. 配置文件（logging 部分）和环境变量支持

库代码只通过 logging.getLogger('netsock-xxx') 记录日志，
是否输出以及输出到哪里由应用程序调用 LoggerManager.initialize 决定。
"""

import logging
import logging.handlers
import os
import sys
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

try:
    from systemd.journal import JournalHandler
    HAS_JOURNAL = True
except ImportError:
    HAS_JOURNAL = False


DEFAULT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - [%(context)s] - %(message)s"


@dataclass
class LogConfig:
    """
    日志配置数据类

    Attributes:
        level: 日志级别
        log_dir: 日志存储目录
        log_file: 日志文件名
        max_bytes: 单个日志文件最大大小（字节）
        backup_count: 保留的备份文件数量
        rotation_type: 轮转类型（size, date, none）
        format_string: 日志格式字符串
        enable_console: 是否输出到控制台
        enable_file: 是否输出到文件
        enable_journal: 是否输出到系统日志
        context_fields: 上下文字段列表
    """
    level: str = "INFO"
    log_dir: str = "./logs"
    log_file: str = "netsock.log"
    max_bytes: int = 10 * 1024 * 1024  # 10MB
    backup_count: int = 5
    rotation_type: str = "size"
    format_string: str = DEFAULT_FORMAT
    enable_console: bool = True
    enable_file: bool = False
    enable_journal: bool = False
    context_fields: list = None

    def __post_init__(self):
        if self.context_fields is None:
            self.context_fields = ["peer", "socket"]


def _env_bool(name: str, default: Any) -> bool:
    return os.getenv(name, str(default)).lower() == 'true'


def log_config_from_dict(log_config: Optional[Dict[str, Any]]) -> LogConfig:
    """
    从配置字典（配置文件的 logging 部分）创建日志配置，环境变量优先

    Args:
        log_config: logging 配置字典

    Returns:
        LogConfig: 日志配置对象
    """
    log_config = log_config or {}
    defaults = LogConfig()
    return LogConfig(
        level=os.getenv('LOG_LEVEL', log_config.get('level', defaults.level)),
        log_dir=os.getenv('LOG_DIR', log_config.get('log_dir', defaults.log_dir)),
        log_file=os.getenv('LOG_FILE', log_config.get('log_file', defaults.log_file)),
        max_bytes=int(os.getenv('LOG_MAX_BYTES', log_config.get('max_bytes', defaults.max_bytes))),
        backup_count=int(os.getenv('LOG_BACKUP_COUNT', log_config.get('backup_count', defaults.backup_count))),
        rotation_type=os.getenv('LOG_ROTATION_TYPE', log_config.get('rotation_type', defaults.rotation_type)),
        format_string=os.getenv('LOG_FORMAT', log_config.get('format_string', defaults.format_string)),
        enable_console=_env_bool('LOG_ENABLE_CONSOLE', log_config.get('enable_console', defaults.enable_console)),
        enable_file=_env_bool('LOG_ENABLE_FILE', log_config.get('enable_file', defaults.enable_file)),
        enable_journal=_env_bool('LOG_ENABLE_JOURNAL', log_config.get('enable_journal', defaults.enable_journal)),
        context_fields=log_config.get('context_fields', ['peer', 'socket']),
    )


class ContextFilter(logging.Filter):
    """
    上下文过滤器

    为每条日志记录添加 context 字段，例如 "peer=127.0.0.1:9000 | socket=-"
    """

    def __init__(self, context_fields: list = None):
        super().__init__()
        self.context_fields = context_fields or []
        self.context_data = {}

    def add_context(self, **kwargs):
        self.context_data.update(kwargs)

    def remove_context(self, *names):
        for name in names:
            self.context_data.pop(name, None)

    def clear_context(self):
        self.context_data.clear()

    def filter(self, record):
        record.context = " | ".join(
            f"{field}={self.context_data.get(field, '-')}" for field in self.context_fields
        )
        return True


class LogFormatter(logging.Formatter):
    """
    日志格式化器，控制台输出时按级别着色
    """

    COLORS = {
        'DEBUG': '\033[36m',      # 青色
        'INFO': '\033[32m',       # 绿色
        'WARNING': '\033[33m',    # 黄色
        'ERROR': '\033[31m',      # 红色
        'CRITICAL': '\033[35m',   # 紫色
    }
    RESET = '\033[0m'

    def __init__(self, fmt=None, datefmt=None, style='%', use_color=False):
        super().__init__(fmt, datefmt, style)
        self.use_color = use_color

    def format(self, record):
        # 未经过 ContextFilter 的记录
        if not hasattr(record, 'context'):
            record.context = "-"

        levelname = record.levelname
        if self.use_color and levelname in self.COLORS:
            record.levelname = f"{self.COLORS[levelname]}{levelname}{self.RESET}"
        try:
            return super().format(record)
        finally:
            record.levelname = levelname


class LoggerManager:
    """
    日志管理器（单例）

    管理根日志记录器的处理器和上下文过滤器
    """

    _instance = None
    _initialized = False

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __init__(self):
        if not self._initialized:
            self.config: Optional[LogConfig] = None
            self.context_filter: Optional[ContextFilter] = None
            self.handlers = []
            self._initialized = True

    def load_config_from_file(self, config_file: str) -> LogConfig:
        """
        从配置文件的 logging 部分加载日志配置

        文件不存在或格式错误时只使用环境变量和默认值。

        Args:
            config_file: YAML 配置文件路径

        Returns:
            LogConfig: 日志配置对象
        """
        try:
            with open(config_file, 'r', encoding='utf-8') as f:
                config_data = yaml.safe_load(f) or {}
        except FileNotFoundError:
            return log_config_from_dict(None)
        except (OSError, yaml.YAMLError) as e:
            print(f"加载日志配置文件失败: {e}，使用环境变量配置", file=sys.stderr)
            return log_config_from_dict(None)
        return log_config_from_dict(config_data.get('logging'))

    def initialize(self, config: Optional[LogConfig] = None, config_file: Optional[str] = None):
        """
        初始化日志系统

        重复调用时先移除上一次安装的处理器。

        Args:
            config: 日志配置对象（可选）
            config_file: 配置文件路径（可选）
        """
        if config:
            self.config = config
        elif config_file:
            self.config = self.load_config_from_file(config_file)
        else:
            self.config = log_config_from_dict(None)

        self.shutdown()
        self.context_filter = ContextFilter(self.config.context_fields)

        root_logger = logging.getLogger()
        root_logger.setLevel(self._level())

        if self.config.enable_console:
            self._add_handler(root_logger, self._console_handler())
        if self.config.enable_file:
            Path(self.config.log_dir).mkdir(parents=True, exist_ok=True)
            self._add_handler(root_logger, self._file_handler())
        if self.config.enable_journal and HAS_JOURNAL:
            self._add_handler(root_logger, JournalHandler())

    def _level(self) -> int:
        return getattr(logging, self.config.level.upper(), logging.INFO)

    def _add_handler(self, logger: logging.Logger, handler: logging.Handler):
        handler.setLevel(self._level())
        # 过滤器挂在处理器上，子记录器传播上来的记录同样带有上下文
        handler.addFilter(self.context_filter)
        logger.addHandler(handler)
        self.handlers.append(handler)

    def _console_handler(self) -> logging.Handler:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(LogFormatter(
            fmt=self.config.format_string,
            datefmt='%Y-%m-%d %H:%M:%S',
            use_color=sys.stdout.isatty()
        ))
        return handler

    def _file_handler(self) -> logging.Handler:
        log_file_path = Path(self.config.log_dir) / self.config.log_file

        if self.config.rotation_type == 'size':
            handler = logging.handlers.RotatingFileHandler(
                filename=log_file_path,
                maxBytes=self.config.max_bytes,
                backupCount=self.config.backup_count,
                encoding='utf-8'
            )
        elif self.config.rotation_type == 'date':
            handler = logging.handlers.TimedRotatingFileHandler(
                filename=log_file_path,
                when='midnight',
                interval=1,
                backupCount=self.config.backup_count,
                encoding='utf-8'
            )
        else:
            handler = logging.FileHandler(filename=log_file_path, encoding='utf-8')

        handler.setFormatter(LogFormatter(
            fmt=self.config.format_string,
            datefmt='%Y-%m-%d %H:%M:%S',
            use_color=False
        ))
        return handler

    def shutdown(self):
        """移除并关闭本管理器安装的处理器"""
        root_logger = logging.getLogger()
        for handler in self.handlers:
            root_logger.removeHandler(handler)
            handler.close()
        self.handlers = []

    def add_context(self, **kwargs):
        if self.context_filter:
            self.context_filter.add_context(**kwargs)

    def remove_context(self, *names):
        if self.context_filter:
            self.context_filter.remove_context(*names)

    def clear_context(self):
        if self.context_filter:
            self.context_filter.clear_context()


def setup_logging(debug: bool = False, config_file: Optional[str] = None) -> LoggerManager:
    """
    命令行工具使用的日志初始化

    Args:
        debug: 为 True 时强制使用 DEBUG 级别
        config_file: 配置文件路径（可选）

    Returns:
        LoggerManager: 日志管理器
    """
    manager = LoggerManager()
    if config_file:
        config = manager.load_config_from_file(config_file)
    else:
        config = log_config_from_dict(None)
    if debug:
        config.level = 'DEBUG'
    manager.initialize(config=config)
    return manager


@contextmanager
def log_context(**kwargs):
    """
    在 with 块内为日志添加上下文信息

    示例:
        with log_context(peer='127.0.0.1:9000'):
            logger.info("收到消息")
    """
    manager = LoggerManager()
    manager.add_context(**kwargs)
    try:
        yield manager
    finally:
        manager.remove_context(*kwargs)
