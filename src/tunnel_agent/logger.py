"""
로깅 시스템
실행별 설치 로그, 에러 로그, Rich 콘솔 출력

로그 파일은 logrotate 정책({log_dir}/*.log)이 관리하므로 실행마다 새 파일을 만들고
권한은 유지보수 로그와 같은 0640 으로 맞춘다.
인증 키처럼 등록된 비밀 값은 모든 핸들러에서 가려진다.
"""

import logging
import os
from datetime import datetime
from typing import Dict, Optional, Set
from rich.logging import RichHandler
from rich.console import Console

console = Console()

DEFAULT_LOG_DIR = "/var/log/tunnel-agent"
LOG_FILE_MODE = 0o640
LOGGER_NAME = "tunnel_agent"

_FILE_FORMAT = logging.Formatter(
    "%(asctime)s [%(levelname)s] %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S"
)


def mask_secret(value: str, visible: int = 4) -> str:
    """인증 키 등 비밀 값을 로그용으로 가림"""
    if not value:
        return ""
    if len(value) <= visible:
        return "*" * len(value)
    return value[:visible] + "*" * (len(value) - visible)


class SecretFilter(logging.Filter):
    """등록된 비밀 값을 레코드 메시지에서 가린다"""

    def __init__(self):
        super().__init__()
        self.secrets: Set[str] = set()

    def filter(self, record: logging.LogRecord) -> bool:
        if self.secrets:
            message = record.getMessage()
            for secret in self.secrets:
                message = message.replace(secret, mask_secret(secret))
            record.msg, record.args = message, None
        return True


def _file_handler(path: str, level: int) -> logging.FileHandler:
    handler = logging.FileHandler(path, encoding="utf-8")
    os.chmod(path, LOG_FILE_MODE)
    handler.setLevel(level)
    handler.setFormatter(_FILE_FORMAT)
    return handler


class AgentLogger:
    """에이전트 로거"""

    def __init__(self, log_dir: str = DEFAULT_LOG_DIR, log_level: str = "INFO", debug: bool = False):
        self.log_dir = log_dir
        self.log_level = logging.DEBUG if debug else getattr(logging, log_level.upper())

        os.makedirs(log_dir, exist_ok=True)
        started = datetime.now().strftime("%Y%m%d_%H%M%S")
        self.log_file = os.path.join(log_dir, f"install_{started}.log")
        self.error_file = os.path.join(log_dir, f"error_{started}.log")

        self.logger = logging.getLogger(LOGGER_NAME)
        self.logger.setLevel(self.log_level)
        self.logger.propagate = False

        # 같은 프로세스에서 다시 초기화될 때 이전 파일 핸들을 닫음
        for handler in list(self.logger.handlers):
            self.logger.removeHandler(handler)
            handler.close()

        self.secret_filter = SecretFilter()
        console_handler = RichHandler(
            console=console,
            rich_tracebacks=True,
            show_time=False,
            show_path=debug
        )
        console_handler.setLevel(self.log_level)

        for handler in (
            _file_handler(self.log_file, self.log_level),
            _file_handler(self.error_file, logging.ERROR),
            console_handler,
        ):
            handler.addFilter(self.secret_filter)
            self.logger.addHandler(handler)

    def register_secret(self, value: Optional[str]):
        """이후 모든 로그에서 value 를 가린다"""
        if value:
            self.secret_filter.secrets.add(value)

    def debug(self, message: str):
        self.logger.debug(message)

    def info(self, message: str):
        self.logger.info(message)

    def warning(self, message: str):
        self.logger.warning(message)

    def error(self, message: str):
        self.logger.error(message)

    def get_log_files(self) -> Dict[str, str]:
        return {
            "main_log": self.log_file,
            "error_log": self.error_file,
            "log_dir": self.log_dir
        }


_logger: Optional[AgentLogger] = None


def get_logger() -> AgentLogger:
    """전역 로거 (init_logger 전이면 기본 위치로 생성)"""
    global _logger
    if _logger is None:
        _logger = AgentLogger()
    return _logger


def init_logger(log_dir: str, log_level: str = "INFO", debug: bool = False) -> AgentLogger:
    global _logger
    _logger = AgentLogger(log_dir, log_level, debug)
    return _logger
