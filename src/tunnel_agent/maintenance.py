#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Tunnel Agent - 유지보수 자가 점검 모듈

systemd 타이머가 매일 실행한다:
- 서비스 재시작
- 잠시 대기 후 에이전트 상태 확인
- 결과를 유지보수 로그에 기록
"""

import grp
import os
import time
from datetime import datetime
from typing import Callable, Dict, List, Optional

from .runner import CommandRunner, output_of
from .supervisor import ServiceSupervisor
from .logger import get_logger


class MaintenanceRunner:
    """서비스 자가 점검을 수행하는 클래스"""

    def __init__(self, service: str, log_file: str,
                 check_command: Optional[List[str]] = None,
                 settle_seconds: float = 3.0,
                 runner: Optional[CommandRunner] = None,
                 supervisor: Optional[ServiceSupervisor] = None,
                 sleep: Callable[[float], None] = time.sleep):
        """
        Args:
            service: 재시작할 systemd 서비스 이름
            log_file: 유지보수 로그 파일 경로
            check_command: 재시작 후 상태 확인 명령 (종료 코드 0이면 정상)
            settle_seconds: 재시작 후 대기 시간 (초)
        """
        self.service = service
        self.log_file = log_file
        self.check_command = check_command or ["tailscale", "status"]
        self.settle_seconds = settle_seconds
        self.runner = runner or CommandRunner()
        self.supervisor = supervisor or ServiceSupervisor(self.runner)
        self.sleep = sleep
        self.logger = get_logger()

    def prepare_log(self):
        """로그 파일 생성 및 권한 설정 (640, root:adm)"""
        os.makedirs(os.path.dirname(self.log_file) or ".", exist_ok=True)
        if not os.path.exists(self.log_file):
            open(self.log_file, "a", encoding="utf-8").close()
        os.chmod(self.log_file, 0o640)

        if os.geteuid() != 0:
            return
        try:
            gid = grp.getgrnam("adm").gr_gid
        except KeyError:
            self.logger.debug("Group 'adm' not found, keeping log group")
            return
        os.chown(self.log_file, 0, gid)

    def record(self, message: str):
        timestamp = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
        with open(self.log_file, "a", encoding="utf-8") as f:
            f.write(f"[{timestamp}] {message}\n")

    def run(self) -> Dict:
        """자가 점검 1회 실행

        Returns:
            Dict: 점검 결과
        """
        self.prepare_log()
        self.record(f"Starting {self.service} self-check")
        self.logger.info(f"Maintenance self-check for {self.service}")

        restarted = self.supervisor.restart(self.service)
        self.sleep(self.settle_seconds)

        result = self.runner.run(self.check_command, timeout=30)
        healthy = result.returncode == 0

        if healthy:
            message = f"{self.service} is running normally"
            self.logger.info(message)
        else:
            detail = output_of(result) or f"exit code {result.returncode}"
            message = f"{self.service} unhealthy after restart: {detail}"
            self.logger.error(message)
        self.record(message)

        return {
            "timestamp": datetime.now().isoformat(),
            "service": self.service,
            "restarted": restarted,
            "healthy": healthy,
            "message": message,
            "warnings": list(self.supervisor.warnings),
        }
