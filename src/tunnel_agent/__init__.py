"""
Tunnel Agent
Cloudflare Tunnel / Tailscale 에이전트를 Debian/Ubuntu 호스트에 설치하고 설정하는 에이전트

Features:
- 선언적 설정 파일/유닛 파일 관리 (변경 시에만 적용)
- 덮어쓰기 전 자동 백업 및 원자적 쓰기
- 네트워크 작업 재시도
- systemd 서비스 자가 복구 및 일일 유지보수 타이머
- 로그 로테이션 정책 설치
"""

__version__ = "1.0.0"
__author__ = "DevOps Team"
