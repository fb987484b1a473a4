"""
Desired state 생성 모듈
검증된 파라미터로부터 설정 파일/유닛 파일 내용을 계산한다.
같은 입력에는 항상 바이트 단위로 같은 출력을 낸다 (diff 기반 idempotent 의 전제).
"""

import os
import re
import shlex
import textwrap
import yaml
from .errors import ValidationError
from .models import CloudflareRunParameters, TailscaleRunParameters

_UUID_RE = re.compile(r"^[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}$")
_TUNNEL_NAME_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]*$")
_HOSTNAME_LABEL_RE = re.compile(r"^(?!-)[A-Za-z0-9-]{1,63}(?<!-)$")
_RUN_TIME_RE = re.compile(r"^([01][0-9]|2[0-3]):[0-5][0-9]$")
_RESTART_SEC_RE = re.compile(r"^[0-9]+(ms|s|min)?$")


def require(value, field_name: str) -> str:
    """빈 값이면 ValidationError"""
    if value is None or not str(value).strip():
        raise ValidationError(f"{field_name} must not be empty")
    return str(value)


def validate_tunnel_name(name: str) -> str:
    require(name, "tunnel name")
    if not _TUNNEL_NAME_RE.match(name):
        raise ValidationError(f"invalid tunnel name: {name!r}")
    return name


def validate_domain(domain: str) -> str:
    require(domain, "domain")
    if "://" in domain or "/" in domain:
        raise ValidationError(f"domain must be a bare hostname, got {domain!r}")
    if len(domain) > 253:
        raise ValidationError(f"domain too long: {domain!r}")

    labels = domain.split(".")
    if labels[0] == "*":
        labels = labels[1:]
    if len(labels) < 2 or not all(_HOSTNAME_LABEL_RE.match(label) for label in labels):
        raise ValidationError(f"invalid domain: {domain!r}")
    return domain


def validate_tunnel_id(tunnel_id: str) -> str:
    require(tunnel_id, "tunnel id")
    if not _UUID_RE.match(tunnel_id):
        raise ValidationError(f"tunnel id is not a UUID: {tunnel_id!r}")
    return tunnel_id


def validate_origin_service(service: str) -> str:
    require(service, "origin service")
    if "://" not in service and not service.startswith("http_status:"):
        raise ValidationError(f"invalid origin service: {service!r}")
    return service


def validate_absolute_path(path: str, field_name: str) -> str:
    require(path, field_name)
    if not path.startswith("/"):
        raise ValidationError(f"{field_name} must be an absolute path, got {path!r}")
    return path


def validate_command(command: str, field_name: str) -> str:
    """첫 토큰이 실제로 존재하는 실행 파일의 절대 경로인지 확인"""
    require(command, field_name)
    try:
        argv = shlex.split(command)
    except ValueError as e:
        raise ValidationError(f"{field_name} cannot be parsed: {e}") from e
    executable = validate_absolute_path(argv[0], f"{field_name} executable")
    if not (os.path.isfile(executable) and os.access(executable, os.X_OK)):
        raise ValidationError(f"{field_name}: {executable} is not an executable file")
    return command


def validate_run_time(run_time: str) -> str:
    require(run_time, "run time")
    if not _RUN_TIME_RE.match(run_time):
        raise ValidationError(f"run time must be HH:MM, got {run_time!r}")
    return run_time


def validate_restart_sec(restart_sec: str) -> str:
    require(restart_sec, "restart delay")
    if not _RESTART_SEC_RE.match(restart_sec):
        raise ValidationError(f"invalid restart delay: {restart_sec!r}")
    return restart_sec


def validate_cloudflare_params(params: CloudflareRunParameters) -> CloudflareRunParameters:
    """외부 호출 전에 전체 파라미터 검증"""
    validate_tunnel_name(params.tunnel_name)
    validate_domain(params.domain)
    validate_origin_service(params.origin_service)
    validate_absolute_path(params.binary_path, "binary path")
    validate_absolute_path(params.credentials_dir, "credentials dir")
    validate_absolute_path(params.unit_path, "unit path")
    require(params.service_name, "service name")
    require(params.download_url, "download url")
    return params


def validate_tailscale_params(params: TailscaleRunParameters) -> TailscaleRunParameters:
    require(params.service_name, "service name")
    require(params.package_base_url, "package base url")
    validate_absolute_path(params.keyring_path, "keyring path")
    validate_absolute_path(params.source_list_path, "source list path")
    validate_absolute_path(params.dropin_path, "drop-in path")
    validate_restart_sec(params.restart_sec)
    if params.maintenance_enabled:
        validate_run_time(params.run_time)
        require(params.maintenance_unit, "maintenance unit")
        validate_command(params.maintenance_exec_start, "maintenance command")
        validate_absolute_path(params.maintenance_service_path, "maintenance service path")
        validate_absolute_path(params.maintenance_timer_path, "maintenance timer path")
    if params.logrotate_enabled:
        validate_absolute_path(params.logrotate_path, "logrotate path")
        validate_absolute_path(params.maintenance_log, "maintenance log")
    return params


def build_tunnel_config(tunnel_id: str, credentials_dir: str, domain: str,
                        origin_service: str = "http://localhost:80") -> bytes:
    """cloudflared config.yml

    ingress 는 도메인 규칙 하나와 마지막 catch-all 규칙으로 구성된다.
    """
    validate_tunnel_id(tunnel_id)
    validate_absolute_path(credentials_dir, "credentials dir")
    validate_domain(domain)
    validate_origin_service(origin_service)

    data = {
        "tunnel": tunnel_id,
        "credentials-file": f"{credentials_dir.rstrip('/')}/{tunnel_id}.json",
        "ingress": [
            {"hostname": domain, "service": origin_service},
            {"service": "http_status:404"},
        ],
    }
    return yaml.safe_dump(data, default_flow_style=False, sort_keys=False).encode("utf-8")


def build_cloudflared_unit(binary_path: str, tunnel_name: str) -> bytes:
    validate_absolute_path(binary_path, "binary path")
    validate_tunnel_name(tunnel_name)

    unit = textwrap.dedent(f"""\
        [Unit]
        Description=Cloudflare Tunnel
        After=network.target

        [Service]
        ExecStart={binary_path} tunnel run {tunnel_name}
        Restart=always
        RestartSec=5s
        User=root
        ProtectSystem=full
        PrivateTmp=true
        NoNewPrivileges=true

        [Install]
        WantedBy=multi-user.target
    """)
    return unit.encode("utf-8")


def build_restart_dropin(restart_sec: str = "5s") -> bytes:
    """크래시/비정상 종료 후 자동 재시작 drop-in"""
    validate_restart_sec(restart_sec)

    dropin = textwrap.dedent(f"""\
        [Service]
        Restart=always
        RestartSec={restart_sec}
    """)
    return dropin.encode("utf-8")


def build_maintenance_service(exec_start: str, description: str = "Tailscale maintenance") -> bytes:
    require(exec_start, "maintenance command")

    unit = textwrap.dedent(f"""\
        [Unit]
        Description={description}
        After=network-online.target
        Wants=network-online.target

        [Service]
        Type=oneshot
        ExecStart={exec_start}
    """)
    return unit.encode("utf-8")


def build_maintenance_timer(run_time: str, timezone: str = "Etc/UTC",
                            description: str = "Daily Tailscale maintenance") -> bytes:
    validate_run_time(run_time)
    require(timezone, "timezone")

    timer = textwrap.dedent(f"""\
        [Unit]
        Description={description} (local timezone: {timezone})

        [Timer]
        OnCalendar=*-*-* {run_time}
        Persistent=true
        AccuracySec=5m

        [Install]
        WantedBy=timers.target
    """)
    return timer.encode("utf-8")


def build_logrotate_policy(maintenance_log: str, install_log_glob: str, service_name: str) -> bytes:
    validate_absolute_path(maintenance_log, "maintenance log")
    validate_absolute_path(install_log_glob, "install log pattern")
    require(service_name, "service name")

    policy = textwrap.dedent(f"""\
        {maintenance_log} {{
            weekly
            rotate 4
            compress
            missingok
            notifempty
            create 640 root adm
            postrotate
                systemctl reload-or-restart {service_name} >/dev/null 2>&1 || true
            endscript
        }}

        {install_log_glob} {{
            weekly
            rotate 2
            compress
            missingok
            notifempty
            create 640 root adm
        }}
    """)
    return policy.encode("utf-8")
