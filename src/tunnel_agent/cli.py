"""
CLI 메인 인터페이스
Click 및 Rich 기반 사용자 친화적 CLI
"""

import os
import sys
import click
import yaml
from rich.console import Console
from rich.table import Table
from rich.prompt import Prompt
from . import __version__
from .config import AUTH_KEY_ENV, Config
from .logger import init_logger, get_logger
from .maintenance import MaintenanceRunner
from .orchestrator import CloudflareOrchestrator, TailscaleOrchestrator
from .supervisor import ServiceSupervisor

console = Console()


def _load_config(config_path, debug: bool) -> Config:
    """설정 로드 및 로거 초기화"""
    try:
        cfg = Config(config_path)
    except (ValueError, OSError, yaml.YAMLError) as e:
        console.print(f"[red]✗ 설정 파일 오류: {e}[/red]")
        sys.exit(1)
    cfg.apply_env()
    init_logger(cfg.agent.log_dir, cfg.agent.log_level, debug)
    return cfg


def _require_root():
    if os.geteuid() != 0:
        console.print("[red]이 명령은 root 권한이 필요합니다.[/red]")
        console.print("[yellow]sudo tunnel-agent ... 로 실행해 주세요.[/yellow]")
        sys.exit(1)


def _wait_for_enter(message: str):
    console.input(f"[bold]{message}...[/bold]")


@click.group()
@click.version_option(version=__version__)
def cli():
    """Tunnel Agent

    Cloudflare Tunnel / Tailscale 에이전트를 설치하고 systemd 로 상시 실행되도록 설정합니다.
    다시 실행해도 안전합니다 (변경된 파일만 기록하고 필요한 경우에만 재시작).
    """
    pass


@cli.command()
@click.option('--config', '-c', type=click.Path(exists=True), help='설정 파일 경로')
@click.option('--name', '-n', 'tunnel_name', help='터널 이름 (예: home-server)')
@click.option('--domain', '-d', help='바인딩할 도메인 (예: www.example.com)')
@click.option('--debug', is_flag=True, help='디버그 모드')
def cloudflare(config, tunnel_name, domain, debug):
    """Cloudflare Tunnel 설치 및 설정"""
    _require_root()
    cfg = _load_config(config, debug)
    logger = get_logger()
    logger.info(f"Starting cloudflare command (debug={debug})")

    if not (tunnel_name or cfg.cloudflare.tunnel_name):
        tunnel_name = Prompt.ask("터널 이름 (예: home-server)")
    if not (domain or cfg.cloudflare.domain):
        domain = Prompt.ask("바인딩할 도메인 (예: www.example.com)")

    params = cfg.to_cloudflare_params(tunnel_name, domain)
    orchestrator = CloudflareOrchestrator(
        params,
        policy=cfg.retry_policy(),
        lock_file=cfg.agent.lock_file,
        backup=cfg.agent.backup,
        backup_dir=cfg.agent.backup_dir,
        wait_for_user=_wait_for_enter,
    )
    success = orchestrator.run()

    sys.exit(0 if success else 1)


@cli.command()
@click.option('--config', '-c', type=click.Path(exists=True), help='설정 파일 경로')
@click.option('--auth-key', default=None,
              help=f'Tailscale pre-auth key (기본값: ${AUTH_KEY_ENV} 환경 변수)')
@click.option('--no-maintenance', is_flag=True, help='일일 유지보수 타이머를 설정하지 않음')
@click.option('--debug', is_flag=True, help='디버그 모드')
def tailscale(config, auth_key, no_maintenance, debug):
    """Tailscale 설치, 로그인 및 자가 유지보수 설정"""
    _require_root()
    cfg = _load_config(config, debug)
    logger = get_logger()
    logger.info(f"Starting tailscale command (debug={debug}, auth_key={'set' if auth_key else 'unset'})")

    if no_maintenance:
        cfg.maintenance.enabled = False

    params = cfg.to_tailscale_params(auth_key or None)
    orchestrator = TailscaleOrchestrator(
        params,
        policy=cfg.retry_policy(),
        lock_file=cfg.agent.lock_file,
        backup=cfg.agent.backup,
        backup_dir=cfg.agent.backup_dir,
    )
    success = orchestrator.run()

    sys.exit(0 if success else 1)


@cli.command()
@click.option('--config', '-c', type=click.Path(exists=True), help='설정 파일 경로')
@click.option('--service', '-s', default=None, help='재시작할 서비스 (기본값: tailscaled)')
def maintain(config, service):
    """서비스 자가 점검 (유지보수 타이머가 실행)"""
    cfg = _load_config(config, False)
    service = service or cfg.tailscale.service_name

    checker = MaintenanceRunner(
        service,
        cfg.maintenance.log_file,
        settle_seconds=float(cfg.maintenance.settle_seconds),
    )
    result = checker.run()

    if result["healthy"]:
        console.print(f"[green]✓ {result['message']}[/green]")
    else:
        console.print(f"[red]✗ {result['message']}[/red]")
    sys.exit(0 if result["healthy"] else 1)


@cli.command()
@click.option('--config', '-c', type=click.Path(exists=True), help='설정 파일 경로')
def status(config):
    """관리 중인 서비스 상태 표시"""
    cfg = _load_config(config, False)
    supervisor = ServiceSupervisor()

    names = [
        cfg.cloudflare.service_name,
        cfg.tailscale.service_name,
        f"{cfg.maintenance.unit_name}.timer",
    ]

    table = Table(title="서비스 상태", show_header=True, header_style="bold magenta")
    table.add_column("서비스", style="cyan")
    table.add_column("enabled")
    table.add_column("active")

    for name in names:
        state = supervisor.state(name)
        table.add_row(
            state.name,
            "[green]예[/green]" if state.enabled else "[red]아니오[/red]",
            "[green]예[/green]" if state.active else "[red]아니오[/red]",
        )

    console.print(table)


@cli.command()
@click.argument('output', type=click.Path(), default='./config.yaml')
def init(output):
    """샘플 설정 파일 생성"""
    if os.path.exists(output):
        console.print(f"[yellow]이미 존재하는 파일입니다: {output}[/yellow]")
        sys.exit(1)

    cfg = Config()
    cfg.create_sample(output)
    console.print(f"[green]✓ 샘플 설정 파일 생성: {output}[/green]")
    console.print("[cyan]설정 파일을 편집한 후 다음 명령어로 실행하세요:[/cyan]")
    console.print(f"[cyan]  sudo tunnel-agent cloudflare --config {output}[/cyan]")
    console.print(f"[cyan]  sudo tunnel-agent tailscale --config {output}[/cyan]")


@cli.command()
@click.option('--config', '-c', type=click.Path(exists=True), help='설정 파일 경로')
def validate(config):
    """설정 파일 유효성 검사"""
    try:
        cfg = Config(config)
        cfg.retry_policy()
    except (ValueError, OSError, yaml.YAMLError) as e:
        console.print(f"[red]✗ 설정 파일 오류: {str(e)}[/red]")
        sys.exit(1)

    console.print("[green]✓ 설정 파일이 유효합니다.[/green]")

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("항목", style="cyan")
    table.add_column("값")

    table.add_row("설정 파일", cfg.config_path or "[yellow]기본값[/yellow]")
    table.add_row("터널 이름", cfg.cloudflare.tunnel_name or "[red]미설정[/red]")
    table.add_row("도메인", cfg.cloudflare.domain or "[red]미설정[/red]")
    table.add_row("Tailscale auth key", "설정됨" if cfg.tailscale.auth_key else "없음 (브라우저 로그인)")
    table.add_row("유지보수 타이머", f"매일 {cfg.maintenance.run_time}" if cfg.maintenance.enabled else "아니오")
    table.add_row("로그 로테이션", "예" if cfg.logrotate.enabled else "아니오")
    table.add_row("재시도", f"{cfg.retry.max_attempts}회 / {cfg.retry.delay}초")

    console.print(table)


def main():
    """메인 엔트리 포인트"""
    cli()


if __name__ == '__main__':
    main()
