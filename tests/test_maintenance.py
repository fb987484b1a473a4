"""
유지보수 자가 점검 테스트
"""

from tunnel_agent.maintenance import MaintenanceRunner


def test_healthy_check_is_logged(tmp_path, fake_runner, no_sleep):
    sleep, delays = no_sleep
    log_file = tmp_path / "log" / "tailscale_maintenance.log"

    result = MaintenanceRunner("tailscaled", str(log_file), settle_seconds=3,
                               runner=fake_runner, sleep=sleep).run()

    assert result["healthy"]
    assert result["restarted"]
    assert delays == [3]
    assert fake_runner.called("systemctl", "restart", "tailscaled")
    assert fake_runner.called("tailscale", "status")

    lines = log_file.read_text().splitlines()
    assert len(lines) == 2
    assert "Starting tailscaled self-check" in lines[0]
    assert "running normally" in lines[1]
    assert log_file.stat().st_mode & 0o777 == 0o640


def test_unhealthy_check(tmp_path, fake_runner, no_sleep):
    sleep, _ = no_sleep
    fake_runner.on("systemctl", "restart", returncode=1, stderr="Unit tailscaled.service not found.")
    fake_runner.on("tailscale", "status", returncode=1, stderr="failed to connect to local tailscaled")
    log_file = tmp_path / "maintenance.log"

    result = MaintenanceRunner("tailscaled", str(log_file), runner=fake_runner, sleep=sleep).run()

    assert not result["healthy"]
    assert not result["restarted"]
    assert "failed to connect" in result["message"]
    assert result["warnings"]
    assert "unhealthy after restart" in log_file.read_text()


def test_log_is_appended(tmp_path, fake_runner, no_sleep):
    sleep, _ = no_sleep
    log_file = tmp_path / "maintenance.log"
    log_file.write_text("[2025-01-01 03:00:00] previous run\n")

    MaintenanceRunner("tailscaled", str(log_file), runner=fake_runner, sleep=sleep).run()

    assert log_file.read_text().startswith("[2025-01-01 03:00:00] previous run\n")
    assert len(log_file.read_text().splitlines()) == 3
