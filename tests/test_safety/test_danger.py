import pytest

from vibe_devops.safety import DangerLevel, check_command, describe_path, extract_paths


@pytest.mark.parametrize(
    "command",
    [
        "rm -rf /",
        "rm -rf /*",
        "dd if=/dev/zero of=/dev/sda",
        "mkfs /dev/sdb1",
        ":(){ :|:& };:",
    ],
)
def test_blocked_commands(command):
    assert check_command(command).level == DangerLevel.BLOCKED


def test_rm_system_directory_is_dangerous():
    result = check_command("rm -rf /etc/nginx")
    assert result.level == DangerLevel.DANGEROUS
    assert result.description == "Delete system directory"
    assert result.alternative == "Be more specific about what to delete"
    assert "/etc" in result.affected_paths
    assert result.suggest_backup


def test_safe_command():
    result = check_command("ls -la")
    assert result.level == DangerLevel.SAFE
    assert result.affected_paths == []
    assert not result.suggest_backup


def test_warning_without_protected_path_does_not_suggest_backup():
    result = check_command("rm -rf build")
    assert result.level == DangerLevel.WARNING
    assert result.description == "Recursive delete"
    assert not result.suggest_backup


def test_protected_path_raises_safe_command_to_warning():
    result = check_command("cat /etc/hosts")
    assert result.level == DangerLevel.WARNING
    assert result.affected_paths == ["/etc"]
    assert result.suggest_backup


def test_highest_level_wins():
    result = check_command("kill -9 1234 && rm -rf /var/lib/app")
    assert result.level == DangerLevel.DANGEROUS


def test_describe_path():
    assert describe_path("/etc") == "/etc (System configuration)"
    assert describe_path("/srv") == "/srv"


def test_extract_paths():
    assert extract_paths("rm -rf /srv/app /srv/data") == ["/srv/app", "/srv/data"]
    assert extract_paths("echo hi > /tmp/out.txt") == ["/tmp/out.txt"]
    assert extract_paths("rm -rf build") == []
