"""Command danger classification and pre-execution backups."""

import json
import re
import shutil
import subprocess
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import IntEnum
from pathlib import Path
from typing import Callable

from pydantic import BaseModel, Field, PrivateAttr, ValidationError
from rich.console import Console

from vibe_devops.logging import get_logger

log = get_logger(__name__)

DEFAULT_BACKUP_ROOT = Path("~/.vibe/backups")
BACKUP_TIMESTAMP_FORMAT = "%Y-%m-%d_%H-%M-%S"
MANIFEST_FILENAME = "manifest.json"
MAX_BACKUP_DAYS = 7


class DangerLevel(IntEnum):
    SAFE = 0
    WARNING = 1
    DANGEROUS = 2
    BLOCKED = 3


@dataclass(frozen=True)
class DangerPattern:
    pattern: re.Pattern[str]
    level: DangerLevel
    description: str
    alternative: str = ""


def _p(regex: str, level: DangerLevel, description: str, alternative: str = "") -> DangerPattern:
    return DangerPattern(re.compile(regex), level, description, alternative)


DANGER_PATTERNS: tuple[DangerPattern, ...] = (
    # Blocked
    _p(r"rm\s+-rf?\s+/\s*$", DangerLevel.BLOCKED, "Delete entire filesystem"),
    _p(r"rm\s+-rf?\s+/\*", DangerLevel.BLOCKED, "Delete all root directories"),
    _p(r"dd\s+.*of=/dev/[sh]d", DangerLevel.BLOCKED, "Overwrite disk device"),
    _p(r"mkfs\s+/dev/", DangerLevel.BLOCKED, "Format disk device"),
    _p(r":\(\)\s*\{\s*:\|:\s*&\s*\}", DangerLevel.BLOCKED, "Fork bomb"),
    # Dangerous
    _p(
        r"rm\s+-rf?\s+/(etc|var|usr|bin|sbin|root|home)",
        DangerLevel.DANGEROUS,
        "Delete system directory",
        "Be more specific about what to delete",
    ),
    _p(r"rm\s+-rf?\s+/opt/", DangerLevel.DANGEROUS, "Delete application directory"),
    _p(r">\s*/(etc|var)/", DangerLevel.DANGEROUS, "Overwrite system file", "Use tee or proper editor"),
    _p(r"chmod\s+-R\s+777\s+/", DangerLevel.DANGEROUS, "Recursive world-writable permissions"),
    _p(r"chown\s+-R\s+.*\s+/(etc|var|usr)", DangerLevel.DANGEROUS, "Recursive ownership change on system directory"),
    # Warning
    _p(r"rm\s+-rf?", DangerLevel.WARNING, "Recursive delete"),
    _p(r">\s*[^|]", DangerLevel.WARNING, "File overwrite", "Consider using >> for append"),
    _p(r"kill\s+-9", DangerLevel.WARNING, "Force kill process", "Try SIGTERM first"),
    _p(r"systemctl\s+(stop|disable)", DangerLevel.WARNING, "Stop or disable a system service"),
    _p(r"docker\s+(rm|rmi|system\s+prune)", DangerLevel.WARNING, "Remove Docker resources"),
)

PROTECTED_PATHS: dict[str, str] = {
    "/etc": "System configuration",
    "/var": "Variable data",
    "/usr": "User programs",
    "/bin": "Essential binaries",
    "/sbin": "System binaries",
    "/root": "Root home",
    "/home": "User homes",
    "/opt": "Optional applications",
}

# Shell syntax that chains or redirects commands.
CHAIN_MARKERS = (";", "&&", "||", "|", "`", "$(", ">", "<", "\n", "&")

_PATH_PATTERNS = (
    re.compile(r"rm\s+-rf?\s+(.+)"),
    re.compile(r"cp\s+.+\s+(.+)"),
    re.compile(r"mv\s+.+\s+(.+)"),
    re.compile(r">\s*(.+)"),
)


@dataclass
class DangerClassification:
    """Safety tier of a command string."""

    level: DangerLevel = DangerLevel.SAFE
    description: str = ""
    alternative: str = ""
    affected_paths: list[str] = field(default_factory=list)
    suggest_backup: bool = False


def describe_path(path: str) -> str:
    """Human label for a protected path, e.g. '/etc (System configuration)'."""
    description = PROTECTED_PATHS.get(path)
    return f"{path} ({description})" if description else path


def check_command(command: str) -> DangerClassification:
    """Classify a command against the danger table and protected paths."""
    result = DangerClassification()

    for danger in DANGER_PATTERNS:
        if danger.pattern.search(command) and danger.level > result.level:
            result.level = danger.level
            result.description = danger.description
            result.alternative = danger.alternative

    for path in PROTECTED_PATHS:
        if path in command:
            result.affected_paths.append(path)
            if result.level < DangerLevel.WARNING:
                result.level = DangerLevel.WARNING
                result.description = result.description or f"Touches protected path {path}"

    result.suggest_backup = result.level >= DangerLevel.WARNING and bool(result.affected_paths)
    return result


def has_chain_markers(command: str) -> bool:
    return any(marker in command for marker in CHAIN_MARKERS)


def extract_paths(command: str) -> list[str]:
    """Absolute filesystem targets guessed from the command shape."""
    paths: list[str] = []
    for pattern in _PATH_PATTERNS:
        match = pattern.search(command)
        if not match:
            continue
        for token in match.group(1).split():
            if token.startswith("/") and token not in paths:
                paths.append(token)
    return paths


class BackupManifest(BaseModel):
    """Record of one backup event, stored as manifest.json."""

    timestamp: datetime
    command: str
    backup_paths: dict[str, str] = Field(default_factory=dict)

    _location: Path | None = PrivateAttr(default=None)

    @property
    def location(self) -> Path | None:
        return self._location


class BackupManager:
    """Timestamped copies of paths a dangerous command is about to touch."""

    def __init__(self, root: Path | str = DEFAULT_BACKUP_ROOT, retention_days: int = MAX_BACKUP_DAYS):
        self.root = Path(root).expanduser()
        self.retention_days = retention_days

    def _new_backup_dir(self, now: datetime) -> Path:
        stamp = now.strftime(BACKUP_TIMESTAMP_FORMAT)
        path = self.root / stamp
        suffix = 1
        while path.exists():
            path = self.root / f"{stamp}-{suffix}"
            suffix += 1
        return path

    def create_backup(self, command: str, paths: list[str], now: datetime | None = None) -> Path | None:
        """Copy existing paths into a new backup directory.

        Returns:
            The backup directory, or None when there was nothing to back up
            or the backup directory could not be written.
        """
        if not paths:
            return None

        now = now or datetime.now()
        backup_dir = self._new_backup_dir(now)
        try:
            backup_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            log.warning("Failed to create backup directory", location=str(backup_dir), error=str(e))
            return None

        manifest = BackupManifest(timestamp=now, command=command)
        for original in paths:
            if not Path(original).exists():
                continue
            backup_name = original.lstrip("/").replace("/", "_")
            destination = backup_dir / backup_name
            try:
                subprocess.run(
                    ["cp", "-r", original, str(destination)],
                    check=True,
                    capture_output=True,
                )
            except (OSError, subprocess.CalledProcessError) as e:
                log.warning("Failed to back up path", path=original, error=str(e))
                continue
            manifest.backup_paths[original] = str(destination)

        try:
            (backup_dir / MANIFEST_FILENAME).write_text(
                manifest.model_dump_json(indent=2), encoding="utf-8"
            )
        except OSError as e:
            log.warning("Failed to write backup manifest", location=str(backup_dir), error=str(e))
            shutil.rmtree(backup_dir, ignore_errors=True)
            return None
        log.info("Backup created", location=str(backup_dir), paths=len(manifest.backup_paths))
        return backup_dir

    @staticmethod
    def read_manifest(backup_dir: Path) -> BackupManifest:
        data = json.loads((backup_dir / MANIFEST_FILENAME).read_text(encoding="utf-8"))
        manifest = BackupManifest.model_validate(data)
        manifest._location = backup_dir
        return manifest

    def get_recent_backups(self, limit: int = 10) -> list[BackupManifest]:
        """Manifests, newest first."""
        if not self.root.is_dir():
            return []
        backups: list[BackupManifest] = []
        for entry in sorted(self.root.iterdir(), key=lambda p: p.name, reverse=True):
            if len(backups) >= limit:
                break
            if not entry.is_dir():
                continue
            try:
                backups.append(self.read_manifest(entry))
            except (OSError, ValueError, ValidationError):
                continue
        return backups

    def restore_backup(self, backup_dir: Path | str) -> list[str]:
        """Copy every backed-up path back to where it came from.

        Returns:
            Original paths that were restored.
        """
        manifest = self.read_manifest(Path(backup_dir))
        restored: list[str] = []
        for original, backup in manifest.backup_paths.items():
            log.info("Restoring path", path=original)
            backup_path = Path(backup)
            source = f"{backup_path}/." if backup_path.is_dir() else str(backup_path)
            if backup_path.is_dir():
                Path(original).mkdir(parents=True, exist_ok=True)
            try:
                subprocess.run(["cp", "-r", source, original], check=True, capture_output=True)
            except (OSError, subprocess.CalledProcessError) as e:
                log.warning("Failed to restore path", path=original, error=str(e))
                continue
            restored.append(original)
        return restored

    def cleanup_old_backups(self, now: datetime | None = None) -> list[str]:
        """Delete backup directories older than the retention window."""
        if not self.root.is_dir():
            return []
        cutoff = (now or datetime.now()) - timedelta(days=self.retention_days)
        removed: list[str] = []
        for entry in self.root.iterdir():
            if not entry.is_dir():
                continue
            try:
                created = datetime.strptime(entry.name[:19], BACKUP_TIMESTAMP_FORMAT)
            except ValueError:
                continue
            if created < cutoff:
                shutil.rmtree(entry, ignore_errors=True)
                removed.append(entry.name)
                log.info("Cleaned up old backup", name=entry.name)
        return removed


def prompt_backup_choice(
    console: Console,
    command: str,
    result: DangerClassification,
    ask: Callable[[str], str],
) -> str:
    """Show the danger report and ask what to do.

    Returns:
        "backup", "run" or "cancel". Blocked commands always cancel.
    """
    if result.level == DangerLevel.BLOCKED:
        console.print("[bold red]BLOCKED:[/bold red] This command is too dangerous to execute:")
        console.print(f"   {command}", markup=False)
        console.print(f"   Reason: {result.description}")
        return "cancel"

    if result.level == DangerLevel.DANGEROUS:
        console.print("[bold red]DANGEROUS COMMAND:[/bold red]")
    else:
        console.print("[bold yellow]WARNING:[/bold yellow]")
    console.print(f"   {command}", markup=False)
    console.print(f"   Reason: {result.description}")

    if result.affected_paths:
        console.print("\n   Affected system paths:")
        for path in result.affected_paths:
            console.print(f"   - {describe_path(path)}")
    if result.alternative:
        console.print(f"\n   Suggestion: {result.alternative}")

    console.print("\n   Options:")
    console.print("   \\[b] Create backup first, then run")
    console.print("   \\[r] Run without backup")
    console.print("   \\[c] Cancel")

    choice = (ask("   Choice") or "").strip().lower()
    if choice == "b":
        return "backup"
    if choice == "r":
        return "run"
    return "cancel"
