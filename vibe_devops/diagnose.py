"""System health diagnostics: collectors gather facts, rules turn them into findings."""

import asyncio
import platform
import shutil
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Awaitable, Callable

from rich.console import Console
from rich.markup import escape

from vibe_devops.exceptions import DiagnoseError
from vibe_devops.executor import current_goos
from vibe_devops.llm import GenerateRequest, Provider
from vibe_devops.logging import get_logger

log = get_logger(__name__)

DEFAULT_DISK_WARN_PERCENT = 85.0
DEFAULT_MEMORY_WARN_PERCENT = 80.0
CRITICAL_PERCENT = 95.0
DEFAULT_COMMAND_TIMEOUT = 10.0
MAX_LISTENING_PORTS = 20
MEMINFO_PATH = Path("/proc/meminfo")

# Well-known services and the port they usually listen on (0 = none)
KNOWN_SERVICE_PORTS: dict[str, int] = {
    "nginx": 80,
    "apache2": 80,
    "httpd": 80,
    "mysql": 3306,
    "mysqld": 3306,
    "mariadb": 3306,
    "redis": 6379,
    "redis-server": 6379,
    "postgresql": 5432,
    "postgres": 5432,
    "mongodb": 27017,
    "mongod": 27017,
    "sshd": 22,
    "docker": 0,
    "containerd": 0,
}

REQUIRED_PORTS: dict[int, str] = {22: "SSH"}

CommandRunner = Callable[..., Awaitable[str]]


class Severity(str, Enum):
    WARNING = "warning"
    ERROR = "error"


@dataclass
class PortInfo:
    port: int
    process: str = ""
    state: str = "LISTEN"


@dataclass
class ServiceInfo:
    name: str
    status: str  # running, stopped
    port: int = 0


@dataclass
class SystemInfo:
    """Facts gathered by the collectors."""

    os: str
    arch: str
    disk_usage_percent: float = 0.0
    disk_path: str = ""
    memory_usage_percent: float = 0.0
    docker_running: bool = False
    docker_containers: int = 0
    docker_images: int = 0
    listening_ports: list[PortInfo] = field(default_factory=list)
    services: list[ServiceInfo] = field(default_factory=list)


@dataclass
class Issue:
    category: str
    description: str
    severity: Severity = Severity.WARNING
    value: str = ""
    threshold: str = ""
    fix_command: str = ""


@dataclass
class Check:
    category: str
    description: str
    value: str = ""


@dataclass
class DiagnoseResult:
    warnings: list[Issue] = field(default_factory=list)
    errors: list[Issue] = field(default_factory=list)
    ok: list[Check] = field(default_factory=list)

    @property
    def summary(self) -> str:
        return f"Found {len(self.warnings)} warnings, {len(self.errors)} errors, {len(self.ok)} OK"

    @property
    def has_problems(self) -> bool:
        return bool(self.warnings or self.errors)

    def fixes(self) -> list[str]:
        """Distinct fix commands, errors first."""
        fixes: list[str] = []
        for issue in [*self.errors, *self.warnings]:
            if issue.fix_command and issue.fix_command not in fixes:
                fixes.append(issue.fix_command)
        return fixes


class SubprocessRunner:
    """Runs one inspection command and returns its stdout."""

    def __init__(self, timeout: float = DEFAULT_COMMAND_TIMEOUT):
        self.timeout = timeout

    async def __call__(self, *argv: str) -> str:
        """Raises DiagnoseError when the command is missing, fails or times out."""
        try:
            process = await asyncio.create_subprocess_exec(
                *argv,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.DEVNULL,
            )
        except OSError as e:
            raise DiagnoseError(argv[0], str(e)) from e
        try:
            output, _ = await asyncio.wait_for(process.communicate(), timeout=self.timeout)
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            raise DiagnoseError(argv[0], f"timed out after {self.timeout}s")
        if process.returncode != 0:
            raise DiagnoseError(argv[0], f"exit status {process.returncode}")
        return output.decode("utf-8", errors="replace")


def count_lines(output: str) -> int:
    return len([line for line in output.splitlines() if line.strip()])


def parse_meminfo(text: str) -> float:
    """Used memory percentage from /proc/meminfo (total minus available)."""
    values: dict[str, int] = {}
    for line in text.splitlines():
        key, _, rest = line.partition(":")
        parts = rest.split()
        if parts and parts[0].isdigit():
            values[key.strip()] = int(parts[0])
    total = values.get("MemTotal", 0)
    available = values.get("MemAvailable", values.get("MemFree", 0))
    if total <= 0:
        return 0.0
    return round((total - available) / total * 100, 1)


def _port_of(address: str) -> int | None:
    _, sep, port = address.rpartition(":")
    if not sep or not port.isdigit():
        return None
    return int(port)


def parse_ss_output(output: str) -> list[PortInfo]:
    """Listening sockets from ``ss -tlnp``."""
    ports: list[PortInfo] = []
    for line in output.splitlines():
        fields = line.split()
        if len(fields) < 5 or fields[0] != "LISTEN":
            continue
        port = _port_of(fields[3])
        if port is None:
            continue
        ports.append(PortInfo(port=port, process=fields[5] if len(fields) >= 6 else ""))
    return ports[:MAX_LISTENING_PORTS]


def parse_lsof_output(output: str) -> list[PortInfo]:
    """Listening sockets from ``lsof -i -P -n``."""
    ports: list[PortInfo] = []
    for line in output.splitlines():
        fields = line.split()
        if "(LISTEN)" not in fields or len(fields) < 9:
            continue
        port = _port_of(fields[8])
        if port is not None:
            ports.append(PortInfo(port=port, process=fields[0]))
    return ports[:MAX_LISTENING_PORTS]


def parse_netstat_output(output: str) -> list[PortInfo]:
    """Listening sockets from Windows ``netstat -an``."""
    ports: list[PortInfo] = []
    for line in output.splitlines():
        fields = line.split()
        if "LISTENING" not in fields or len(fields) < 2:
            continue
        port = _port_of(fields[1])
        if port is not None:
            ports.append(PortInfo(port=port, process="unknown"))
    return ports[:MAX_LISTENING_PORTS]


def parse_running_units(output: str) -> list[ServiceInfo]:
    """Running services from ``systemctl list-units --no-legend``."""
    services: list[ServiceInfo] = []
    for line in output.splitlines():
        fields = line.replace("●", " ").split()
        if not fields:
            continue
        name = fields[0].removesuffix(".service")
        services.append(ServiceInfo(name=name, status="running", port=KNOWN_SERVICE_PORTS.get(name, 0)))
    return services


class Collector(ABC):
    name: str = ""

    @abstractmethod
    async def collect(self, info: SystemInfo, run: CommandRunner) -> None:
        pass


class SystemCollector(Collector):
    """Disk and memory usage."""

    name = "system"

    def __init__(self, meminfo_path: Path = MEMINFO_PATH):
        self.meminfo_path = meminfo_path

    async def collect(self, info: SystemInfo, run: CommandRunner) -> None:
        disk_path = "C:\\" if info.os == "windows" else "/"
        try:
            usage = shutil.disk_usage(disk_path)
        except OSError as e:
            raise DiagnoseError(self.name, f"disk usage unavailable: {e}") from e
        if usage.total:
            info.disk_usage_percent = round(usage.used / usage.total * 100, 1)
            info.disk_path = disk_path

        if info.os == "linux" and self.meminfo_path.exists():
            info.memory_usage_percent = parse_meminfo(self.meminfo_path.read_text(encoding="utf-8"))
        elif info.os == "windows":
            output = await run(
                "powershell",
                "-Command",
                "$os = Get-CimInstance Win32_OperatingSystem; "
                "[math]::Round(($os.TotalVisibleMemorySize - $os.FreePhysicalMemory) "
                "/ $os.TotalVisibleMemorySize * 100, 1)",
            )
            try:
                info.memory_usage_percent = float(output.strip())
            except ValueError:
                log.debug("Unparseable memory percentage", output=output)


class DockerCollector(Collector):
    name = "docker"

    async def collect(self, info: SystemInfo, run: CommandRunner) -> None:
        try:
            await run("docker", "info")
        except DiagnoseError:
            info.docker_running = False
            return
        info.docker_running = True
        info.docker_containers = count_lines(await run("docker", "ps", "-q"))
        info.docker_images = count_lines(await run("docker", "images", "-q"))


class NetworkCollector(Collector):
    name = "network"

    async def collect(self, info: SystemInfo, run: CommandRunner) -> None:
        if info.os == "linux":
            info.listening_ports = parse_ss_output(await run("ss", "-tlnp"))
        elif info.os == "darwin":
            info.listening_ports = parse_lsof_output(await run("lsof", "-i", "-P", "-n"))
        elif info.os == "windows":
            info.listening_ports = parse_netstat_output(await run("netstat", "-an"))


class ServicesCollector(Collector):
    """Running services via systemctl, or a check of well-known names."""

    name = "services"

    async def collect(self, info: SystemInfo, run: CommandRunner) -> None:
        if info.os == "windows":
            for service, port in KNOWN_SERVICE_PORTS.items():
                try:
                    output = await run(
                        "powershell",
                        "-Command",
                        f"Get-Process -Name '{service}' -ErrorAction SilentlyContinue | Select-Object -First 1",
                    )
                except DiagnoseError:
                    continue
                if output.strip():
                    info.services.append(ServiceInfo(name=service, status="running", port=port))
            return

        try:
            output = await run(
                "systemctl", "list-units", "--type=service", "--state=running", "--no-pager", "--no-legend"
            )
        except DiagnoseError as e:
            log.debug("systemctl list-units unavailable, checking known services", error=str(e))
            await self._check_known(info, run)
            return
        info.services.extend(parse_running_units(output))

    async def _check_known(self, info: SystemInfo, run: CommandRunner) -> None:
        for service, port in KNOWN_SERVICE_PORTS.items():
            try:
                state = (await run("systemctl", "is-active", service)).strip()
            except DiagnoseError:
                state = ""
            if state:
                status = "running" if state == "active" else "stopped"
                info.services.append(ServiceInfo(name=service, status=status, port=port))
                continue
            try:
                await run("pgrep", "-x", service)
            except DiagnoseError:
                continue
            info.services.append(ServiceInfo(name=service, status="running", port=port))


class Rule(ABC):
    name: str = ""

    @abstractmethod
    def evaluate(self, info: SystemInfo) -> tuple[list[Issue], list[Check]]:
        pass


def _severity(percent: float) -> Severity:
    return Severity.ERROR if percent >= CRITICAL_PERCENT else Severity.WARNING


class DiskRule(Rule):
    name = "disk"

    def __init__(self, threshold: float = DEFAULT_DISK_WARN_PERCENT):
        self.threshold = threshold

    def evaluate(self, info: SystemInfo) -> tuple[list[Issue], list[Check]]:
        pct = info.disk_usage_percent
        if pct == 0:
            return [], []
        if pct < self.threshold:
            return [], [Check("disk", f"Disk {info.disk_path}", f"{pct:.1f}%")]
        fix = "docker system prune -af && sudo apt-get clean" if pct >= 90 else "docker system prune -af"
        issue = Issue(
            category="disk",
            description=f"Disk {info.disk_path}: {pct:.1f}%",
            severity=_severity(pct),
            value=f"{pct:.1f}%",
            threshold=f"{self.threshold:.0f}%",
            fix_command=fix,
        )
        return [issue], []


class MemoryRule(Rule):
    name = "memory"

    def __init__(self, threshold: float = DEFAULT_MEMORY_WARN_PERCENT):
        self.threshold = threshold

    def evaluate(self, info: SystemInfo) -> tuple[list[Issue], list[Check]]:
        pct = info.memory_usage_percent
        if pct == 0:
            return [], []
        if pct < self.threshold:
            return [], [Check("memory", "RAM", f"{pct:.1f}%")]
        issue = Issue(
            category="memory",
            description=f"RAM: {pct:.1f}%",
            severity=_severity(pct),
            value=f"{pct:.1f}%",
            threshold=f"{self.threshold:.0f}%",
            fix_command="top -o %MEM | head -15",
        )
        return [issue], []


class DockerRule(Rule):
    name = "docker"

    def evaluate(self, info: SystemInfo) -> tuple[list[Issue], list[Check]]:
        if info.docker_running:
            return [], [Check("docker", "Docker", f"running ({info.docker_containers} containers)")]
        issue = Issue(
            category="docker",
            description="Docker not running",
            fix_command="sudo systemctl start docker",
        )
        return [issue], []


class PortRule(Rule):
    name = "ports"

    def __init__(self, required: dict[int, str] | None = None):
        self.required = dict(REQUIRED_PORTS if required is None else required)

    def evaluate(self, info: SystemInfo) -> tuple[list[Issue], list[Check]]:
        open_ports = {p.port for p in info.listening_ports}
        checks = [
            Check("network", service, f"port {port} open")
            for port, service in self.required.items()
            if port in open_ports
        ]
        return [], checks


class ServiceRule(Rule):
    name = "services"

    def evaluate(self, info: SystemInfo) -> tuple[list[Issue], list[Check]]:
        issues: list[Issue] = []
        checks: list[Check] = []
        for svc in info.services:
            if svc.status == "running":
                port = f" (port {svc.port})" if svc.port > 0 else ""
                checks.append(Check("service", svc.name, f"running{port}"))
            elif svc.status == "stopped":
                issues.append(
                    Issue(
                        category="service",
                        description=f"{svc.name} not running",
                        fix_command=f"sudo systemctl start {svc.name}",
                    )
                )
        return issues, checks


class DiagnoseService:
    """Runs every collector, then every rule."""

    def __init__(
        self,
        collectors: list[Collector] | None = None,
        rules: list[Rule] | None = None,
        runner: CommandRunner | None = None,
        goos: str | None = None,
        disk_warn_percent: float = DEFAULT_DISK_WARN_PERCENT,
        memory_warn_percent: float = DEFAULT_MEMORY_WARN_PERCENT,
        command_timeout: float = DEFAULT_COMMAND_TIMEOUT,
    ):
        self.collectors = collectors if collectors is not None else [
            SystemCollector(),
            DockerCollector(),
            NetworkCollector(),
            ServicesCollector(),
        ]
        self.rules = rules if rules is not None else [
            DiskRule(disk_warn_percent),
            MemoryRule(memory_warn_percent),
            DockerRule(),
            PortRule(),
            ServiceRule(),
        ]
        self.runner = runner or SubprocessRunner(command_timeout)
        self.goos = (goos or current_goos()).lower()

    async def collect(self) -> SystemInfo:
        info = SystemInfo(os=self.goos, arch=platform.machine().lower())
        for collector in self.collectors:
            try:
                await collector.collect(info, self.runner)
            except DiagnoseError as e:
                log.debug("Collector failed", collector=collector.name, error=str(e))
        return info

    def evaluate(self, info: SystemInfo) -> DiagnoseResult:
        result = DiagnoseResult()
        for rule in self.rules:
            issues, checks = rule.evaluate(info)
            for issue in issues:
                if issue.severity == Severity.ERROR:
                    result.errors.append(issue)
                else:
                    result.warnings.append(issue)
            result.ok.extend(checks)
        return result

    async def run(self) -> DiagnoseResult:
        result = self.evaluate(await self.collect())
        log.info("Diagnosis finished", summary=result.summary)
        return result


def _print_issue(console: Console, issue: Issue, color: str) -> None:
    line = f"  [{color}]• {escape(issue.description)}[/{color}]"
    if issue.threshold:
        line += f" (threshold: {issue.threshold})"
    console.print(line, highlight=False)
    if issue.fix_command:
        console.print(f"    -> Fix: {issue.fix_command}", markup=False, highlight=False)


def render_report(console: Console, result: DiagnoseResult) -> None:
    console.print("\n[bold cyan]System Diagnostics Report[/bold cyan]")
    console.print("=" * 30)

    if result.errors:
        console.print("\n[bold red]CRITICAL ERRORS:[/bold red]")
        for issue in result.errors:
            _print_issue(console, issue, "red")
    if result.warnings:
        console.print("\n[bold yellow]WARNINGS:[/bold yellow]")
        for issue in result.warnings:
            _print_issue(console, issue, "yellow")
    if result.ok:
        console.print("\n[bold green]OK:[/bold green]")
        for check in result.ok:
            console.print(f"  • {check.description}: {check.value}", markup=False, highlight=False)

    fixes = result.fixes()
    if fixes:
        console.print("\n[bold]Suggestions:[/bold]")
        for index, fix in enumerate(fixes, start=1):
            console.print(f"  {index}. {fix}", markup=False, highlight=False)
    console.print(f"\n{result.summary}", highlight=False)


def build_analysis_prompt(result: DiagnoseResult) -> str:
    lines = ["Analyze the following system diagnostics and suggest fixes:", ""]
    if result.errors:
        lines.append("CRITICAL ERRORS:")
        lines.extend(f"- {issue.category}: {issue.description}" for issue in result.errors)
    if result.warnings:
        lines.extend(["", "WARNINGS:"])
        lines.extend(f"- {issue.category}: {issue.description}" for issue in result.warnings)
    lines.extend(["", "Please analyze root causes and suggest specific remediation steps."])
    return "\n".join(lines)


async def analyze_with_ai(provider: Provider, result: DiagnoseResult) -> str:
    """Ask the model for root causes of the findings.

    Raises:
        ProviderError: the provider call failed.
    """
    response = await provider.generate(GenerateRequest(prompt=build_analysis_prompt(result)))
    return response.text.strip()
