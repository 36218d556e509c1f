#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
WSL Update Monitor
============================

This module provides a class `WslMonitor` that checks a WSL distribution for
upgradable apt packages and writes a timestamped report to ``~/.wsl-monitor``.

The check runs ``apt update`` followed by ``apt list --upgradable`` through
``wsl -e sudo -n``, so passwordless sudo for apt must be configured inside the
distribution.
"""

import sys

REQUIRED_PYTHON_VERSION = (3, 11)

current_version = sys.version_info

if current_version < REQUIRED_PYTHON_VERSION:
    print(
        f"Error: This script requires Python version {REQUIRED_PYTHON_VERSION[0]}.{REQUIRED_PYTHON_VERSION[1]} or later."
    )
    print(
        f"You are using Python {current_version.major}.{current_version.minor}.{current_version.micro}."
    )
    sys.exit(1)

import argparse
import contextlib
import os
import subprocess
import time

from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import (
    Final,
    Iterator,
    List,
    Optional,
    Protocol,
    Self,
    Sequence,
    Union,
)

try:
    from loguru import logger
    from rich.console import Console
    from rich.logging import RichHandler
    from rich.markup import escape
    from rich.table import Table
    from rich.theme import Theme
except ImportError as e:
    print(
        f"Error: Missing required libraries ({e.name}). Please install them: pip install loguru rich"
    )
    sys.exit(1)

# --- Constants ---
OUTPUT_FILE_NAME: Final[str] = ".wsl-monitor"
TIMESTAMP_FORMAT: Final[str] = "%Y-%m-%d %H:%M:%S"
REPORT_TITLE: Final[str] = "WSL Update Check"
SEPARATOR: Final[str] = "-" * 40
BULLET: Final[str] = "•"
UP_TO_DATE_MESSAGE: Final[str] = "Your system is up to date."
NO_PACKAGES_MESSAGE: Final[str] = "No packages found."

WSL_EXECUTABLE: Final[str] = "wsl"
SUDO_PREFIX: Final[tuple[str, ...]] = ("-e", "sudo", "-n")
REFRESH_COMMAND: Final[str] = "apt update"
LIST_UPGRADABLE_COMMAND: Final[str] = "apt list --upgradable"

UPGRADABLE_MARKER: Final[str] = "[upgradable from"
SUDO_PASSWORD_MARKERS: Final[tuple[str, ...]] = (
    "sudo: a password is required",
    "sudo: a terminal is required to read the password",
)
DISTRIBUTION_NOT_FOUND_MARKERS: Final[tuple[str, ...]] = (
    "WSL distribution name not found",
    "There is no distribution with the supplied name",
    "WSL_E_DISTRO_NOT_FOUND",
)

DEFAULT_LOG_FILE_FORMAT: Final[str] = (
    "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {name}:{function}:{line} - {message}"
)
DEFAULT_STDERR_LOG_FORMAT: Final[str] = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | <level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>"
)


def default_output_path() -> Path:
    """Returns the report location inside the current user's home directory."""
    return Path.home() / OUTPUT_FILE_NAME


# --- Custom Exceptions ---


class WslMonitorError(Exception):
    """Base exception for the WSL monitor."""

    pass


class WslCommandError(WslMonitorError):
    """Raised when a command executed inside WSL fails."""

    def __init__(
        self,
        command: str,
        output: str,
        return_code: int,
        reason: Optional[str] = None,
    ):
        self.command = command
        self.output = output
        self.return_code = return_code
        super().__init__(
            reason
            or f"Command '{command}' failed with code {return_code}:\n{output}"
        )


class SudoNotConfiguredError(WslCommandError):
    """Raised when sudo inside WSL asks for a password."""

    def __init__(self, command: str, output: str, return_code: int):
        super().__init__(
            command,
            output,
            return_code,
            reason=(
                "Passwordless sudo is not configured inside WSL. "
                "Allow your user to run apt without a password "
                "(e.g. a NOPASSWD rule in /etc/sudoers.d/) and run the check again."
            ),
        )


class DistributionNotFoundError(WslCommandError):
    """Raised when the requested (or default) WSL distribution does not exist."""

    def __init__(
        self,
        command: str,
        output: str,
        return_code: int,
        distribution: Optional[str] = None,
        available: Optional[List[str]] = None,
        wsl_available: bool = True,
    ):
        self.distribution = distribution
        self.available = available or []
        self.wsl_available = wsl_available
        if distribution:
            reason = f"WSL distribution '{distribution}' not found."
            if self.available:
                reason += f" Installed distributions: {', '.join(self.available)}."
            else:
                reason += " Check the name with 'wsl --list'."
        elif not wsl_available:
            reason = "WSL not found. Please make sure WSL is properly installed."
        else:
            reason = (
                "No default WSL distribution is set. "
                "Install one or select it with 'wsl --set-default <name>'."
            )
        super().__init__(command, output, return_code, reason=reason)


class CommandInterruptedError(WslCommandError):
    """Raised when waiting for a WSL command is interrupted."""

    def __init__(self, command: str):
        super().__init__(
            command, "", -1, reason=f"Command '{command}' execution was interrupted"
        )


class CommandFailedError(WslCommandError):
    """Raised when a command cannot be started, or exits non-zero in strict mode."""

    pass


class ReportWriteError(WslMonitorError):
    """Raised when the report file cannot be written."""

    def __init__(self, path: Path, details: Union[str, Exception]):
        self.path = path
        self.details = details
        super().__init__(f"Failed to write report to '{path}': {details}")


# --- Data Structures ---


@dataclass(frozen=True)
class UpgradablePackage:
    """A package reported by ``apt list --upgradable``."""

    name: str
    version_transition: str  # e.g. '1.0-1 to 1.0-2'

    def __iter__(self) -> Iterator[str]:
        return iter((self.name, self.version_transition))

    @property
    def old_version(self) -> str:
        old, _, _ = self.version_transition.partition(" to ")
        return old.strip()

    @property
    def new_version(self) -> str:
        _, _, new = self.version_transition.partition(" to ")
        return new.strip()


@dataclass(frozen=True)
class CommandResult:
    """Combined output and exit status of a finished command."""

    argv: List[str]
    output: str
    return_code: int


@dataclass(frozen=True, kw_only=True)
class ReportSettings:
    """Where and how the report is written."""

    path: Path = field(default_factory=default_output_path)
    title: str = REPORT_TITLE
    timestamp_format: str = TIMESTAMP_FORMAT
    separator: str = SEPARATOR
    bullet: str = BULLET


@dataclass
class MonitorResult:
    """Stores the outcome of a single update check."""

    distribution: Optional[str] = None
    report_path: Optional[Path] = None
    packages: List[UpgradablePackage] = field(default_factory=list)
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None

    @property
    def count(self) -> int:
        return len(self.packages)

    @property
    def duration(self) -> Optional[float]:
        """Calculates the duration of the check in seconds."""
        if self.start_time and self.end_time:
            return (self.end_time - self.start_time).total_seconds()
        return None


# --- Time Operations ---
@contextlib.contextmanager
def timed_block(name: Optional[str] = "Monitor"):
    start = time.perf_counter()
    try:
        yield
    finally:
        logger.debug(f"{name} completed in {time.perf_counter() - start:.2f}s")


# --- Command Execution ---


class CommandExecutor(Protocol):
    """Runs an argument vector and returns its combined output."""

    def execute(self, argv: Sequence[str]) -> CommandResult: ...


class SubprocessExecutor:
    """
    Executes commands with `subprocess`, merging stderr into stdout.

    wsl.exe writes its own messages as UTF-16, so the child is asked for UTF-8
    via ``WSL_UTF8=1`` and any stray NUL bytes are dropped from the output.
    """

    def execute(self: Self, argv: Sequence[str]) -> CommandResult:
        command_str = " ".join(argv)
        env = dict(os.environ)
        env["WSL_UTF8"] = "1"
        try:
            process = subprocess.run(
                list(argv),
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                env=env,
                check=False,
            )
        except FileNotFoundError as e:
            logger.error(f"Command not found: {argv[0]}. Is WSL installed?")
            raise CommandFailedError(
                command_str, f"Executable not found: {argv[0]}", 127
            ) from e
        except PermissionError as e:
            logger.error(f"Permission denied when trying to execute: {command_str}")
            raise CommandFailedError(
                command_str, f"Permission denied: {command_str}", 126
            ) from e

        logger.debug(f"Command finished with return code: {process.returncode}")
        raw = process.stdout or b""
        output = raw.decode("utf-8", errors="replace").replace("\x00", "")
        return CommandResult(argv=list(argv), output=output, return_code=process.returncode)


class WslCommandRunner:
    """
    Runs commands inside WSL with non-interactive sudo.

    Args:
        distribution (Optional[str]): Target distribution; `None` or blank uses the WSL default.
        executor (Optional[CommandExecutor]): Process boundary, defaults to `SubprocessExecutor`.
        strict (bool): Treat any unrecognized non-zero exit as fatal.
    """

    def __init__(
        self: Self,
        distribution: Optional[str] = None,
        executor: Optional[CommandExecutor] = None,
        strict: bool = False,
    ) -> None:
        self.distribution: Optional[str] = (
            distribution.strip() if distribution and distribution.strip() else None
        )
        self.executor: CommandExecutor = executor or SubprocessExecutor()
        self.strict: bool = strict

    def build_command(self: Self, command: str) -> List[str]:
        """
        Builds the full argument vector for `command`.

        The command string is split on runs of whitespace; no shell quoting is
        applied, so arguments containing spaces are not supported.
        """
        argv = [WSL_EXECUTABLE]
        if self.distribution:
            argv.extend(["-d", self.distribution])
        argv.extend(SUDO_PREFIX)
        argv.extend(command.split())
        return argv

    def run(self: Self, command: str) -> str:
        """
        Executes `command` in WSL and returns its combined output.

        Args:
            command: The command to execute, e.g. ``apt list --upgradable``.

        Returns:
            The captured stdout and stderr as a single string.

        Raises:
            SudoNotConfiguredError: If sudo asked for a password.
            DistributionNotFoundError: If the target distribution does not exist.
            CommandInterruptedError: If the wait was interrupted.
            CommandFailedError: If the command could not be started, or exited
                non-zero in strict mode.
        """
        argv = self.build_command(command)
        command_str = " ".join(argv)
        print(f"Executing: {command_str}")
        logger.debug(f"Executing command: {command_str}")

        try:
            result = self.executor.execute(argv)
        except KeyboardInterrupt as e:
            logger.warning(f"Interrupted while waiting for '{command}'.")
            raise CommandInterruptedError(command) from e

        if result.output:
            logger.trace(f"Command output:\n{result.output}")

        if result.return_code != 0:
            logger.warning(
                f"Command '{command}' exited with code {result.return_code}"
            )
            logger.warning(f"Output: {result.output.strip()}")
            self._classify_failure(command, result)

        return result.output

    def _classify_failure(self: Self, command: str, result: CommandResult) -> None:
        """Raises the matching error for a non-zero exit, or returns if it is tolerated."""
        output = result.output
        if any(marker in output for marker in SUDO_PASSWORD_MARKERS):
            raise SudoNotConfiguredError(command, output, result.return_code)

        if any(marker in output for marker in DISTRIBUTION_NOT_FOUND_MARKERS):
            if self.distribution:
                raise DistributionNotFoundError(
                    command,
                    output,
                    result.return_code,
                    distribution=self.distribution,
                    available=list_distributions(self.executor),
                )
            raise DistributionNotFoundError(
                command,
                output,
                result.return_code,
                wsl_available=is_wsl_available(self.executor),
            )

        if self.strict:
            raise CommandFailedError(command, output, result.return_code)

        logger.warning(
            f"No known failure detected for '{command}'. Proceeding with the captured output."
        )


# --- WSL Utilities ---


def is_wsl_available(executor: Optional[CommandExecutor] = None) -> bool:
    """
    Checks if WSL is installed and available.

    Returns:
        True if ``wsl --status`` exits with code 0, False otherwise.
    """
    executor = executor or SubprocessExecutor()
    try:
        result = executor.execute([WSL_EXECUTABLE, "--status"])
    except WslCommandError as e:
        logger.debug(f"WSL availability check failed: {e}")
        return False
    return result.return_code == 0


def list_distributions(executor: Optional[CommandExecutor] = None) -> List[str]:
    """
    Gets the names of the installed WSL distributions.

    Returns:
        A list of distribution names, or an empty list if none could be determined.
    """
    executor = executor or SubprocessExecutor()
    try:
        result = executor.execute([WSL_EXECUTABLE, "--list", "--quiet"])
    except WslCommandError as e:
        logger.debug(f"Could not list WSL distributions: {e}")
        return []
    if result.return_code != 0:
        logger.debug(f"'wsl --list' exited with code {result.return_code}")
        return []
    return [line.strip() for line in result.output.split("\n") if line.strip()]


# --- Parsing ---


def extract_upgradable_packages(package_list: str) -> List[UpgradablePackage]:
    """
    Extracts upgradable packages from ``apt list --upgradable`` output.

    Only lines containing both a ``/`` and the ``[upgradable from`` marker are
    considered; headers such as ``Listing...`` are dropped. Input order is kept
    and duplicates are not removed.

    Args:
        package_list: The raw output of the listing command.

    Returns:
        The upgradable packages in the order they appear.
    """
    packages: List[UpgradablePackage] = []
    for line in package_list.split("\n"):
        if "/" not in line or UPGRADABLE_MARKER not in line:
            continue
        name = line.split("/", 1)[0].strip()
        version_info = line.split(UPGRADABLE_MARKER, 1)[1].split("]", 1)[0].strip()
        packages.append(UpgradablePackage(name, version_info))
    return packages


def format_package_line(package: UpgradablePackage, bullet: str = BULLET) -> str:
    return f"{bullet} {package.name}: {package.version_transition}"


def format_package_list(
    packages: Sequence[UpgradablePackage], bullet: str = BULLET
) -> str:
    """Formats packages one per line with bullet points, or a notice when empty."""
    if not packages:
        return NO_PACKAGES_MESSAGE
    return "\n".join(format_package_line(pkg, bullet) for pkg in packages)


# --- Report Writing ---


def render_report(
    packages: Sequence[UpgradablePackage],
    settings: ReportSettings,
    now: Optional[datetime] = None,
) -> str:
    """Renders the report text; every line ends with a newline."""
    now = now or datetime.now()
    lines = [
        f"{settings.title} - {now.strftime(settings.timestamp_format)}",
        settings.separator,
        f"Upgradable packages: {len(packages)}",
        "",
    ]
    if packages:
        lines.append("Details:")
        lines.append(format_package_list(packages, settings.bullet))
    else:
        lines.append(UP_TO_DATE_MESSAGE)
    return "\n".join(lines) + "\n"


def write_report(
    packages: Sequence[UpgradablePackage],
    settings: ReportSettings,
    now: Optional[datetime] = None,
) -> Path:
    """
    Writes the update check report, replacing any previous content.

    Missing parent directories are created first.

    Args:
        packages: Upgradable packages to list.
        settings: Target path and formatting of the report.
        now: Timestamp for the title line, defaults to the current local time.

    Returns:
        The path of the written report.

    Raises:
        ReportWriteError: If the directory or the file cannot be written.
    """
    path = Path(settings.path)
    content = render_report(packages, settings, now)
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with path.open("w", encoding="utf-8", newline="\n") as f:
            f.write(content)
    except OSError as e:
        logger.error(f"Could not write report to '{path}': {e}")
        raise ReportWriteError(path, e) from e

    logger.success(f"Report written to {path}")
    return path


# --- Logging ---


def setup_logger(
    log_level: str = "INFO",
    log_file_path: Optional[Path] = None,
    rich_console: bool = True,
    console: Optional[Console] = None,
) -> None:
    """Configures the Loguru logger."""
    logger.remove()  # Remove default handler

    # Console Handler (Rich or Standard)
    if rich_console:
        logger.add(
            RichHandler(
                console=console or Console(stderr=True),
                rich_tracebacks=True,
                markup=False,  # messages carry raw apt/wsl output
                show_path=True,
            ),
            level=log_level.upper(),
            format="{message}",
        )
    else:
        logger.add(
            sys.stderr,
            level=log_level.upper(),
            format=DEFAULT_STDERR_LOG_FORMAT,
            colorize=True,
        )

    # File Handler
    if log_file_path:
        try:
            log_file_path.parent.mkdir(parents=True, exist_ok=True)
            logger.add(
                log_file_path,
                level="DEBUG",  # Log everything to file
                format=DEFAULT_LOG_FILE_FORMAT,
                rotation="1 MB",
                retention="7 days",
                encoding="utf-8",
            )
            logger.info(f"Logging detailed output to file: {log_file_path}")
        except OSError as e:
            print(
                f"ERROR: Failed to configure file logging to {log_file_path}: {e}",
                file=sys.stderr,
            )

    logger.debug("Logger configured successfully.")


# --- The Main Class ---


class WslMonitor:
    """
    Checks a WSL distribution for upgradable apt packages and writes the report.

    Args:
        distribution (Optional[str]): WSL distribution to check, `None` for the default one.
        settings (Optional[ReportSettings]): Report location and format.
        runner (Optional[WslCommandRunner]): Command runner, built from `distribution` and `strict` if omitted.
        strict (bool): Fail on any unrecognized non-zero exit of the apt commands.
        rich_console (bool): Print the summary as a Rich table.
        console (Optional[Console]): Console used for the summary table.
    """

    def __init__(
        self: Self,
        distribution: Optional[str] = None,
        settings: Optional[ReportSettings] = None,
        runner: Optional[WslCommandRunner] = None,
        strict: bool = False,
        rich_console: bool = True,
        console: Optional[Console] = None,
    ) -> None:
        self.runner: WslCommandRunner = runner or WslCommandRunner(
            distribution, strict=strict
        )
        self.distribution: Optional[str] = self.runner.distribution
        self.settings: ReportSettings = settings or ReportSettings()
        self.use_rich_console: bool = rich_console
        self.console = console or Console(
            stderr=True,
            theme=Theme(
                {
                    "logging.level.info": "bold magenta",
                }
            ),
        )

        logger.debug("WslMonitor initialized")
        logger.debug(f"Distribution: {self.distribution or 'default'}")
        logger.debug(f"Report path: {self.settings.path}")
        logger.debug(f"Strict mode: {self.runner.strict}")

    def check_for_updates(self: Self) -> MonitorResult:
        """
        Refreshes the package index, lists upgradable packages and writes the report.

        Raises:
            WslMonitorError: If any step fails. The report is not written when
                a command fails.
        """
        result = MonitorResult(
            distribution=self.distribution,
            report_path=self.settings.path,
            start_time=datetime.now(),
        )
        logger.info("Starting WSL Update Check")

        with timed_block("Update check"):
            logger.info("Refreshing package index...")
            self.runner.run(REFRESH_COMMAND)

            logger.info("Checking for upgradable packages...")
            upgrade_output = self.runner.run(LIST_UPGRADABLE_COMMAND)

            result.packages = extract_upgradable_packages(upgrade_output)
            logger.info(f"Found {result.count} upgradable packages.")

            write_report(result.packages, self.settings)

        result.end_time = datetime.now()
        logger.info("WSL Update Check Finished")
        return result

    def print_summary(self: Self, result: MonitorResult) -> None:
        """Shows the upgradable packages, using a Rich table if enabled."""
        if not result.packages:
            logger.info(UP_TO_DATE_MESSAGE)
            return

        if self.use_rich_console:
            table = Table(
                title=f"[bold yellow]Upgradable Packages ({result.count})[/]",
                show_header=True,
                header_style="bold blue",
                expand=True,
            )
            table.add_column("Package", style="cyan", no_wrap=True)
            table.add_column("Installed", style="yellow")
            table.add_column("Candidate", style="green")
            for pkg in result.packages:
                table.add_row(
                    escape(pkg.name),
                    escape(pkg.old_version),
                    escape(pkg.new_version),
                )
            self.console.print(table)
        else:
            logger.info("Upgradable packages:")
            for pkg in result.packages:
                logger.info(f"  - {pkg.name}: {pkg.version_transition}")


# --- CLI Argument Parsing ---
def parse_arguments(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Parses command-line arguments using argparse."""
    parser = argparse.ArgumentParser(
        prog="wsl-monitor",
        description="WSL Update Monitor",
        formatter_class=lambda prog: argparse.RawTextHelpFormatter(
            prog, max_help_position=80
        ),
        epilog=f"""
Default report path: {default_output_path()}

Example Usage:
  # Check the default WSL distribution
  wsl-monitor

  # Check a specific distribution and fail on any apt error
  wsl-monitor Debian --strict

  # Write the report elsewhere and keep a debug log
  wsl-monitor --output ./wsl-report.txt --log-file-path ./wsl-monitor.log
""",
    )

    parser.add_argument(
        "distribution",
        nargs="?",
        default=None,
        help="Name of the WSL distribution to check (default: WSL default distribution).",
    )

    report_group = parser.add_argument_group("Report Options")
    logging_group = parser.add_argument_group("Logging Options")

    report_group.add_argument(
        "--output",
        type=Path,
        default=None,
        metavar="PATH",
        help=f"Path of the report file (default: ~/{OUTPUT_FILE_NAME}).",
    )
    report_group.add_argument(
        "--strict",
        action="store_true",
        help="Abort on any non-zero exit of the apt commands, not only on known failures.",
    )

    logging_group.add_argument(
        "--log-level",
        type=str.upper,
        choices=["TRACE", "DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default="INFO",
        help="Set the minimum console logging level (default: INFO).",
    )
    logging_group.add_argument(
        "--log-file-path",
        type=Path,
        default=None,
        metavar="PATH",
        help="Also write a debug log to this file (default: disabled).",
    )
    logging_group.add_argument(
        "--no-rich-console",
        action="store_false",
        dest="rich_console",
        help="Disable rich formatting (colors, tables) in console output.",
    )

    return parser.parse_args(argv)


# --- Main Execution Block ---


def main(argv: Optional[List[str]] = None) -> int:
    """Parses arguments, runs one update check and returns the exit code."""
    args = parse_arguments(argv)
    setup_logger(
        log_level=args.log_level,
        log_file_path=args.log_file_path,
        rich_console=args.rich_console,
    )

    output_path: Path = args.output or default_output_path()
    print(f"Starting WSL Monitor for distribution: {args.distribution or 'default'}")
    print(f"Results will be written to: {output_path}")

    exit_code = 0
    try:
        monitor = WslMonitor(
            distribution=args.distribution,
            settings=ReportSettings(path=output_path),
            strict=args.strict,
            rich_console=args.rich_console,
        )
        result = monitor.check_for_updates()
        monitor.print_summary(result)
        print(
            f"WSL update check completed. Found {result.count} upgradable packages."
        )
    except WslMonitorError as e:
        logger.opt(exception=True).critical(f"Error checking for updates: {e}")
        exit_code = 1
    except KeyboardInterrupt:
        logger.warning("Process interrupted by user (Ctrl+C).")
        exit_code = 1
    except Exception as e:
        logger.opt(exception=True).critical(f"An unexpected error occurred: {e}")
        exit_code = 1
    finally:
        logger.debug(f"WSL Monitor finished with exit code {exit_code}.")

    return exit_code


if __name__ == "__main__":
    sys.exit(main())
