"""Tests for running commands inside WSL and classifying their failures."""

import sys

import pytest

from wsl_monitor import (
    CommandFailedError,
    CommandInterruptedError,
    DistributionNotFoundError,
    SubprocessExecutor,
    SudoNotConfiguredError,
    WslCommandError,
    WslCommandRunner,
)


class TestBuildCommand:
    def test_with_distribution(self):
        runner = WslCommandRunner("Debian")
        assert runner.build_command("apt list --upgradable") == [
            "wsl", "-d", "Debian", "-e", "sudo", "-n", "apt", "list", "--upgradable",
        ]

    def test_without_distribution(self):
        runner = WslCommandRunner()
        assert runner.build_command("apt update") == [
            "wsl", "-e", "sudo", "-n", "apt", "update",
        ]

    @pytest.mark.parametrize("blank", ["", "   "])
    def test_blank_distribution_uses_default(self, blank):
        runner = WslCommandRunner(blank)
        assert runner.distribution is None
        assert "-d" not in runner.build_command("apt update")

    def test_collapses_whitespace_runs(self):
        runner = WslCommandRunner()
        assert runner.build_command("  apt   list\t--upgradable ")[3:] == [
            "-n", "apt", "list", "--upgradable",
        ]


class TestRun:
    def test_returns_output_and_prints_trace(self, make_executor, capsys):
        executor = make_executor({"apt update": ("Hit:1 http://deb.debian.org\n", 0)})
        runner = WslCommandRunner("Debian", executor=executor)

        assert runner.run("apt update") == "Hit:1 http://deb.debian.org\n"
        assert executor.calls == [["wsl", "-d", "Debian", "-e", "sudo", "-n", "apt", "update"]]
        assert "Executing: wsl -d Debian -e sudo -n apt update" in capsys.readouterr().out

    def test_sudo_password_required(self, make_executor):
        executor = make_executor({"apt update": ("sudo: a password is required\n", 1)})
        runner = WslCommandRunner(executor=executor)

        with pytest.raises(SudoNotConfiguredError) as exc_info:
            runner.run("apt update")
        assert "Passwordless sudo is not configured" in str(exc_info.value)
        assert exc_info.value.return_code == 1
        assert exc_info.value.command == "apt update"

    def test_named_distribution_not_found_lists_installed(self, make_executor):
        executor = make_executor(
            {
                "apt update": ("WSL distribution name not found\n", 1),
                "--list --quiet": ("Ubuntu\nDebian\n\n", 0),
            }
        )
        runner = WslCommandRunner("Debain", executor=executor)

        with pytest.raises(DistributionNotFoundError) as exc_info:
            runner.run("apt update")
        err = exc_info.value
        assert err.distribution == "Debain"
        assert err.available == ["Ubuntu", "Debian"]
        assert "'Debain' not found" in str(err)
        assert "Ubuntu, Debian" in str(err)

    def test_no_default_distribution(self, make_executor):
        executor = make_executor(
            {
                "apt update": ("There is no distribution with the supplied name.\n", 4294967295),
                "--status": ("Default Version: 2\n", 0),
            }
        )
        runner = WslCommandRunner(executor=executor)

        with pytest.raises(DistributionNotFoundError) as exc_info:
            runner.run("apt update")
        err = exc_info.value
        assert err.distribution is None
        assert err.wsl_available is True
        assert str(err).startswith("No default WSL distribution is set.")
        assert executor.calls[-1] == ["wsl", "--status"]

    def test_default_distribution_without_wsl(self, make_executor):
        executor = make_executor(
            {
                "apt update": ("WSL distribution name not found\n", 1),
                "--status": ("", 1),
            }
        )
        runner = WslCommandRunner(executor=executor)

        with pytest.raises(DistributionNotFoundError) as exc_info:
            runner.run("apt update")
        assert exc_info.value.wsl_available is False
        assert str(exc_info.value).startswith("WSL not found.")

    def test_other_failure_is_tolerated(self, make_executor, capsys):
        output = "W: Failed to fetch http://deb.debian.org/dists/stable/InRelease\n"
        executor = make_executor({"apt update": (output, 100)})
        runner = WslCommandRunner(executor=executor)

        assert runner.run("apt update") == output
        assert "exited with code 100" in capsys.readouterr().err

    def test_other_failure_is_fatal_in_strict_mode(self, make_executor):
        executor = make_executor({"apt update": ("E: something broke\n", 100)})
        runner = WslCommandRunner(executor=executor, strict=True)

        with pytest.raises(CommandFailedError) as exc_info:
            runner.run("apt update")
        assert exc_info.value.return_code == 100
        assert exc_info.value.output == "E: something broke\n"

    def test_known_failure_wins_over_strict_mode(self, make_executor):
        executor = make_executor({"apt update": ("sudo: a password is required\n", 1)})
        runner = WslCommandRunner(executor=executor, strict=True)

        with pytest.raises(SudoNotConfiguredError):
            runner.run("apt update")

    def test_interruption_is_chained(self, make_executor):
        executor = make_executor(raises={"apt update": KeyboardInterrupt()})
        runner = WslCommandRunner(executor=executor)

        with pytest.raises(CommandInterruptedError) as exc_info:
            runner.run("apt update")
        assert isinstance(exc_info.value.__cause__, KeyboardInterrupt)
        assert isinstance(exc_info.value, WslCommandError)


class TestSubprocessExecutor:
    def test_merges_stderr_and_keeps_exit_code(self):
        code = "import sys; print('out'); sys.stdout.flush(); sys.stderr.write('err\\n'); sys.exit(3)"
        result = SubprocessExecutor().execute([sys.executable, "-c", code])

        assert result.return_code == 3
        assert "out" in result.output
        assert "err" in result.output

    def test_strips_nul_bytes(self):
        code = "import sys; sys.stdout.buffer.write('ok'.encode('utf-16-le'))"
        result = SubprocessExecutor().execute([sys.executable, "-c", code])

        assert result.output == "ok"

    def test_missing_executable(self):
        with pytest.raises(CommandFailedError) as exc_info:
            SubprocessExecutor().execute(["wsl-monitor-missing-executable-xyz"])
        assert exc_info.value.return_code == 127
        assert isinstance(exc_info.value.__cause__, FileNotFoundError)
