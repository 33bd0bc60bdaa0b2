"""
Smoke Tests for CLI Commands.

These tests verify that CLI commands run without errors and produce output.
They don't validate correctness deeply - just that commands work against a
throwaway SQLite database.

Usage:
    pytest tests/smoke/test_cli_commands.py -v
    pytest tests/smoke/test_cli_commands.py -v -m smoke
"""

import os
import subprocess
import sys
from pathlib import Path

import pytest

# Mark all tests in this module as smoke tests
pytestmark = pytest.mark.smoke

# Project root
PROJECT_ROOT = Path(__file__).parent.parent.parent


def run_cli_command(command: str, timeout: int = 30) -> tuple[int, str, str]:
    """
    Run a CLI command and return exit code, stdout, stderr.

    Args:
        command: The command to run (after 'python -m cohortlinks.cli.main')
        timeout: Maximum time to wait

    Returns:
        Tuple of (exit_code, stdout, stderr)
    """
    full_command = f"{sys.executable} -m cohortlinks.cli.main {command}"

    result = subprocess.run(
        full_command,
        shell=True,
        cwd=PROJECT_ROOT,
        capture_output=True,
        text=True,
        timeout=timeout,
        env={**os.environ, "COLUMNS": "200"},
    )

    return result.returncode, result.stdout, result.stderr


class TestCLIHelp:
    """Test that help commands work."""

    def test_main_help(self):
        """Main help should display without errors."""
        code, stdout, stderr = run_cli_command("--help")

        assert code == 0, f"Help failed: {stderr}"
        assert "links" in stdout
        assert "db" in stdout

    @pytest.mark.parametrize("command", ["show", "set", "unlink", "convert", "untag", "audit"])
    def test_links_subcommand_help(self, command):
        code, stdout, stderr = run_cli_command(f"links {command} --help")

        assert code == 0, f"links {command} --help failed: {stderr}"


class TestCLIDatabase:
    def test_db_init(self, db_url):
        code, stdout, stderr = run_cli_command("db init")

        assert code == 0, stderr
        assert "Database initialized" in stdout


class TestCLILinks:
    """Run link commands against seeded cohorts."""

    @pytest.fixture
    def cohorts(self, seed):
        spring = seed.cohort("Spring25")
        seed.modules(spring, 2)
        fall = seed.cohort("Fall24")
        seed.modules(fall, 3)
        seed.commit()
        return spring, fall

    def test_link_show_unlink_flow(self, cohorts):
        spring, fall = cohorts

        code, stdout, stderr = run_cli_command(f"links set {spring.id} --source {fall.id} --actor ops")
        assert code == 0, stderr
        assert "Linked 3 modules" in stdout

        code, stdout, stderr = run_cli_command(f"links show {spring.id}")
        assert code == 0, stderr
        assert "Fall24" in stdout

        code, stdout, stderr = run_cli_command(f"links unlink {spring.id} --all")
        assert code == 0, stderr
        assert "Unlinked 3 modules" in stdout

    def test_back_link_fails(self, cohorts):
        spring, fall = cohorts
        run_cli_command(f"links set {spring.id} --source {fall.id}")

        code, stdout, _ = run_cli_command(f"links set {fall.id} --source {spring.id}")

        assert code == 1
        assert "cycle" in stdout

    def test_back_link_from_source_without_modules_fails(self, seed):
        spring = seed.cohort("Spring25")
        fall = seed.cohort("Fall24")
        seed.modules(fall, 2)
        seed.commit()

        code, stdout, stderr = run_cli_command(f"links set {spring.id} --source {fall.id}")
        assert code == 0, stderr
        assert "Linked 2 modules" in stdout

        code, stdout, _ = run_cli_command(f"links set {fall.id} --source {spring.id}")

        assert code == 1
        assert "cycle" in stdout

    def test_set_requires_one_source(self, cohorts):
        spring, fall = cohorts

        code, _, _ = run_cli_command(f"links set {spring.id}")
        assert code == 1
        code, _, _ = run_cli_command(f"links set {spring.id} --global --source {fall.id}")
        assert code == 1

    def test_unlink_requires_a_selector(self, cohorts):
        spring, _ = cohorts

        code, stdout, _ = run_cli_command(f"links unlink {spring.id}")

        assert code == 1
        assert "--all" in stdout

    def test_untag(self, cohorts):
        spring, _ = cohorts

        code, stdout, stderr = run_cli_command(f"links untag {spring.id} --yes")

        assert code == 0, stderr
        assert "converted 2 own modules" in stdout

    def test_audit_clean(self, cohorts):
        code, stdout, stderr = run_cli_command("links audit")

        assert code == 0, stderr
        assert "consistent" in stdout
