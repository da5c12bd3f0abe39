"""
Tests for login-shell command construction.

Tests validate:
- Shell resolution order ($SHELL, password database, default)
- Per-family configuration sourcing
- Minimal argument quoting
- Working directory handling with ~ and $HOME
"""

from unittest.mock import patch

import pytest

from mcp_hub.core.shell import (
    DEFAULT_SHELL,
    ShellEnvironmentResolver,
    needs_quoting,
    quote_argument,
)


class TestResolveShell:
    """Shell resolution tests."""

    def test_shell_env_var_wins(self):
        resolver = ShellEnvironmentResolver(environ={"SHELL": "/usr/local/bin/fish"})
        assert resolver.resolve_shell() == "/usr/local/bin/fish"

    def test_password_database_fallback(self):
        resolver = ShellEnvironmentResolver(environ={})
        with patch("pwd.getpwuid") as getpwuid:
            getpwuid.return_value.pw_shell = "/bin/bash"
            assert resolver.resolve_shell() == "/bin/bash"

    def test_default_when_lookup_fails(self):
        resolver = ShellEnvironmentResolver(environ={})
        with patch("pwd.getpwuid", side_effect=KeyError("no such uid")):
            assert resolver.resolve_shell() == DEFAULT_SHELL

    @pytest.mark.parametrize(
        "shell,family",
        [
            ("/bin/zsh", "zsh"),
            ("/usr/bin/bash", "bash"),
            ("-zsh", "zsh"),
            ("/opt/homebrew/bin/fish", "fish"),
            ("/bin/tcsh", "sh"),
        ],
    )
    def test_shell_family(self, shell, family):
        assert ShellEnvironmentResolver.shell_family(shell) == family


class TestQuoting:
    """Argument quoting tests."""

    @pytest.mark.parametrize("value", ["-y", "@modelcontextprotocol/server-filesystem", "/tmp/x"])
    def test_plain_arguments_left_alone(self, value):
        assert not needs_quoting(value)
        assert quote_argument(value) == value

    @pytest.mark.parametrize("value", ["my dir", "it's", 'say "hi"', "$PATH", "a\\b", ""])
    def test_special_arguments_quoted(self, value):
        assert needs_quoting(value)
        assert quote_argument(value) != value


class TestBuildCommand:
    """Command line construction tests."""

    def test_zsh_sources_all_config_files(self):
        resolver = ShellEnvironmentResolver(environ={})
        line = resolver.build_command("npx", ["-y", "server"], shell="/bin/zsh")

        for filename in (".zshenv", ".zprofile", ".zshrc"):
            assert f'[ -f "$HOME/{filename}" ] && . "$HOME/{filename}" >/dev/null 2>&1' in line
        assert line.endswith("exec npx -y server")

    def test_bash_sources_bash_files(self):
        resolver = ShellEnvironmentResolver(environ={})
        line = resolver.build_command("uvx", ["tool"], shell="/bin/bash")

        assert ".bash_profile" in line
        assert ".bashrc" in line
        assert ".zshrc" not in line

    def test_fish_sources_nothing(self):
        resolver = ShellEnvironmentResolver(environ={})
        assert resolver.build_command("node", ["a.js"], shell="/usr/bin/fish") == "exec node a.js"

    def test_arguments_with_spaces_are_quoted(self):
        resolver = ShellEnvironmentResolver(environ={})
        line = resolver.build_command("node", ["my server.js"], shell="/usr/bin/fish")
        assert line == "exec node 'my server.js'"

    def test_cwd_changes_directory_before_exec(self):
        resolver = ShellEnvironmentResolver(environ={})
        line = resolver.build_command("node", ["index.js"], cwd="/srv/app", shell="/usr/bin/fish")
        assert line == "cd /srv/app && exec node index.js"

    def test_tilde_cwd_expands_through_home(self):
        resolver = ShellEnvironmentResolver(environ={})
        line = resolver.build_command("node", [], cwd="~/projects/my app", shell="/usr/bin/fish")
        assert line == "cd \"$HOME\"'/projects/my app' && exec node"

    def test_login_argv(self):
        resolver = ShellEnvironmentResolver(environ={"SHELL": "/bin/zsh"})
        assert resolver.login_argv("exec true") == ["/bin/zsh", "-l", "-c", "exec true"]
