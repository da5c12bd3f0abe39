"""
Login-shell command construction for local tool servers.

Tool servers are usually installed through version managers (nvm, pyenv,
asdf, Homebrew) whose PATH changes live in the user's shell configuration.
Running the server through the user's login shell, after explicitly
sourcing the interactive configuration files, gives the child the same
environment the user sees in a terminal.
"""

import logging
import os
import re
import shlex
import sys
from pathlib import PurePosixPath
from typing import Mapping, Optional, Sequence

logger = logging.getLogger(__name__)

DEFAULT_SHELL = "/bin/zsh" if sys.platform == "darwin" else "/bin/sh"

# Interactive configuration files sourced per shell family, in order.
# fish reads config.fish itself when started as a login shell.
SHELL_CONFIG_FILES: dict[str, tuple[str, ...]] = {
    "zsh": (".zshenv", ".zprofile", ".zshrc"),
    "bash": (".bash_profile", ".bashrc"),
    "ksh": (".profile", ".kshrc"),
    "sh": (".profile",),
    "dash": (".profile",),
    "fish": (),
}

_NEEDS_QUOTING = re.compile(r"[\s'\"$\\`]")


def needs_quoting(value: str) -> bool:
    """True when value contains whitespace, a quote, a backslash or ``$``."""
    return value == "" or bool(_NEEDS_QUOTING.search(value))


def quote_argument(value: str) -> str:
    """Quote value only if the shell would otherwise split or expand it."""
    return shlex.quote(value) if needs_quoting(value) else value


class ShellEnvironmentResolver:
    """Detects the user's shell and builds login-shell command lines.

    Args:
        environ: Environment to inspect (defaults to ``os.environ``).
    """

    def __init__(self, environ: Optional[Mapping[str, str]] = None) -> None:
        self.environ = environ if environ is not None else os.environ

    def resolve_shell(self) -> str:
        """Return the user's login shell.

        Checks ``$SHELL`` first, then the password database, then falls
        back to a platform default. Lookup failures are never fatal.
        """
        shell = self.environ.get("SHELL")
        if shell:
            return shell

        try:
            import pwd

            shell = pwd.getpwuid(os.getuid()).pw_shell
        except (ImportError, KeyError, OSError) as e:
            logger.debug(f"Login shell lookup failed: {e}")
            shell = None

        return shell or DEFAULT_SHELL

    @staticmethod
    def shell_family(shell: str) -> str:
        """Map a shell path to a key of SHELL_CONFIG_FILES."""
        name = PurePosixPath(shell).name.lstrip("-")
        return name if name in SHELL_CONFIG_FILES else "sh"

    def build_command(
        self,
        command: str,
        args: Sequence[str] = (),
        cwd: Optional[str] = None,
        shell: Optional[str] = None,
    ) -> str:
        """Build one command line that prepares the environment and runs command.

        The line sources the shell family's configuration files (output
        discarded so banners never reach the protocol stream), changes into
        ``cwd`` when given, then replaces the shell with the target command.

        Args:
            command: Executable name or path.
            args: Arguments; only those needing it are quoted.
            cwd: Working directory; a leading ``~`` is rewritten to ``$HOME``.
            shell: Shell to build for (defaults to the resolved shell).

        Returns:
            The command line to pass to ``<shell> -l -c``.
        """
        family = self.shell_family(shell or self.resolve_shell())

        parts = []
        for filename in SHELL_CONFIG_FILES[family]:
            path = f'"$HOME/{filename}"'
            parts.append(f"[ -f {path} ] && . {path} >/dev/null 2>&1")

        invocation = " ".join(
            [quote_argument(command)] + [quote_argument(arg) for arg in args]
        )
        if cwd:
            invocation = f"cd {self._quote_directory(cwd)} && exec {invocation}"
        else:
            invocation = f"exec {invocation}"
        parts.append(invocation)

        return "; ".join(parts)

    def login_argv(self, command_line: str, shell: Optional[str] = None) -> list[str]:
        """Argument vector running command_line through a login shell."""
        return [shell or self.resolve_shell(), "-l", "-c", command_line]

    @staticmethod
    def _quote_directory(path: str) -> str:
        if path == "~" or path.startswith("~/"):
            path = "$HOME" + path[1:]
        if path.startswith("$HOME"):
            rest = path[len("$HOME"):]
            return '"$HOME"' + (quote_argument(rest) if rest else "")
        return quote_argument(path)
