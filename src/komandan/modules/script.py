"""
Script module - Run a script with an interpreter on the remote host.

Arguments:
  script (str): Inline script body, piped to the interpreter's stdin
  from_file (str): Local script file, uploaded and run from a temporary path
  interpreter (str, optional): Interpreter command (default "sh" for inline
    scripts; an uploaded file without interpreter is made executable and run)

Exactly one of script and from_file must be given. Inline scripts larger
than INLINE_SCRIPT_LIMIT bytes are written to a temporary remote file
instead, since the command line travels as a single exec argument.

Idempotent: No
"""

import secrets
from dataclasses import dataclass

from ..plan import ActionPlan, PutContent, PutFile, RunShell
from .base import Module, quote

DEFAULT_INTERPRETER = "sh"
HEREDOC_MARKER = "KOMANDAN_SCRIPT_EOF"
INLINE_SCRIPT_LIMIT = 100 * 1024


def _remote_tmp() -> str:
    # Relative SFTP paths and the login shell both start in the home directory
    return f".komandan-script-{secrets.token_hex(5)}"


@dataclass(frozen=True)
class Script(Module):
    """Run an inline script or an uploaded script file."""

    module_name = "script"

    script: str | None = None
    from_file: str | None = None
    interpreter: str | None = None

    def compile(self) -> ActionPlan:
        if self.script is not None and self.from_file is not None:
            self.fail("script and from_file parameters cannot be used together")
        if self.script is None and self.from_file is None:
            self.fail("script or from_file parameter is required")

        if self.script is not None:
            interpreter = self.interpreter or DEFAULT_INTERPRETER
            body = self.script if self.script.endswith("\n") else self.script + "\n"
            content = body.encode("utf-8")
            if len(content) < INLINE_SCRIPT_LIMIT:
                return ActionPlan.of(RunShell(f"{interpreter} <<'{HEREDOC_MARKER}'\n{body}{HEREDOC_MARKER}\n"))
            remote_tmp = _remote_tmp()
            return ActionPlan.of(
                PutContent(content, remote_tmp),
                RunShell(f"{interpreter} {quote(remote_tmp)}"),
                RunShell(f"rm -f {quote(remote_tmp)}", cleanup=True),
            )

        remote_tmp = _remote_tmp()
        if self.interpreter:
            run = RunShell(f"{self.interpreter} {quote(remote_tmp)}")
        else:
            run = RunShell(f"chmod +x {quote(remote_tmp)} && ./{quote(remote_tmp)}")
        return ActionPlan.of(
            PutFile(self.from_file, remote_tmp),
            run,
            RunShell(f"rm -f {quote(remote_tmp)}", cleanup=True),
        )
