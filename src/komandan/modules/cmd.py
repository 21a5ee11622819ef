"""
Cmd module - Run a shell command.

Arguments:
  cmd (str, required): The command line handed to the remote shell

Idempotent: No
"""

from dataclasses import dataclass

from ..plan import ActionPlan, RunShell
from .base import Module


@dataclass(frozen=True)
class Cmd(Module):
    """Run a single shell command."""

    module_name = "cmd"

    cmd: str = ""

    def compile(self) -> ActionPlan:
        self.require(cmd=self.cmd)
        return ActionPlan.of(RunShell(self.cmd))
