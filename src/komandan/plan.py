"""Action plans: the concrete remote operations a module compiles to.

A plan is a linear sequence of steps executed in order over one
connection. Steps are plain data; the executor interprets them.
"""

from dataclasses import dataclass, field
from typing import Any, Iterator, Mapping


@dataclass(frozen=True)
class RunShell:
    """Run a shell command on the remote host.

    Attributes:
        command: Command line handed to the remote shell
        cleanup: Best-effort step whose failure never masks the primary result
        sensitive: The command embeds a secret and is never logged verbatim
    """

    command: str
    cleanup: bool = False
    sensitive: bool = False


@dataclass(frozen=True)
class PutFile:
    """Upload a local file (or directory tree) to the remote host."""

    local_path: str
    remote_path: str


@dataclass(frozen=True)
class GetFile:
    """Download a remote file (or directory tree) to the local host."""

    remote_path: str
    local_path: str


@dataclass(frozen=True)
class PutContent:
    """Write in-memory bytes to a file on the remote host."""

    content: bytes = field(repr=False)
    remote_path: str


@dataclass(frozen=True)
class RenderAndPutFile:
    """Render a local template and write the result to the remote host."""

    template_source: str
    vars: Mapping[str, Any]
    remote_path: str


Step = RunShell | PutFile | PutContent | GetFile | RenderAndPutFile


@dataclass(frozen=True)
class ActionPlan:
    """Ordered steps compiled from one module invocation.

    Example:
        >>> plan = ActionPlan.of(RunShell("uptime"))
        >>> len(plan)
        1
    """

    steps: tuple[Step, ...] = field(default_factory=tuple)

    @classmethod
    def of(cls, *steps: Step) -> "ActionPlan":
        """Build a plan from steps given positionally."""
        return cls(steps=tuple(steps))

    def __iter__(self) -> Iterator[Step]:
        return iter(self.steps)

    def __len__(self) -> int:
        return len(self.steps)

    @property
    def commands(self) -> list[str]:
        """The command strings of all RunShell steps, in order."""
        return [step.command for step in self.steps if isinstance(step, RunShell)]
