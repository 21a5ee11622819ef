"""
GetUrl module - Download a URL on the remote host.

Arguments:
  url (str, required): URL to fetch
  dest (str, required): Remote destination file
  force (bool, optional): Download even when dest already exists (default False)

Uses curl when available, otherwise wget.

Idempotent: Yes unless force is set
"""

from dataclasses import dataclass

from ..plan import ActionPlan, RunShell
from .base import Module, quote


@dataclass(frozen=True)
class GetUrl(Module):
    """Fetch a URL into a file on the remote host."""

    module_name = "get_url"

    url: str = ""
    dest: str = ""
    force: bool = False

    def compile(self) -> ActionPlan:
        self.require(url=self.url, dest=self.dest)
        url, dest = quote(self.url), quote(self.dest)
        fetch = (
            f"if command -v curl >/dev/null 2>&1; then curl -fsSL -o {dest} {url}; "
            f"else wget -q -O {dest} {url}; fi"
        )
        if self.force:
            return ActionPlan.of(RunShell(fetch))
        return ActionPlan.of(RunShell(f"[ -f {dest} ] || {{ {fetch}; }}"))
