"""
Template module - Render a local template and write it to the remote host.

Arguments:
  src (str, required): Local template file (Jinja2 syntax)
  dst (str, required): Remote destination path
  vars (dict, optional): Variables available to the template

Idempotent: Yes
"""

from dataclasses import dataclass, field
from typing import Any, Mapping

from ..plan import ActionPlan, RenderAndPutFile
from .base import Module


@dataclass(frozen=True)
class Template(Module):
    """Render a template and upload the rendered content."""

    module_name = "template"

    src: str = ""
    dst: str = ""
    vars: Mapping[str, Any] = field(default_factory=dict)

    def compile(self) -> ActionPlan:
        self.require(src=self.src, dst=self.dst)
        if self.vars is not None and not isinstance(self.vars, Mapping):
            self.fail("'vars' parameter must be a mapping")
        return ActionPlan.of(RenderAndPutFile(self.src, dict(self.vars or {}), self.dst))
