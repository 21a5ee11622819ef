"""
Upload and Download modules - Copy files between the local and remote host.

Arguments:
  src (str, required): Source path (local for Upload, remote for Download)
  dst (str, required): Destination path

Directories are transferred recursively.

Idempotent: Yes (the destination ends up byte-identical to the source)
"""

from dataclasses import dataclass

from ..plan import ActionPlan, GetFile, PutFile
from .base import Module


@dataclass(frozen=True)
class Upload(Module):
    """Copy a local file to the remote host."""

    module_name = "upload"

    src: str = ""
    dst: str = ""

    def compile(self) -> ActionPlan:
        self.require(src=self.src, dst=self.dst)
        return ActionPlan.of(PutFile(self.src, self.dst))


@dataclass(frozen=True)
class Download(Module):
    """Copy a remote file to the local host."""

    module_name = "download"

    src: str = ""
    dst: str = ""

    def compile(self) -> ActionPlan:
        self.require(src=self.src, dst=self.dst)
        return ActionPlan.of(GetFile(self.src, self.dst))
