"""
File module - Manage files, directories and symbolic links.

Arguments:
  path (str, required): Path of the file on the remote host
  state (str, optional): file, directory, absent or link (default file)
  src (str, optional): Link target, required for state=link
  mode (str | int, optional): Permissions, octal ("0644", 0o644) or symbolic ("u+x")
  owner (str, optional): Owning user name or uid
  group (str, optional): Owning group name or gid

Idempotent: Yes (every change is guarded by a check of the current state)
"""

import re
from dataclasses import dataclass

from ..plan import ActionPlan, RunShell
from .base import Module, quote

FILE_STATES = ("file", "directory", "absent", "link")

_OCTAL_MODE = re.compile(r"^[0-7]{3,4}$")


def normalize_mode(mode: str | int) -> tuple[str, bool]:
    """Return (mode, is_octal) with octal modes in the form ``stat -c %a`` prints."""
    if isinstance(mode, int):
        return format(mode, "o"), True
    mode = str(mode).strip()
    if mode.startswith("0o"):
        mode = mode[2:]
    if _OCTAL_MODE.match(mode):
        return format(int(mode, 8), "o"), True
    return mode, False


@dataclass(frozen=True)
class File(Module):
    """Ensure a path is a file, a directory, a symlink or absent."""

    module_name = "file"

    path: str = ""
    state: str = "file"
    src: str | None = None
    mode: str | int | None = None
    owner: str | None = None
    group: str | None = None

    def compile(self) -> ActionPlan:
        self.require(path=self.path)
        self.require_choice("state", self.state, FILE_STATES)
        path = quote(self.path)

        if self.state == "absent":
            if self.mode is not None or self.owner or self.group:
                self.fail("mode, owner and group cannot be used with state=absent")
            return ActionPlan.of(RunShell(f"if [ -e {path} ] || [ -L {path} ]; then rm -rf -- {path}; fi"))

        if self.state == "link":
            self.require(src=self.src)
            src = quote(self.src)
            guards = [f'[ "$(readlink -- {path})" = {src} ] || ln -sfn -- {src} {path}']
            if self.mode is not None:
                self.fail("mode cannot be used with state=link")
        elif self.state == "directory":
            guards = [f"[ -d {path} ] || mkdir -p -- {path}"]
        else:
            guards = [f"[ -e {path} ] || touch -- {path}"]

        if self.mode is not None:
            mode, is_octal = normalize_mode(self.mode)
            if not mode:
                self.fail(f"Invalid mode: {self.mode!r}")
            if is_octal:
                guards.append(f'[ "$(stat -c %a -- {path})" = {mode} ] || chmod {mode} -- {path}')
            else:
                guards.append(f"chmod {quote(mode)} -- {path}")

        # -h so a link's own ownership changes, not its target's
        chown = "chown -h" if self.state == "link" else "chown"
        if self.owner:
            fmt = "%u" if str(self.owner).isdigit() else "%U"
            owner = quote(str(self.owner))
            guards.append(f'[ "$(stat -c {fmt} -- {path})" = {owner} ] || {chown} {owner} -- {path}')
        if self.group:
            fmt = "%g" if str(self.group).isdigit() else "%G"
            group = quote(str(self.group))
            guards.append(f'[ "$(stat -c {fmt} -- {path})" = {group} ] || {chown} :{group} -- {path}')

        return ActionPlan.of(RunShell(" && ".join(f"{{ {g}; }}" for g in guards)))
