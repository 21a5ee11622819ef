"""
LineInFile module - Ensure a line is present in or absent from a text file.

Arguments:
  path (str, required): File to edit on the remote host
  line (str, optional): The exact line, required for state=present
  pattern (str, optional): Extended regex; for present the first matching
    line is replaced, for absent every matching line is removed
  state (str, optional): present or absent (default present)
  create (bool, optional): Create the file when it does not exist (default False)
  backup (bool, optional): Copy the file to PATH.<timestamp>.bak before changing it
  insert_after (str, optional): Regex after whose last match the line is added, or EOF
  insert_before (str, optional): Regex before whose first match the line is added, or BOF

Idempotent: Yes (the file is rewritten only when its content would change)
"""

from dataclasses import dataclass

from ..plan import ActionPlan, RunShell
from .base import Module, quote

LINEINFILE_STATES = ("present", "absent")
HEREDOC_MARKER = "KOMANDAN_LINEINFILE"

# Runs under POSIX sh with positional arguments:
#   path state line pattern create backup insert_after insert_before
# awk reads values through ENVIRON so backslashes are not reinterpreted.
_EDIT_SCRIPT = r"""path=$1 state=$2 line=$3 pattern=$4 create=$5 backup=$6 after=$7 before=$8
created=
if [ ! -e "$path" ]; then
  [ "$state" = absent ] && exit 0
  if [ "$create" != yes ]; then
    echo "$path: No such file or directory" >&2
    exit 1
  fi
  : > "$path" || exit 1
  created=yes
fi
tmp=$(mktemp) || exit 1
trap 'rm -f "$tmp"' EXIT
KOMANDAN_LINE=$line KOMANDAN_PATTERN=$pattern KOMANDAN_AFTER=$after KOMANDAN_BEFORE=$before
export KOMANDAN_LINE KOMANDAN_PATTERN KOMANDAN_AFTER KOMANDAN_BEFORE
if [ "$state" = present ]; then
  if [ -n "$pattern" ] && grep -Eq -- "$pattern" "$path"; then
    awk '!done && $0 ~ ENVIRON["KOMANDAN_PATTERN"] { print ENVIRON["KOMANDAN_LINE"]; done = 1; next } { print }' "$path" > "$tmp" || exit 1
  elif grep -Fxq -- "$line" "$path"; then
    exit 0
  elif [ -n "$after" ] && [ "$after" != EOF ] && grep -Eq -- "$after" "$path"; then
    awk 'NR == FNR { if ($0 ~ ENVIRON["KOMANDAN_AFTER"]) last = FNR; next } { print } FNR == last { print ENVIRON["KOMANDAN_LINE"] }' "$path" "$path" > "$tmp" || exit 1
  elif [ "$before" = BOF ]; then
    { printf '%s\n' "$line"; cat "$path"; } > "$tmp" || exit 1
  elif [ -n "$before" ] && grep -Eq -- "$before" "$path"; then
    awk '!done && $0 ~ ENVIRON["KOMANDAN_BEFORE"] { print ENVIRON["KOMANDAN_LINE"]; done = 1 } { print }' "$path" > "$tmp" || exit 1
  else
    {
      cat "$path"
      if [ -s "$path" ] && [ -n "$(tail -c 1 "$path")" ]; then echo; fi
      printf '%s\n' "$line"
    } > "$tmp" || exit 1
  fi
else
  if [ -n "$pattern" ]; then
    grep -Ev -- "$pattern" "$path" > "$tmp"
  else
    grep -vFx -- "$line" "$path" > "$tmp"
  fi
  # grep exits 1 when every line was removed
  [ $? -le 1 ] || exit 1
fi
cmp -s "$path" "$tmp" && exit 0
if [ "$backup" = yes ] && [ -z "$created" ]; then
  cp -p -- "$path" "$path.$(date +%Y%m%d%H%M%S).bak" || exit 1
fi
cat "$tmp" > "$path"
"""


def _flag(value: bool) -> str:
    return "yes" if value else "no"


@dataclass(frozen=True)
class LineInFile(Module):
    """Ensure a single line is present in or absent from a file."""

    module_name = "lineinfile"

    path: str = ""
    line: str | None = None
    pattern: str | None = None
    state: str = "present"
    create: bool = False
    backup: bool = False
    insert_after: str | None = None
    insert_before: str | None = None

    def compile(self) -> ActionPlan:
        self.require(path=self.path)
        self.require_choice("state", self.state, LINEINFILE_STATES)

        if self.state == "present":
            self.require(line=self.line)
        elif not self.line and not self.pattern:
            self.fail("line or pattern parameter is required")
        if self.line is not None and "\n" in self.line:
            self.fail("line cannot contain a newline")
        if self.insert_after and self.insert_before:
            self.fail("insert_after and insert_before cannot be used together")

        args = [
            self.path,
            self.state,
            self.line or "",
            self.pattern or "",
            _flag(self.create),
            _flag(self.backup),
            self.insert_after or "",
            self.insert_before or "",
        ]
        command = (
            f"sh -s -- {' '.join(quote(a) for a in args)} <<'{HEREDOC_MARKER}'\n"
            f"{_EDIT_SCRIPT}{HEREDOC_MARKER}\n"
        )
        return ActionPlan.of(RunShell(command))
