"""Template rendering for the Template module.

Templates use Jinja2 syntax. Undefined variables are errors rather than
empty strings, and a trailing newline in the template is kept.
"""

from pathlib import Path
from typing import Any, Mapping

from jinja2 import Environment, StrictUndefined, TemplateError

from .exceptions import ModuleError, TransferError

_jinja2_env: Environment = Environment(
    autoescape=False,
    keep_trailing_newline=True,
    undefined=StrictUndefined)


def render(template: str, vars: Mapping[str, Any] | None = None) -> str:
    """Render template source with the given variables.

    Args:
        template: Jinja2 template source
        vars: Template variables

    Returns:
        The rendered text

    Raises:
        ModuleError: If the template is invalid or uses an undefined variable

    Example:
        >>> render("listen {{ port }}\\n", {"port": 8080})
        'listen 8080\\n'
    """
    try:
        return _jinja2_env.from_string(template).render(dict(vars or {}))
    except TemplateError as e:
        raise ModuleError("template", f"Error while rendering template: {e}") from e


def render_file(path: str, vars: Mapping[str, Any] | None = None) -> bytes:
    """Read a local template file and render it to UTF-8 bytes.

    Raises:
        TransferError: If the template file cannot be read
        ModuleError: If the file is not UTF-8 or rendering fails
    """
    try:
        source = Path(path).read_text(encoding="utf-8")
    except OSError as e:
        raise TransferError(f"Cannot read template {path}: {e.strerror or e}", path=path) from e
    except UnicodeDecodeError as e:
        raise ModuleError("template", f"Template {path} is not valid UTF-8: {e.reason} at byte {e.start}") from e
    return render(source, vars).encode("utf-8")
