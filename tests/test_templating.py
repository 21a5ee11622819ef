"""Tests for template rendering."""

import pytest

from komandan.exceptions import ModuleError, TransferError
from komandan.templating import render, render_file


class TestRender:
    """Tests for rendering template source."""

    def test_variables(self):
        """Test variable substitution and control structures."""
        source = "{% for p in ports %}listen {{ p }};\n{% endfor %}"

        assert render(source, {"ports": [80, 443]}) == "listen 80;\nlisten 443;\n"

    def test_trailing_newline_kept(self):
        """Test that the final newline survives rendering."""
        assert render("x={{ x }}\n", {"x": 1}) == "x=1\n"

    def test_no_html_escaping(self):
        """Test that config files are not HTML-escaped."""
        assert render("{{ v }}", {"v": "<a & b>"}) == "<a & b>"

    def test_undefined_variable(self):
        """Test that undefined variables are errors."""
        with pytest.raises(ModuleError, match="'missing' is undefined"):
            render("{{ missing }}", {})

    def test_syntax_error(self):
        """Test that template syntax errors are module errors."""
        with pytest.raises(ModuleError, match="Error while rendering template"):
            render("{% if %}", {})


class TestRenderFile:
    """Tests for rendering template files."""

    def test_render_file(self, tmp_path):
        """Test rendering a file to UTF-8 bytes."""
        path = tmp_path / "motd.j2"
        path.write_text("Welcome to {{ name }} ✓\n", encoding="utf-8")

        assert render_file(str(path), {"name": "web01"}) == "Welcome to web01 ✓\n".encode("utf-8")

    def test_missing_file(self, tmp_path):
        """Test that an unreadable template is a transfer error."""
        with pytest.raises(TransferError, match="Cannot read template"):
            render_file(str(tmp_path / "missing.j2"))

    def test_not_utf8(self, tmp_path):
        """Test that a Latin-1 template is a module error naming the file."""
        path = tmp_path / "motd.j2"
        path.write_bytes("Bienvenue \xe0 {{ name }}\n".encode("latin-1"))

        with pytest.raises(ModuleError, match="is not valid UTF-8") as exc_info:
            render_file(str(path), {"name": "web01"})
        assert isinstance(exc_info.value.__cause__, UnicodeDecodeError)
