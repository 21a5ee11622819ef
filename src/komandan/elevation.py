"""Privilege elevation for remote commands.

A command is re-issued through sudo or su. When the escalation tool asks
for a password, the configured password is written to the channel; a
second prompt or a known denial message means the password was rejected.

Prompt detection is deliberately kept behind ``detect_prompt`` and
``detect_denial`` so the heuristics can change without touching the
executor.
"""

import asyncio
import logging
import re

from .exceptions import ElevationError
from .modules.base import quote
from .types import Elevation, ElevationMethod

logger = logging.getLogger(__name__)

# Passed to "sudo -p"; must not contain "%" escapes
SUDO_PROMPT = "[komandan] elevation password:"

_SU_PROMPT = re.compile(rb"(?i)password\s*:[ \t]*")
_SU_PROMPT_AT_END = re.compile(rb"(?i)password\s*:[ \t]*\Z")

DENIAL_MARKERS = (
    "Sorry, try again",
    "incorrect password",
    "Authentication failure",
    "is not in the sudoers file",
    "a password is required",
)

READ_SIZE = 4096


def wrap_command(command: str, elevation: Elevation) -> str:
    """Re-issue a command under the elevated identity.

    Example:
        >>> wrap_command("id -u", Elevation(method=ElevationMethod.SUDO))
        "sudo -S -p '[komandan] elevation password:' -E -- sh -c 'id -u'"
    """
    if elevation.method is ElevationMethod.SUDO:
        user = f" -u {quote(elevation.as_user)}" if elevation.as_user else ""
        return f"sudo -S -p {quote(SUDO_PROMPT)} -E{user} -- sh -c {quote(command)}"
    if elevation.method is ElevationMethod.SU:
        user = f"{quote(elevation.as_user)} " if elevation.as_user else ""
        return f"su {user}-c {quote(command)}"
    return command


def needs_pty(elevation: Elevation) -> bool:
    """su reads the password from a terminal; sudo -S reads stdin."""
    return elevation.method is ElevationMethod.SU


def count_prompts(buffer: bytes, method: ElevationMethod = ElevationMethod.SUDO) -> int:
    """Number of password prompts in a buffer."""
    if method is ElevationMethod.SU:
        return len(_SU_PROMPT.findall(buffer))
    return buffer.count(SUDO_PROMPT.encode())


def detect_prompt(buffer: bytes, method: ElevationMethod = ElevationMethod.SUDO) -> bool:
    """Whether the escalation tool is asking for a password."""
    return count_prompts(buffer, method) > 0


def awaiting_password(buffer: bytes, method: ElevationMethod = ElevationMethod.SUDO) -> bool:
    """Whether the escalation tool has asked for a password and is waiting.

    su's prompt must end the buffer, so a command that merely prints
    "password:" is not mistaken for it. The sudo prompt is a unique marker.
    """
    if method is ElevationMethod.SU:
        return _SU_PROMPT_AT_END.search(buffer) is not None
    return SUDO_PROMPT.encode() in buffer


def detect_denial(buffer: bytes) -> bool:
    """Whether the buffer holds a known elevation denial message."""
    text = buffer.decode("utf-8", errors="replace")
    return any(marker in text for marker in DENIAL_MARKERS)


def strip_prompts(buffer: bytes, method: ElevationMethod = ElevationMethod.SUDO) -> bytes:
    """Remove password prompts (and the line break that follows) from output."""
    if method is ElevationMethod.SU:
        return re.sub(rb"(?i)password\s*:[ \t]*(\r?\n)?", b"", buffer, count=1)
    prompt = SUDO_PROMPT.encode()
    buffer = buffer.replace(prompt + b"\n", b"")
    return buffer.replace(prompt, b"")


async def negotiate(process, elevation: Elevation) -> tuple[bytes, bytes]:
    """Answer the password prompt of an elevated process.

    Reads the stream the prompt appears on (stderr for sudo, the terminal
    for su) for up to ``elevation.prompt_timeout`` seconds. When no prompt
    shows up in the window the command is assumed to be running without
    one. On a prompt the password is written followed by a newline, and
    only the escalation tool's immediate response is inspected: a new
    prompt, or a denial message on the first line after the answer. Any
    later output belongs to the command and is never scanned.

    Args:
        process: An asyncssh process opened with ``encoding=None``
        elevation: Elevation settings

    Returns:
        (stdout, stderr) bytes consumed during negotiation, prompts removed

    Raises:
        ElevationError: If the password is rejected or none is configured
    """
    method = elevation.method
    stream = process.stdout if method is ElevationMethod.SU else process.stderr
    loop = asyncio.get_running_loop()
    deadline = loop.time() + elevation.prompt_timeout
    buffer = b""
    answered_at: int | None = None

    while True:
        remaining = deadline - loop.time()
        if remaining <= 0:
            break
        try:
            chunk = await asyncio.wait_for(stream.read(READ_SIZE), timeout=remaining)
        except asyncio.TimeoutError:
            break
        if not chunk:
            break
        buffer += chunk

        if answered_at is None:
            if awaiting_password(buffer, method):
                if elevation.password is None:
                    raise ElevationError(f"{method.value} asked for a password but none is configured")
                logger.debug(f"Answering {method.value} password prompt")
                process.stdin.write(elevation.password.encode() + b"\n")
                answered_at = len(buffer)
                deadline = loop.time() + elevation.prompt_timeout
            elif method is ElevationMethod.SU and b"\n" in buffer:
                # su printed output without asking: the command is running
                break
            continue

        response = buffer[answered_at:].lstrip(b"\r\n")
        first_line, newline, _ = response.partition(b"\n")
        if detect_denial(first_line):
            raise ElevationError(f"{method.value} denied elevation")
        if awaiting_password(response, method):
            raise ElevationError(f"{method.value} rejected the elevation password")
        if newline:
            break

    consumed = strip_prompts(buffer, method) if answered_at is not None else buffer
    if method is ElevationMethod.SU:
        return consumed, b""
    return b"", consumed
