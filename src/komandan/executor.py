"""Action plan execution over an open connection.

Runs the steps of an ActionPlan in order: shell commands on new channels
(wrapped for elevation and given the merged environment), and file
transfers over SFTP. The first failing step ends the plan; cleanup steps
still run and never change the outcome.
"""

import asyncio
import logging
import os
import stat
from pathlib import Path
from typing import Mapping

import asyncssh

from .connection import Connection
from .elevation import needs_pty, negotiate, wrap_command
from .exceptions import ConnectionError, ConnectionStage, KomandanError, ModuleError, TransferError
from .logging import log_command
from .modules.base import quote
from .plan import ActionPlan, GetFile, PutContent, PutFile, RenderAndPutFile, RunShell
from .templating import render_file
from .types import ENV_NAME, Elevation, ExecutionResult

logger = logging.getLogger(__name__)

CHUNK_SIZE = 32768

PTY_TERM_TYPE = "dumb"


def inline_env(env: Mapping[str, str]) -> str:
    """Shell prefix exporting env, for servers that reject env requests.

    Example:
        >>> inline_env({"LANG": "C", "MSG": "a b"})
        "export LANG=C; export MSG='a b'; "
    """
    parts = []
    for key, value in env.items():
        if not ENV_NAME.match(key):
            raise ModuleError("env", f"Invalid environment variable name: {key!r}")
        parts.append(f"export {key}={quote(value)}; ")
    return "".join(parts)


def _decode(data: bytes) -> str:
    return data.decode("utf-8", errors="replace")


async def run_shell(
    conn: Connection,
    step: RunShell,
    env: Mapping[str, str] | None = None,
    elevation: Elevation | None = None,
    env_forwarding: str = "inline",
) -> ExecutionResult:
    """Run one shell command and collect its output and exit status.

    stdout and stderr are drained concurrently so a silent stream never
    blocks a busy one.

    Args:
        conn: Open connection
        step: The command step
        env: Environment for the command
        elevation: Elevation settings (None or method NONE for no wrapping)
        env_forwarding: "inline" to export variables in the command line,
            "native" to send SSH environment requests

    Returns:
        The command's output and exit code (-1 when the process reported none)

    Raises:
        ElevationError: If elevation was requested and denied
    """
    elevation = elevation or Elevation()
    command = step.command
    native_env = None
    if env:
        if env_forwarding == "native":
            native_env = dict(env)
        else:
            command = inline_env(env) + command
    if elevation.enabled:
        command = wrap_command(command, elevation)

    log_command(logger, conn.label, command, step.sensitive)

    term_type = PTY_TERM_TYPE if needs_pty(elevation) else None
    try:
        async with conn.create_process(command, env=native_env, term_type=term_type) as process:
            stdout_head, stderr_head = b"", b""
            if elevation.enabled:
                stdout_head, stderr_head = await negotiate(process, elevation)
            process.stdin.write_eof()

            stdout, stderr = await asyncio.gather(process.stdout.read(), process.stderr.read())
            await process.wait()
            exit_code = process.returncode
    except (OSError, asyncssh.Error) as e:
        raise ConnectionError(ConnectionStage.CHANNEL, str(e) or type(e).__name__, host=conn.label) from e

    stdout = _decode(stdout_head + stdout)
    stderr = _decode(stderr_head + stderr)
    if term_type:
        stdout = stdout.replace("\r\n", "\n")

    return ExecutionResult(
        stdout=stdout,
        stderr=stderr,
        exit_code=-1 if exit_code is None else exit_code,
    )


def _transfer_error(action: str, source: str, dest: str, error: Exception) -> TransferError:
    reason = getattr(error, "reason", None) or getattr(error, "strerror", None) or str(error)
    return TransferError(f"{action} {source} -> {dest} failed: {reason}", source=source, dest=dest)


async def put_file(conn: Connection, local_path: str, remote_path: str) -> None:
    """Upload a file (or a directory tree) byte for byte.

    Raises:
        TransferError: If the local source is missing or the remote write fails
    """
    path = Path(local_path).expanduser()
    if not path.exists():
        raise TransferError(f"Local file not found: {local_path}", source=local_path)

    logger.debug(f"Uploading {local_path} to {conn.label}:{remote_path}")
    try:
        async with conn.start_sftp_client() as sftp:
            if path.is_dir():
                await sftp.put(str(path), remote_path, recurse=True, preserve=True)
                return
            with open(path, "rb") as source:
                async with sftp.open(remote_path, "wb") as dest:
                    while chunk := source.read(CHUNK_SIZE):
                        await dest.write(chunk)
            await sftp.chmod(remote_path, stat.S_IMODE(os.stat(path).st_mode))
    except (OSError, asyncssh.Error) as e:
        raise _transfer_error("Upload", local_path, f"{conn.label}:{remote_path}", e) from e


async def get_file(conn: Connection, remote_path: str, local_path: str) -> None:
    """Download a remote file (or a directory tree) byte for byte.

    Raises:
        TransferError: If the remote source is missing or the local write fails
    """
    logger.debug(f"Downloading {conn.label}:{remote_path} to {local_path}")
    path = Path(local_path).expanduser()
    try:
        async with conn.start_sftp_client() as sftp:
            if await sftp.isdir(remote_path):
                await sftp.get(remote_path, str(path), recurse=True, preserve=True)
                return
            async with sftp.open(remote_path, "rb") as source:
                with open(path, "wb") as dest:
                    while chunk := await source.read(CHUNK_SIZE):
                        dest.write(chunk)
    except (OSError, asyncssh.Error) as e:
        raise _transfer_error("Download", f"{conn.label}:{remote_path}", local_path, e) from e


async def write_content(conn: Connection, content: bytes, remote_path: str, source: str = "<content>") -> None:
    """Write in-memory content to a remote file.

    Raises:
        TransferError: If the remote write fails
    """
    logger.debug(f"Writing {len(content)} bytes to {conn.label}:{remote_path}")
    try:
        async with conn.start_sftp_client() as sftp:
            async with sftp.open(remote_path, "wb") as dest:
                for offset in range(0, len(content), CHUNK_SIZE):
                    await dest.write(content[offset:offset + CHUNK_SIZE])
    except (OSError, asyncssh.Error) as e:
        raise _transfer_error("Write", source, f"{conn.label}:{remote_path}", e) from e


async def _run_cleanup(conn: Connection, step: RunShell, env, elevation, env_forwarding) -> None:
    try:
        result = await run_shell(conn, step, env, elevation, env_forwarding)
    except (KomandanError, OSError, asyncssh.Error) as e:
        logger.debug(f"Cleanup step failed on {conn.label}: {e}")
        return
    if result.exit_code != 0:
        logger.debug(f"Cleanup step exited with {result.exit_code} on {conn.label}")


async def execute_plan(
    conn: Connection,
    plan: ActionPlan,
    env: Mapping[str, str] | None = None,
    elevation: Elevation | None = None,
    env_forwarding: str = "inline",
) -> ExecutionResult:
    """Run every step of a plan in order.

    Output of all shell steps is concatenated. The plan stops at the first
    command exiting non-zero, whose exit code becomes the result's, or at
    the first step raising an error. Cleanup steps run regardless, and
    their outcome is ignored.

    Args:
        conn: Open connection owned by the caller
        plan: Compiled action plan
        env: Environment for shell steps
        elevation: Elevation applied to shell steps
        env_forwarding: "inline" or "native"

    Returns:
        The combined ExecutionResult

    Raises:
        ElevationError: If elevation is denied
        TransferError: If a file transfer fails
        ModuleError: If a template fails to render
    """
    stdout: list[str] = []
    stderr: list[str] = []
    exit_code = 0
    error: BaseException | None = None
    stopped = False

    for step in plan:
        if isinstance(step, RunShell) and step.cleanup:
            await _run_cleanup(conn, step, env, elevation, env_forwarding)
            continue
        if stopped:
            continue

        try:
            if isinstance(step, RunShell):
                result = await run_shell(conn, step, env, elevation, env_forwarding)
                stdout.append(result.stdout)
                stderr.append(result.stderr)
                exit_code = result.exit_code
                if exit_code != 0:
                    logger.debug(f"Step exited with {exit_code} on {conn.label}, stopping plan")
                    stopped = True
            elif isinstance(step, PutFile):
                await put_file(conn, step.local_path, step.remote_path)
            elif isinstance(step, PutContent):
                await write_content(conn, step.content, step.remote_path)
            elif isinstance(step, GetFile):
                await get_file(conn, step.remote_path, step.local_path)
            elif isinstance(step, RenderAndPutFile):
                content = render_file(step.template_source, step.vars)
                await write_content(conn, content, step.remote_path, source=step.template_source)
            else:
                raise TypeError(f"Unknown plan step: {type(step).__name__}")
        except KomandanError as e:
            error = e
            stopped = True

    if error is not None:
        raise error

    return ExecutionResult(stdout="".join(stdout), stderr="".join(stderr), exit_code=exit_code)
