"""I/O boundary for the native messaging host.

All external I/O (process streams, filesystem, registry)
goes through here. Tests mock these functions at this
boundary.
"""
from __future__ import annotations

import asyncio
import os
import shutil
import stat
import sys
from typing import IO, Any


def _get_stdin_buffer() -> IO[bytes]:
    """Return stdin binary buffer. Mockable seam."""
    return sys.stdin.buffer


def _get_stdout_buffer() -> IO[bytes]:
    """Return stdout binary buffer. Mockable seam."""
    return sys.stdout.buffer


async def connect_stdio_streams() -> tuple[
    asyncio.StreamReader, asyncio.StreamWriter,
]:
    """Wrap the process's stdin/stdout as asyncio streams.

    Must be called from inside a running event loop. Reads
    and drains suspend the calling task rather than blocking
    the loop.
    """
    loop = asyncio.get_running_loop()
    reader = asyncio.StreamReader()
    read_protocol = asyncio.StreamReaderProtocol(reader)
    await loop.connect_read_pipe(
        lambda: read_protocol, _get_stdin_buffer(),
    )
    write_transport, write_protocol = await loop.connect_write_pipe(
        asyncio.streams.FlowControlMixin, _get_stdout_buffer(),
    )
    writer = asyncio.StreamWriter(
        write_transport, write_protocol, reader, loop,
    )
    return reader, writer


def makedirs(path: str) -> None:
    """Create directory and parents. Mockable seam."""
    os.makedirs(path, exist_ok=True)  # noqa: PTH103


def write_file(path: str, content: str) -> None:
    """Write string content to a file. Mockable seam."""
    with open(path, "w", encoding="utf-8") as f:  # noqa: PTH123
        f.write(content)


def copy_file(src: str, dest: str) -> None:
    """Copy a file to dest. Mockable seam."""
    shutil.copyfile(src, dest)


def chmod_executable(path: str) -> None:
    """Make a file executable. Mockable seam."""
    st = os.stat(path)  # noqa: PTH116
    os.chmod(path, st.st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)  # noqa: PTH101


def open_mozilla_registry_key() -> Any:  # noqa: ANN401
    r"""Open HKCU\Software\Mozilla for read/write. Mockable seam.

    Raises OSError (FileNotFoundError when Firefox has never
    created the key).
    """
    import winreg  # noqa: PLC0415

    return winreg.OpenKey(
        winreg.HKEY_CURRENT_USER,
        "Software\\Mozilla",
        0,
        winreg.KEY_READ | winreg.KEY_WRITE,
    )


def create_registry_subkey(parent: Any, name: str) -> Any:  # noqa: ANN401
    """Open or create a registry subkey. Mockable seam."""
    import winreg  # noqa: PLC0415

    return winreg.CreateKeyEx(
        parent, name, 0, winreg.KEY_READ | winreg.KEY_WRITE,
    )


def set_registry_default_value(key: Any, value: str) -> None:  # noqa: ANN401
    """Set the unnamed (default) string value of a key. Mockable seam."""
    import winreg  # noqa: PLC0415

    winreg.SetValueEx(key, "", 0, winreg.REG_SZ, value)


def close_registry_key(key: Any) -> None:  # noqa: ANN401
    """Close a registry key handle. Mockable seam."""
    import winreg  # noqa: PLC0415

    winreg.CloseKey(key)

