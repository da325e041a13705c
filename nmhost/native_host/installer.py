"""Native messaging host installer for Firefox.

Writes the launcher script and manifest JSON, then
registers the manifest so Firefox can find the host: a
registry key under HKCU on Windows, a copy of the manifest
in the per-user native-messaging-hosts directory on Linux
and macOS.
"""
from __future__ import annotations

import logging
import sys
from pathlib import Path

from returns.io import IOFailure, IOResult, IOSuccess
from returns.unsafe import unsafe_perform_io

from nmhost.native_host import io_ops
from nmhost.nmh_modules.errors import InstallError
from nmhost.nmh_modules.types import HostManifest

logger = logging.getLogger(__name__)

HOST_NAME = "nmhost"
HOST_DESCRIPTION = "Native messaging host"
HOST_MODULE = "nmhost.native_host.main"
REGISTRY_SUBKEY = "NativeMessagingHosts"

FIREFOX_MANIFEST_DIRS: dict[str, str] = {
    "linux": ".mozilla/native-messaging-hosts",
    "darwin": "Library/Application Support/Mozilla/NativeMessagingHosts",
}


def _platform_family(platform: str) -> str:
    if platform.startswith("linux"):
        return "linux"
    return platform


def build_manifest(
    host_name: str,
    description: str,
    script_path: str,
    extension_id: str,
) -> HostManifest:
    """Build the manifest pointing Firefox at the launcher script."""
    return HostManifest(
        name=host_name,
        description=description,
        path=script_path,
        allowed_extensions=[extension_id],
    )


def build_launcher_script(
    python_exe: str,
    module: str = HOST_MODULE,
    platform: str | None = None,
) -> str:
    """Return launcher script contents that start the host module.

    Windows gets a batch file, everything else a POSIX shell
    script that execs the interpreter so stdio passes through.
    """
    platform = platform or sys.platform
    if platform == "win32":
        return "\r\n".join(
            [
                "@echo off",
                f'"{python_exe}" -m {module} %*',
                "",
            ],
        )
    return "\n".join(
        [
            "#!/bin/sh",
            f'exec "{python_exe}" -m {module} "$@"',
            "",
        ],
    )


def write_host_files(  # noqa: PLR0913
    script_contents: str,
    script_path: Path,
    manifest_path: Path,
    extension_id: str,
    host_name: str,
    host_description: str,
    *,
    platform: str | None = None,
) -> IOResult[Path, InstallError]:
    """Write the launcher script and its manifest JSON.

    Returns the manifest path on success. Both files must be
    written for the install to count.
    """
    platform = platform or sys.platform
    try:
        io_ops.makedirs(str(script_path.parent))
        io_ops.write_file(str(script_path), script_contents)
        if platform != "win32":
            io_ops.chmod_executable(str(script_path))
        manifest = build_manifest(
            host_name, host_description, str(script_path), extension_id,
        )
        io_ops.makedirs(str(manifest_path.parent))
        io_ops.write_file(str(manifest_path), manifest.to_json() + "\n")
    except OSError as exc:
        return IOFailure(
            InstallError(
                operation="installer.write_host_files",
                error_type="ErrorWritingConfigData",
                message=f"Error writing config data: {exc}",
                context={
                    "script_path": str(script_path),
                    "manifest_path": str(manifest_path),
                },
            ),
        )
    logger.info("Wrote host files %s and %s", script_path, manifest_path)
    return IOSuccess(manifest_path)


def _register_windows(
    manifest_path: Path,
    program_name: str,
) -> IOResult[Path, InstallError]:
    """Point HKCU\\Software\\Mozilla\\NativeMessagingHosts\\<name> at the manifest."""
    value = str(manifest_path)
    if "\x00" in value:
        return IOFailure(
            InstallError(
                operation="installer.register_firefox_host",
                error_type="InvalidJsonPath",
                message="JSON path cannot be written to registry",
                context={"manifest_path": value},
            ),
        )
    try:
        root = io_ops.open_mozilla_registry_key()
    except OSError as exc:
        return IOFailure(
            InstallError(
                operation="installer.register_firefox_host",
                error_type="FirefoxNotFound",
                message=f"Firefox not found or installed: {exc}",
                context={},
            ),
        )
    opened = [root]
    try:
        try:
            hosts = io_ops.create_registry_subkey(root, REGISTRY_SUBKEY)
            opened.append(hosts)
            key = io_ops.create_registry_subkey(hosts, program_name)
            opened.append(key)
        except OSError as exc:
            return IOFailure(
                InstallError(
                    operation="installer.register_firefox_host",
                    error_type="ErrorCreatingProjectKey",
                    message=(
                        f"Error creating project key in registry: {exc}"
                    ),
                    context={"program_name": program_name},
                ),
            )
        try:
            io_ops.set_registry_default_value(key, value)
        except OSError as exc:
            return IOFailure(
                InstallError(
                    operation="installer.register_firefox_host",
                    error_type="ErrorWritingProjectKey",
                    message=(
                        f"Error writing project key to registry: {exc}"
                    ),
                    context={"program_name": program_name},
                ),
            )
    finally:
        for handle in reversed(opened):
            io_ops.close_registry_key(handle)
    logger.info("Registered %s in the registry", program_name)
    return IOSuccess(manifest_path)


def _register_user_dir(
    manifest_path: Path,
    program_name: str,
    manifest_dir: Path,
) -> IOResult[Path, InstallError]:
    """Copy the manifest into Firefox's per-user manifest directory."""
    dest = manifest_dir / f"{program_name}.json"
    try:
        io_ops.makedirs(str(manifest_dir))
        if dest.resolve() != manifest_path.resolve():
            io_ops.copy_file(str(manifest_path), str(dest))
    except OSError as exc:
        return IOFailure(
            InstallError(
                operation="installer.register_firefox_host",
                error_type="ErrorWritingProjectKey",
                message=f"Error copying manifest to {dest}: {exc}",
                context={
                    "manifest_path": str(manifest_path),
                    "dest": str(dest),
                },
            ),
        )
    logger.info("Registered %s at %s", program_name, dest)
    return IOSuccess(dest)


def register_firefox_host(
    manifest_path: Path,
    program_name: str,
    *,
    platform: str | None = None,
    home: Path | None = None,
) -> IOResult[Path, InstallError]:
    """Register the host manifest so Firefox can locate the host.

    Returns the location Firefox will read: the manifest path
    itself on Windows, the copied manifest elsewhere.
    """
    platform = platform or sys.platform
    if platform == "win32":
        return _register_windows(manifest_path, program_name)
    relative = FIREFOX_MANIFEST_DIRS.get(_platform_family(platform))
    if relative is None:
        return IOFailure(
            InstallError(
                operation="installer.register_firefox_host",
                error_type="UnsupportedPlatform",
                message=f"Unsupported platform for installer: {platform}",
                context={"platform": platform},
            ),
        )
    home = home or Path.home()
    return _register_user_dir(manifest_path, program_name, home / relative)


def install_host(  # noqa: PLR0913
    *,
    script_path: Path,
    manifest_path: Path,
    extension_id: str,
    host_name: str = HOST_NAME,
    host_description: str = HOST_DESCRIPTION,
    python_exe: str | None = None,
    platform: str | None = None,
    home: Path | None = None,
) -> IOResult[Path, InstallError]:
    """Generate the launcher, write host files, and register them.

    Returns the registered manifest location.
    """
    platform = platform or sys.platform
    script = build_launcher_script(
        python_exe or sys.executable, platform=platform,
    )
    return write_host_files(
        script,
        script_path,
        manifest_path,
        extension_id,
        host_name,
        host_description,
        platform=platform,
    ).bind(
        lambda path: register_firefox_host(
            path, host_name, platform=platform, home=home,
        ),
    )


def format_summary(result: IOResult[Path, InstallError]) -> str:
    """Format an install result as a human-readable line."""
    if isinstance(result, IOFailure):
        err = unsafe_perform_io(result.failure())
        return f"Install failed: {err.error_type}: {err.message}"
    return f"Installed host manifest: {unsafe_perform_io(result.unwrap())}"
