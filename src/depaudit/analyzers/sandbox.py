"""Dependency scan that performs a real, isolated install.

The target release is installed into a throwaway directory with lifecycle
scripts disabled and dev dependencies omitted. The resulting ``node_modules``
tree reflects what the package manager actually resolves, including
deduplication and hoisting.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import shutil
import tempfile
from pathlib import Path

from depaudit.analyzers.base import BaseScanner, check_names
from depaudit.analyzers.deny_list import DenyListRegistry
from depaudit.models.schemas import AnalysisResult, PackageIdentity, ScanStrategy

logger = logging.getLogger(__name__)

DEFAULT_INSTALL_TIMEOUT = 120.0

# Production-only, script-free install flags per package manager
INSTALL_COMMANDS: dict[str, list[str]] = {
    "yarn": ["install", "--production", "--ignore-scripts", "--non-interactive"],
    "npm": ["install", "--omit=dev", "--ignore-scripts", "--no-audit", "--no-fund"],
    "pnpm": ["install", "--prod", "--ignore-scripts"],
}

TEMP_DIR_PREFIX = "depaudit-"


class InstallError(Exception):
    """Raised when the package manager fails or times out."""


class SandboxInstallScanner(BaseScanner):
    """Scans the dependency tree produced by an isolated install."""

    def __init__(
        self,
        deny_list: DenyListRegistry,
        package_manager: str = "yarn",
        install_timeout: float = DEFAULT_INSTALL_TIMEOUT,
        temp_root: Path | None = None,
    ) -> None:
        """Initialize the scanner.

        Args:
            deny_list: Deny-list registry.
            package_manager: Executable to install with (yarn, npm or pnpm).
            install_timeout: Seconds before the install is killed.
            temp_root: Parent directory for sandboxes (system temp dir by default).
        """
        super().__init__(deny_list)
        if package_manager not in INSTALL_COMMANDS:
            supported = ", ".join(INSTALL_COMMANDS)
            raise ValueError(f"Unsupported package manager: {package_manager}. Supported: {supported}")
        self.package_manager = package_manager
        self.install_timeout = install_timeout
        self.temp_root = temp_root

    @property
    def strategy(self) -> ScanStrategy:
        return ScanStrategy.SANDBOX

    async def scan(self, identity: PackageIdentity) -> AnalysisResult:
        result = self.new_result()
        temp_dir: Path | None = None

        try:
            known_bad = await self.deny_list.load()

            # No need to install a package that is itself deny-listed
            if identity.name in known_bad:
                result.flag(identity.name)
                return result

            temp_dir = Path(tempfile.mkdtemp(prefix=TEMP_DIR_PREFIX, dir=self.temp_root))
            write_manifest(temp_dir, identity)

            try:
                await self._install(temp_dir)
            except InstallError as e:
                logger.warning(f"Install failed for {identity}: {e}")
                result.error = f"Installation failed: {e}"
                return result

            node_modules = temp_dir / "node_modules"
            if not node_modules.is_dir():
                # Nothing was installed, e.g. a package without a tarball
                return result

            installed = await asyncio.to_thread(list_installed_packages, node_modules)
            logger.debug(f"{identity} installed {len(installed)} packages")
            check_names(result, installed, known_bad)
            return result

        except Exception as e:
            logger.exception(f"Error analyzing dependencies for {identity}")
            result.error = str(e) or type(e).__name__
            return result

        finally:
            if temp_dir is not None:
                await asyncio.to_thread(remove_sandbox, temp_dir)

    async def _install(self, cwd: Path) -> None:
        """Run the package manager in ``cwd``.

        Raises:
            InstallError: On a missing executable, non-zero exit or timeout.
        """
        args = INSTALL_COMMANDS[self.package_manager]
        env = {**os.environ, "NODE_ENV": "production"}

        try:
            process = await asyncio.create_subprocess_exec(
                self.package_manager,
                *args,
                cwd=str(cwd),
                env=env,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise InstallError(f"could not run {self.package_manager}: {e}") from e

        try:
            try:
                _, stderr = await asyncio.wait_for(process.communicate(), timeout=self.install_timeout)
            except asyncio.TimeoutError as e:
                raise InstallError(f"timed out after {self.install_timeout:g}s") from e
        finally:
            # Timed out or cancelled: stop writing into the sandbox before it is removed
            if process.returncode is None:
                try:
                    process.kill()
                except ProcessLookupError:
                    pass
                await process.wait()

        if process.returncode != 0:
            detail = stderr.decode(errors="replace").strip().splitlines()[-1:] if stderr else []
            message = f"{self.package_manager} exited with code {process.returncode}"
            if detail:
                message += f": {detail[0]}"
            raise InstallError(message)


def write_manifest(directory: Path, identity: PackageIdentity) -> Path:
    """Write a package.json whose only dependency is ``identity``."""
    manifest = {
        "name": "security-analysis-temp",
        "version": "1.0.0",
        "private": True,
        "dependencies": {identity.name: identity.version},
    }
    path = directory / "package.json"
    path.write_text(json.dumps(manifest, indent=2))
    return path


def list_installed_packages(node_modules: Path) -> list[str]:
    """Return every package name installed under a node_modules directory.

    Scoped packages (``@scope/name``) and nested ``node_modules`` directories
    are followed at any depth. Dot entries such as ``.bin`` are skipped.
    """
    packages: dict[str, None] = {}
    seen_dirs: set[Path] = set()
    _collect_installed(node_modules, packages, seen_dirs)
    return list(packages)


def _collect_installed(node_modules: Path, packages: dict[str, None], seen_dirs: set[Path]) -> None:
    real = node_modules.resolve()
    if real in seen_dirs:
        return
    seen_dirs.add(real)

    try:
        entries = sorted(node_modules.iterdir())
    except OSError as e:
        logger.warning(f"Error reading node_modules at {node_modules}: {e}")
        return

    for entry in entries:
        if entry.name.startswith(".") or not entry.is_dir():
            continue

        if entry.name.startswith("@"):
            try:
                scoped_entries = sorted(entry.iterdir())
            except OSError as e:
                logger.warning(f"Error reading scope directory {entry}: {e}")
                continue
            for scoped in scoped_entries:
                if scoped.is_dir():
                    packages[f"{entry.name}/{scoped.name}"] = None
                    _collect_nested(scoped, packages, seen_dirs)
        else:
            packages[entry.name] = None
            _collect_nested(entry, packages, seen_dirs)


def _collect_nested(package_dir: Path, packages: dict[str, None], seen_dirs: set[Path]) -> None:
    nested = package_dir / "node_modules"
    if nested.is_dir():
        _collect_installed(nested, packages, seen_dirs)


def remove_sandbox(path: Path) -> None:
    """Delete a sandbox directory; failures are logged, never raised."""
    try:
        shutil.rmtree(path)
    except FileNotFoundError:
        pass
    except OSError as e:
        logger.warning(f"Failed to clean up temp directory {path}: {e}")
