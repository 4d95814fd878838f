"""
Locate and validate the ``aptos-language-server`` executable.

Lookup order:

1. An explicit ``server.path`` setting.
2. ``aptos-language-server`` on ``PATH``.
3. A binary bundled next to the client (``bundled_dir``).

The chosen path must answer ``--version`` with exit status 0.
"""
from __future__ import annotations

import asyncio
import logging
import os
import shutil
import sys
from pathlib import Path

from movelc.config import Config

logger = logging.getLogger(__name__)

SERVER_NAME = 'aptos-language-server'
SERVER_SUBCOMMAND = 'lsp-server'
_VERSION_PREFIX = f'{SERVER_NAME} '

INSTALL_HINT = (
    'See README for the [proper installation procedure]'
    '(https://github.com/aptos-labs/move-vscode-extension/blob/main/README.md).'
)


class BootstrapError(Exception):
    """No usable server binary could be found or validated."""


def _bundled_server(bundled_dir: str | os.PathLike | None) -> str | None:
    if bundled_dir is None:
        return None
    ext = '.exe' if sys.platform == 'win32' else ''
    candidate = Path(bundled_dir) / f'{SERVER_NAME}{ext}'
    return str(candidate) if candidate.is_file() else None


def get_server(config: Config, *, bundled_dir: str | os.PathLike | None = None) -> str | None:
    """Return the server path to try, or None when nothing is available."""
    explicit = config.server_path
    if explicit:
        return explicit
    on_path = shutil.which(SERVER_NAME)
    if on_path:
        return on_path
    return _bundled_server(bundled_dir)


async def _run_version(path: str, env: dict[str, str] | None = None) -> tuple[int, str, str]:
    proc = await asyncio.create_subprocess_exec(
        path, '--version',
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
        env=env,
    )
    stdout, stderr = await proc.communicate()
    return (
        proc.returncode,
        stdout.decode('utf-8', errors='replace'),
        stderr.decode('utf-8', errors='replace'),
    )


async def is_valid_executable(path: str, extra_env: dict[str, str] | None = None) -> bool:
    """Run ``<path> --version`` with the ambient environment plus *extra_env*."""
    logger.debug('Checking availability of a binary at %s', path)
    env = {**os.environ, **(extra_env or {})}
    try:
        status, stdout, stderr = await _run_version(path, env)
    except OSError as e:
        logger.warning('%s --version: %s', path, e)
        return False
    if status != 0:
        logger.warning('%s --version: exit %s: %s', path, status, stderr.strip())
    else:
        logger.info('%s --version: %s', path, stdout.strip())
    return status == 0


async def bootstrap(config: Config, *, bundled_dir: str | os.PathLike | None = None) -> str:
    """Return a validated server path or raise :class:`BootstrapError`."""
    path = get_server(config, bundled_dir=bundled_dir)
    if not path:
        raise BootstrapError(f'Aptos Language Server is not available. {INSTALL_HINT}')

    logger.info('Using server binary at %s', path)

    if not await is_valid_executable(path, config.server_extra_env):
        message = f'Failed to execute {path} --version.'
        if config.server_path:
            message += (
                ' `server.path` has been set explicitly.'
                ' Consider removing this config or making a valid server binary'
                ' available at that path.'
            )
        raise BootstrapError(message)
    return path


async def probe_server_version(path: str) -> str:
    """Return the version string reported by *path* (without the binary name)."""
    status, stdout, stderr = await _run_version(path)
    if status != 0:
        raise RuntimeError(f'{path} --version exited with {status}: {stderr.strip()}')
    data = stdout.strip()
    if data.startswith(_VERSION_PREFIX):
        data = data[len(_VERSION_PREFIX):]
    return data.strip()
