"""
Client settings for the ``move-on-aptos`` configuration section.

Settings come from an opaque key/value source.  :class:`Settings` is the
in-process store; it can be seeded from a ``.movelc.toml`` project file in
the workspace root::

    [move-on-aptos]
    server.path = "~/bin/aptos-language-server"
    server.extraEnv = { RUST_LOG = "info", LOG_DIR = "${workspaceFolder}/logs" }
    statusBar.clickAction = "stopServer"

:class:`Config` is a typed view over a :class:`Settings` instance; every
property re-reads the store, so changes are picked up without rebuilding it.
"""
from __future__ import annotations

import copy
import logging
import sys
import tomllib
from pathlib import Path

from movelc.envsubst import prepare_config, substitute_variables_in_env

logger = logging.getLogger(__name__)

SECTION = 'move-on-aptos'
PROJECT_CONFIG_NAME = '.movelc.toml'

_MISSING = object()


class Settings:
    """Nested key/value store addressed with dotted keys (``server.path``)."""

    def __init__(self, data: dict | None = None):
        self._data: dict = copy.deepcopy(data) if data else {}

    def get(self, key: str, default=None):
        if key in self._data:
            return self._data[key]
        node = self._data
        for part in key.split('.'):
            if not isinstance(node, dict) or part not in node:
                return default
            node = node[part]
        return node

    def update(self, key: str, value) -> None:
        """Set *key* to *value*; ``None`` removes the key."""
        self._data.pop(key, None)
        parts = key.split('.')
        node = self._data
        for part in parts[:-1]:
            child = node.get(part)
            if not isinstance(child, dict):
                if value is None:
                    return
                child = node[part] = {}
            node = child
        if value is None:
            node.pop(parts[-1], None)
        else:
            node[parts[-1]] = value

    def snapshot(self) -> dict:
        return copy.deepcopy(self._data)


def read_project_settings(workspace_root: str | None) -> Settings:
    """Load the ``[move-on-aptos]`` table from ``.movelc.toml`` in *workspace_root*.

    A missing or unreadable file yields empty settings.
    """
    if not workspace_root:
        return Settings()
    config_path = Path(workspace_root) / PROJECT_CONFIG_NAME
    if not config_path.exists():
        return Settings()
    try:
        data = tomllib.loads(config_path.read_text(encoding='utf-8'))
    except (OSError, tomllib.TOMLDecodeError):
        logger.warning('read_project_settings: cannot read %s', config_path, exc_info=True)
        return Settings()
    section = data.get(SECTION, {})
    return Settings(section if isinstance(section, dict) else {})


class Config:
    """Typed accessors over the ``move-on-aptos`` settings section."""

    def __init__(self, settings: Settings | None = None, *, workspace_folder: str | None = None):
        self.settings = settings if settings is not None else Settings()
        self.workspace_folder = workspace_folder

    def _get(self, key: str, default=None):
        value = self.settings.get(key, _MISSING)
        if value is _MISSING or value is None:
            return default
        return prepare_config(value, workspace_folder=self.workspace_folder)

    @property
    def server_path(self) -> str | None:
        """The explicitly configured server executable, or None."""
        raw = self.settings.get('server.path')
        if not raw:
            return None
        server_path = str(raw)
        if server_path.startswith('~/'):
            server_path = str(Path.home()) + server_path[1:]
        if sys.platform == 'win32' and not server_path.endswith('.exe'):
            server_path += '.exe'
        return str(Path(server_path).resolve())

    @property
    def server_extra_env(self) -> dict[str, str]:
        extra = self.settings.get('server.extraEnv') or {}
        if not isinstance(extra, dict):
            logger.warning('server.extraEnv must be a table, got %r', type(extra).__name__)
            return {}
        return substitute_variables_in_env(
            {str(k): v if isinstance(v, str) else str(v) for k, v in extra.items()},
            workspace_folder=self.workspace_folder,
        )

    @property
    def show_syntax_tree(self) -> bool:
        return bool(self._get('showSyntaxTree', False))

    @property
    def check_on_save(self) -> bool:
        return bool(self._get('checkOnSave', False))

    @property
    def initialize_stopped(self) -> bool:
        return bool(self._get('initializeStopped', False))

    @property
    def status_bar_click_action(self) -> str:
        return str(self._get('statusBar.clickAction', 'openLogs'))

    @property
    def trace_server(self) -> str | None:
        return self._get('trace.server')

    @property
    def detached_files(self) -> bool:
        return bool(self._get('workspace.detachedFiles', False))

    def section(self) -> dict:
        """The whole section with built-in variables substituted."""
        return prepare_config(self.settings.snapshot(), workspace_folder=self.workspace_folder)
