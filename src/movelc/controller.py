"""
Server lifecycle controller.

Owns at most one :class:`~movelc.connection.ServerConnection` and walks it
through ``STOPPED -> STARTING -> RUNNING -> STOPPING -> STOPPED``.  All
state lives on a single asyncio loop; server notifications arrive on
:attr:`LifecycleController.notifications` and are handled by one drain
task, which drops anything sent by a connection that is no longer current.
"""
from __future__ import annotations

import asyncio
import enum
import logging
import os
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from pathlib import Path
from urllib.parse import urlparse

from lsprotocol import types as lsp
from pygls.exceptions import JsonRpcException

from movelc import __version__, lsp_ext
from movelc.bootstrap import SERVER_NAME, BootstrapError, bootstrap, probe_server_version
from movelc.commands import CommandFactory, CommandRegistry, create_commands
from movelc.config import SECTION, Config
from movelc.connection import SERVER_EXITED, ServerConnection
from movelc.envsubst import prepare_config
from movelc.host import SERVER_OUTPUT, Document, Host
from movelc.status import Health, StatusState, render_status
from movelc.syntax_tree import SyntaxElement, SyntaxTreeProvider

logger = logging.getLogger(__name__)

SHUTDOWN_TIMEOUT = 0.1

NOT_RUNNING_VERSION = '<not running>'
UNKNOWN_VERSION = '<unknown>'

PROJECT_CONTEXT = 'inAptosProject'
MOVEFMT_UPDATE_ACTION = 'Run `aptos update` in Terminal'


class ControllerState(enum.Enum):
    STOPPED = 'stopped'
    STARTING = 'starting'
    RUNNING = 'running'
    STOPPING = 'stopping'


class ServerNotRunning(Exception):
    """A request was issued while no live server connection exists."""


class WorkspaceKind(enum.Enum):
    EMPTY = 'Empty'
    FOLDER = 'Workspace Folder'
    DETACHED_FILES = 'Detached Files'


@dataclass(frozen=True)
class Workspace:
    kind: WorkspaceKind
    folders: tuple[str, ...] = ()
    files: frozenset[str] = frozenset()

    @property
    def root(self) -> str | None:
        return self.folders[0] if self.folders else None


def _is_file_folder(folder: str) -> bool:
    scheme = urlparse(folder).scheme
    # Plain paths, and Windows drive letters that urlparse reads as a scheme.
    return scheme in ('', 'file') or len(scheme) == 1


def _folder_path(folder: str) -> str:
    if folder.startswith('file:'):
        return urlparse(folder).path
    return folder


def fetch_workspace(host: Host, *, detached_files: bool = False) -> Workspace:
    """Classify what the host currently has open."""
    folders = tuple(_folder_path(f) for f in host.workspace_folders() if _is_file_folder(f))
    if folders:
        return Workspace(WorkspaceKind.FOLDER, folders=folders)
    if detached_files:
        files = frozenset(doc.uri for doc in host.open_documents() if doc.is_move)
        if files:
            return Workspace(WorkspaceKind.DETACHED_FILES, files=files)
    return Workspace(WorkspaceKind.EMPTY)


Bootstrapper = Callable[[Config], Awaitable[str]]
VersionProbe = Callable[[str], Awaitable[str]]
ConnectionFactory = Callable[..., ServerConnection]


class LifecycleController:
    def __init__(
        self,
        host: Host,
        *,
        commands: dict[str, CommandFactory] | None = None,
        workspace: Workspace | None = None,
        bootstrapper: Bootstrapper = bootstrap,
        connection_factory: ConnectionFactory = ServerConnection,
        version_probe: VersionProbe = probe_server_version,
        log: logging.Logger | None = None,
        extension_version: str = __version__,
    ):
        self.host = host
        self.log = log or logger
        self.extension_version = extension_version
        self._bootstrap = bootstrapper
        self._connection_factory = connection_factory
        self._version_probe = version_probe

        self.workspace = workspace or fetch_workspace(host, detached_files=self.config.detached_files)
        self.state = ControllerState.STOPPED
        self.status = StatusState.stopped()
        self.server_path: str | None = None
        self.server_version = NOT_RUNNING_VERSION

        self.notifications: asyncio.Queue = asyncio.Queue()
        self._connection: ServerConnection | None = None
        self._drain_task: asyncio.Task | None = None
        self._version_task: asyncio.Task | None = None
        self._refresh_tasks: set[asyncio.Task] = set()
        self._status_changed = asyncio.Event()

        self.syntax_tree_provider: SyntaxTreeProvider | None = None
        self.syntax_tree_visible = False

        self.commands = CommandRegistry(host, commands if commands is not None else create_commands())
        self._update_commands(force_disable=True)
        self.refresh_server_status()

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def config(self) -> Config:
        return self.host.configuration()

    @property
    def connection(self) -> ServerConnection | None:
        return self._connection

    @property
    def is_running(self) -> bool:
        return (
            self.state is ControllerState.RUNNING
            and self._connection is not None
            and self._connection.is_running()
        )

    @property
    def active_move_document(self) -> Document | None:
        doc = self.host.active_document()
        return doc if doc is not None and doc.is_move else None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def activate(self) -> None:
        self.host.set_context(PROJECT_CONTEXT, True)
        if self.config.initialize_stopped:
            self.set_server_status(StatusState.stopped())
            return
        await self.start()

    async def start(self) -> bool:
        """Discover, spawn and initialize the server; True once it is running."""
        if self.state is not ControllerState.STOPPED:
            self.log.debug('start: ignored in state %s', self.state.value)
            return self.is_running
        if self.workspace.kind is WorkspaceKind.EMPTY:
            self.log.info('start: no workspace folder is open, not starting %s', SERVER_NAME)
            return False

        self.log.info('Starting language client (%s)', self.workspace.kind.value)
        self.state = ControllerState.STARTING
        self.set_server_status(StatusState.starting())
        config = self.config

        try:
            server_path = await self._bootstrap(config)
            env = {**os.environ, **config.server_extra_env}
            connection = self._connection_factory(server_path, env=env, cwd=self.workspace.root)
        except BootstrapError as e:
            self._fail_start(str(e))
            return False
        except Exception as e:
            self.log.error('Failed to prepare %s: %s', SERVER_NAME, e, exc_info=True)
            self._fail_start(str(e) or type(e).__name__)
            return False
        for method in (lsp_ext.SERVER_STATUS, lsp_ext.OPEN_SERVER_LOGS, lsp_ext.MOVEFMT_VERSION_ERROR):
            connection.subscribe(method, self.notifications)
        connection.set_configuration_provider(self._configuration_for)
        self._connection = connection
        self.server_path = server_path
        self._ensure_drain()

        try:
            await connection.start(
                root_uri=Path(self.workspace.root).as_uri() if self.workspace.root else None,
                workspace_folders=list(self.workspace.folders),
                initialization_options=self._initialization_options(config),
            )
        except Exception as e:
            self.log.error('Failed to start %s %s', server_path, e, exc_info=True)
            self._connection = None
            self.server_path = None
            await connection.dispose()
            self._fail_start(str(e) or type(e).__name__)
            return False

        self.state = ControllerState.RUNNING
        self._update_commands()
        self._version_task = asyncio.create_task(self._probe_version(server_path))
        if config.show_syntax_tree:
            self._prepare_syntax_tree_view()
        return True

    def _fail_start(self, reason: str) -> None:
        message = f'Cannot start {SERVER_NAME}: {reason}'
        self.log.error('%s', message)
        self.state = ControllerState.STOPPED
        self._update_commands(force_disable=True)
        self.host.show_error_message(message)
        self.set_server_status(StatusState.error(reason))

    async def stop(self) -> None:
        connection = self._connection
        if connection is None or self.state is not ControllerState.RUNNING:
            self.log.debug('stop: ignored in state %s', self.state.value)
            return
        self.log.info('Disposing language client')
        self.state = ControllerState.STOPPING
        self._update_commands(force_disable=True)
        try:
            await connection.stop(SHUTDOWN_TIMEOUT)
        except asyncio.TimeoutError:
            self.log.warning('%s did not acknowledge shutdown within %d ms',
                             SERVER_NAME, int(SHUTDOWN_TIMEOUT * 1000))
        except Exception as e:
            self.log.warning('Error during %s shutdown: %s', SERVER_NAME, e)
        finally:
            await self._dispose_connection()
        self.state = ControllerState.STOPPED
        self.set_server_status(StatusState.stopped())

    async def restart(self) -> bool:
        await self.stop()
        return await self.start()

    async def _dispose_connection(self) -> None:
        connection, self._connection = self._connection, None
        self.server_path = None
        self.server_version = NOT_RUNNING_VERSION
        self.syntax_tree_provider = None
        if connection is not None:
            await connection.dispose()

    async def dispose(self) -> None:
        await self.stop()
        for task in (self._drain_task, self._version_task, *self._refresh_tasks):
            if task is not None and not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        self._drain_task = self._version_task = None
        self._refresh_tasks.clear()
        self.commands.dispose()
        self.host.set_context(PROJECT_CONTEXT, None)

    def _update_commands(self, *, force_disable: bool = False) -> None:
        live = not force_disable and self._connection is not None and self._connection.is_running()
        self.commands.rebind(self, live)

    async def _probe_version(self, path: str) -> None:
        try:
            version = await self._version_probe(path)
        except (OSError, RuntimeError) as e:
            self.log.warning('Could not read the version of %s: %s', path, e)
            version = UNKNOWN_VERSION
        if self.server_path == path:
            self.server_version = version
            self.refresh_server_status()

    async def wait_until_quiescent(self, timeout: float) -> bool:
        """Wait for the server to report a settled status; False on timeout."""
        async def settled():
            while self.status.health in (Health.STARTING, Health.STOPPED) or not self.status.quiescent:
                if self.state is ControllerState.STOPPED and self._connection is None:
                    return
                self._status_changed.clear()
                await self._status_changed.wait()

        try:
            await asyncio.wait_for(settled(), timeout)
        except asyncio.TimeoutError:
            return False
        return self.is_running

    # ------------------------------------------------------------------
    # Workspace and configuration events
    # ------------------------------------------------------------------

    async def on_workspace_folders_changed(self) -> None:
        previous = self.workspace
        current = fetch_workspace(self.host, detached_files=self.config.detached_files)
        self.workspace = current

        if previous.kind is WorkspaceKind.DETACHED_FILES and current.kind is WorkspaceKind.DETACHED_FILES:
            # An unchanged file set keeps the running server.
            if previous.files != current.files and self.is_running:
                await self.stop()
                await self.start()
            return
        if previous.kind is WorkspaceKind.FOLDER and current.kind is WorkspaceKind.FOLDER:
            return
        if current.kind is WorkspaceKind.EMPTY:
            await self.stop()
            return
        if self.is_running:
            await self.restart()

    def on_configuration_changed(self) -> None:
        connection = self._connection
        if not self.is_running or connection is None:
            return
        connection.did_change_configuration(self.config.section())
        self.refresh_server_status()

    def _configuration_for(self, sections: list[str | None]) -> list:
        config = self.config
        result = []
        for section in sections:
            if section is None or section == SECTION:
                result.append(config.section())
            elif section.startswith(SECTION + '.'):
                value = config.settings.get(section[len(SECTION) + 1:])
                result.append(prepare_config(value, workspace_folder=config.workspace_folder))
            else:
                result.append(None)
        return result

    def _initialization_options(self, config: Config) -> dict:
        options = config.section()
        if self.workspace.kind is WorkspaceKind.DETACHED_FILES:
            options['detachedFiles'] = sorted(self.workspace.files)
        return options

    # ------------------------------------------------------------------
    # Notifications
    # ------------------------------------------------------------------

    def _ensure_drain(self) -> None:
        if self._drain_task is None or self._drain_task.done():
            self._drain_task = asyncio.create_task(self._drain_notifications())

    async def _drain_notifications(self) -> None:
        while True:
            connection, method, params = await self.notifications.get()
            try:
                if connection is not self._connection:
                    self.log.debug('Dropping %s from a disposed connection', method)
                    continue
                await self._handle_notification(method, params)
            except Exception:
                self.log.exception('Error while handling %s', method)
            finally:
                self.notifications.task_done()

    async def _handle_notification(self, method: str, params) -> None:
        if method == lsp_ext.SERVER_STATUS:
            self.set_server_status(StatusState.from_params(params))
        elif method == lsp_ext.OPEN_SERVER_LOGS:
            self.host.show_output(SERVER_OUTPUT)
        elif method == lsp_ext.MOVEFMT_VERSION_ERROR:
            self._on_movefmt_version_error(params)
        elif method == SERVER_EXITED:
            await self._on_server_exited(params)
        else:
            self.log.debug('Unhandled notification %s', method)

    def _on_movefmt_version_error(self, params) -> None:
        message = f"movefmt error: {lsp_ext.get_param(params, 'message', '')}"
        aptos_path = lsp_ext.get_param(params, 'aptosPath')
        if not aptos_path:
            self.host.show_error_message(
                f"{message}\n"
                f"Configure 'move-on-aptos.aptosPath' to be able to update movefmt "
                f"to the required version {lsp_ext.MOVEFMT_REQUIRED_VERSION}"
            )
            return
        selected = self.host.show_error_message(message, MOVEFMT_UPDATE_ACTION)
        if selected == MOVEFMT_UPDATE_ACTION:
            self.host.run_in_terminal(
                'Update Movefmt',
                f'{aptos_path} update movefmt --target-version {lsp_ext.MOVEFMT_REQUIRED_VERSION}',
            )

    async def _on_server_exited(self, returncode) -> None:
        if self.state is not ControllerState.RUNNING:
            return
        reason = f'{SERVER_NAME} exited unexpectedly (code {returncode})'
        self.log.error('%s', reason)
        self._update_commands(force_disable=True)
        await self._dispose_connection()
        self.state = ControllerState.STOPPED
        self.set_server_status(StatusState.error(reason))

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    def set_server_status(self, state: StatusState) -> None:
        self.status = state
        self.refresh_server_status()
        self._status_changed.set()
        if state.health is Health.OK and self.syntax_tree_visible and self.syntax_tree_provider is not None:
            task = asyncio.get_running_loop().create_task(self.refresh_syntax_tree())
            self._refresh_tasks.add(task)
            task.add_done_callback(self._refresh_tasks.discard)

    def refresh_server_status(self) -> None:
        self.host.render_status(render_status(
            self.status,
            click_action=self.config.status_bar_click_action,
            extension_version=self.extension_version,
            server_version=self.server_version,
        ))

    # ------------------------------------------------------------------
    # Requests
    # ------------------------------------------------------------------

    async def send_request(self, method: str, params=None):
        connection = self._connection
        if connection is None or not connection.is_running():
            raise ServerNotRunning(f'{SERVER_NAME} is not running')
        return await connection.send_request(method, params)

    async def resolve_code_action(self, action):
        return await self.send_request(lsp.CODE_ACTION_RESOLVE, action)

    # ------------------------------------------------------------------
    # Syntax tree
    # ------------------------------------------------------------------

    def _prepare_syntax_tree_view(self) -> SyntaxTreeProvider:
        if self.syntax_tree_provider is None:
            self.syntax_tree_provider = SyntaxTreeProvider(self._fetch_syntax_tree)
        return self.syntax_tree_provider

    async def _fetch_syntax_tree(self, uri: str) -> str:
        return await self.send_request(lsp_ext.VIEW_SYNTAX_TREE, lsp_ext.view_syntax_tree_params(uri))

    async def refresh_syntax_tree(self) -> None:
        provider = self.syntax_tree_provider
        if provider is None:
            return
        doc = self.active_move_document
        try:
            await provider.refresh(doc.uri if doc is not None else None)
        except (ServerNotRunning, JsonRpcException, ValueError) as e:
            self.log.warning('Could not refresh the syntax tree: %s', e)

    async def on_active_editor_changed(self) -> None:
        if self.syntax_tree_visible:
            await self.refresh_syntax_tree()

    async def on_document_changed(self, uri: str, *, has_changes: bool = True) -> None:
        doc = self.active_move_document
        if not has_changes or doc is None or doc.uri != uri:
            return
        if self.syntax_tree_visible:
            await self.refresh_syntax_tree()

    async def on_selection_changed(self, uri: str, selection: lsp.Range) -> SyntaxElement | None:
        provider = self.syntax_tree_provider
        doc = self.active_move_document
        if not self.syntax_tree_visible or provider is None or doc is None or doc.uri != uri:
            return None
        element = provider.element_by_range(selection)
        if element is not None:
            self.host.reveal_syntax_element(element)
        return element

    async def on_syntax_tree_visibility_changed(self, visible: bool) -> None:
        self.syntax_tree_visible = visible
        if visible:
            self._prepare_syntax_tree_view()
            await self.refresh_syntax_tree()
