"""
One live pairing of a spawned aptos-language-server process and its
protocol session.

The JSON-RPC transport and process spawning are delegated to pygls'
``LanguageClient``.  Server notifications are not handled here: each
subscribed method is forwarded as ``(connection, method, params)`` onto an
``asyncio.Queue`` owned by the controller, which drains it on its own loop.
"""
from __future__ import annotations

import asyncio
import logging
import os
from collections.abc import Callable
from pathlib import Path

from lsprotocol import types as lsp
from pygls.lsp.client import LanguageClient

from movelc import __version__
from movelc.bootstrap import SERVER_SUBCOMMAND

logger = logging.getLogger(__name__)
# Messages the server logs through window/logMessage ("server output").
server_log = logging.getLogger('movelc.server')

# Pseudo-method pushed onto the channel when the server process exits.
SERVER_EXITED = '$/movelc/serverExited'

Channel = asyncio.Queue
ConfigurationProvider = Callable[[list[str | None]], list]

_LOG_LEVELS = {
    lsp.MessageType.Error: logging.ERROR,
    lsp.MessageType.Warning: logging.WARNING,
    lsp.MessageType.Info: logging.INFO,
    lsp.MessageType.Log: logging.DEBUG,
}


class _AnalyzerClient(LanguageClient):
    """pygls client that reports an unexpected server exit to its connection."""

    def __init__(self, connection: ServerConnection, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self._connection = connection

    async def server_exit(self, server):
        self._connection._on_server_exit(getattr(server, 'returncode', None))


class ServerConnection:
    def __init__(
        self,
        server_path: str,
        *,
        env: dict[str, str] | None = None,
        cwd: str | None = None,
        name: str = 'movelc',
        version: str = __version__,
    ):
        self.server_path = server_path
        self.env = env
        self.cwd = cwd
        self._client: LanguageClient | None = _AnalyzerClient(self, name, version)
        self._running = False
        self._exit_channels: list[Channel] = []
        self._configuration_provider: ConfigurationProvider | None = None
        self.server_capabilities: lsp.ServerCapabilities | None = None
        self._register_builtin_features()

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    def _register_builtin_features(self) -> None:
        client = self._client

        @client.feature(lsp.WINDOW_LOG_MESSAGE)
        def on_log_message(params: lsp.LogMessageParams) -> None:
            server_log.log(_LOG_LEVELS.get(params.type, logging.INFO), '%s', params.message)

        @client.feature(lsp.WINDOW_SHOW_MESSAGE)
        def on_show_message(params: lsp.ShowMessageParams) -> None:
            server_log.log(_LOG_LEVELS.get(params.type, logging.INFO), '%s', params.message)

        @client.feature(lsp.WORKSPACE_CONFIGURATION)
        def on_configuration(params: lsp.ConfigurationParams) -> list:
            sections = [item.section for item in params.items]
            if self._configuration_provider is None:
                return [None for _ in sections]
            return self._configuration_provider(sections)

    def subscribe(self, method: str, channel: Channel) -> None:
        """Forward notifications for *method* onto *channel*."""
        if channel not in self._exit_channels:
            self._exit_channels.append(channel)

        @self._client.feature(method)
        def forward(params=None) -> None:
            channel.put_nowait((self, method, params))

    def set_configuration_provider(self, provider: ConfigurationProvider) -> None:
        self._configuration_provider = provider

    def _on_server_exit(self, returncode) -> None:
        was_running = self._running
        self._running = False
        if was_running:
            logger.warning('Server process %s exited with %s', self.server_path, returncode)
            for channel in self._exit_channels:
                channel.put_nowait((self, SERVER_EXITED, returncode))

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def is_running(self) -> bool:
        return self._running and self._client is not None

    async def start(
        self,
        *,
        root_uri: str | None = None,
        workspace_folders: list[str] | None = None,
        initialization_options: dict | None = None,
    ) -> lsp.InitializeResult:
        """Spawn ``<server> lsp-server`` and run the initialize handshake."""
        client = self._client
        if client is None:
            raise RuntimeError('connection has been disposed')
        logger.info('Spawning %s %s', self.server_path, SERVER_SUBCOMMAND)
        await client.start_io(self.server_path, SERVER_SUBCOMMAND, env=self.env, cwd=self.cwd)

        folders = [
            lsp.WorkspaceFolder(uri=Path(f).as_uri(), name=Path(f).name)
            for f in (workspace_folders or [])
        ]
        result = await client.initialize_async(
            lsp.InitializeParams(
                process_id=os.getpid(),
                client_info=lsp.ClientInfo(name='movelc', version=__version__),
                capabilities=lsp.ClientCapabilities(
                    workspace=lsp.WorkspaceClientCapabilities(
                        configuration=True,
                        workspace_folders=True,
                        apply_edit=True,
                    ),
                    text_document=lsp.TextDocumentClientCapabilities(
                        code_action=lsp.CodeActionClientCapabilities(
                            resolve_support=lsp.ClientCodeActionResolveOptions(
                                properties=['edit'],
                            ),
                        ),
                    ),
                    experimental={'serverStatusNotification': True},
                ),
                root_uri=root_uri,
                workspace_folders=folders or None,
                initialization_options=initialization_options,
            )
        )
        self.server_capabilities = getattr(result, 'capabilities', None)
        client.initialized(lsp.InitializedParams())
        self._running = True
        return result

    async def send_request(self, method: str, params=None):
        if self._client is None:
            raise RuntimeError('connection has been disposed')
        return await self._client.protocol.send_request_async(method, params)

    def notify(self, method: str, params=None) -> None:
        if self._client is None:
            return
        self._client.protocol.notify(method, params)

    def did_change_configuration(self, settings) -> None:
        if self._client is None:
            return
        self._client.workspace_did_change_configuration(
            lsp.DidChangeConfigurationParams(settings=settings)
        )

    def open_document(self, uri: str, text: str, language_id: str = 'move', version: int = 1) -> None:
        if self._client is None:
            return
        self._client.text_document_did_open(
            lsp.DidOpenTextDocumentParams(
                text_document=lsp.TextDocumentItem(
                    uri=uri, language_id=language_id, version=version, text=text,
                )
            )
        )

    async def stop(self, timeout: float) -> None:
        """Ask the server to shut down, waiting at most *timeout* seconds.

        Raises ``asyncio.TimeoutError`` (or the transport error) when the
        server does not acknowledge in time.
        """
        client = self._client
        self._running = False
        if client is None:
            return
        await asyncio.wait_for(client.shutdown_async(None), timeout)
        client.exit(None)

    async def dispose(self) -> None:
        """Release the protocol session and the process unconditionally."""
        client, self._client = self._client, None
        self._running = False
        self._exit_channels.clear()
        if client is None:
            return
        try:
            await client.stop()
        except Exception:
            logger.warning('dispose: error while stopping %s', self.server_path, exc_info=True)
