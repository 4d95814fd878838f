"""
User-invocable commands and their live/not-live gating.

Every command has an *enabled* binding, used while the server connection is
live, and an optional *disabled* binding.  The host sees one registration
per command name; invocations go through :meth:`CommandRegistry.invoke`,
which dispatches on a table that is rebuilt and swapped in with a single
assignment whenever the live/not-live boundary flips.  Closures over a
disposed connection are therefore never reachable.
"""
from __future__ import annotations

import functools
import inspect
import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from movelc import lsp_ext
from movelc.bootstrap import SERVER_NAME
from movelc.host import SERVER_OUTPUT, TRACE_OUTPUT
from movelc.status import COMMAND_PREFIX, StatusState

if TYPE_CHECKING:
    from movelc.controller import LifecycleController

logger = logging.getLogger(__name__)

Cmd = Callable[..., Any]

HIDE_WHITESPACE_CONTEXT = 'aptosSyntaxTree.hideWhitespace'


@dataclass(frozen=True)
class CommandFactory:
    enabled: Callable[[LifecycleController], Cmd]
    disabled: Callable[[LifecycleController], Cmd] | None = None


class CommandRegistry:
    def __init__(self, host, factories: dict[str, CommandFactory], *, prefix: str = COMMAND_PREFIX):
        self._host = host
        self._factories = dict(factories)
        self.prefix = prefix
        self.live = False
        self._table: dict[str, Cmd] = {}
        self._registrations = [
            host.register_command(self.full_name(name), functools.partial(self.invoke, name))
            for name in self._factories
        ]

    def full_name(self, name: str) -> str:
        return f'{self.prefix}.{name}'

    def _not_running(self, name: str) -> Cmd:
        full_name = self.full_name(name)

        def report(*_args) -> None:
            self._host.show_warning_message(
                f'command {full_name} failed: {SERVER_NAME} is not running'
            )
        return report

    def rebind(self, controller: LifecycleController, live: bool) -> None:
        """Rebuild the dispatch table for the given side of the live boundary."""
        table: dict[str, Cmd] = {}
        for name, factory in self._factories.items():
            if live:
                table[name] = factory.enabled(controller)
            elif factory.disabled is not None:
                table[name] = factory.disabled(controller)
            else:
                table[name] = self._not_running(name)
        self._table = table
        self.live = live
        logger.debug('rebind: %d commands, live=%s', len(table), live)

    async def invoke(self, name: str, *args):
        cmd = self._table.get(name)
        if cmd is None:
            raise KeyError(f'unknown command {self.full_name(name)}')
        result = cmd(*args)
        if inspect.isawaitable(result):
            result = await result
        return result

    def dispose(self) -> None:
        for dispose in self._registrations:
            dispose()
        self._registrations = []
        self._table = {}


# ---------------------------------------------------------------------------
# Command implementations
# ---------------------------------------------------------------------------

def start_server(ctl: LifecycleController) -> Cmd:
    async def run():
        await ctl.start()
    return run


def restart_server(ctl: LifecycleController) -> Cmd:
    async def run():
        await ctl.restart()
    return run


def stop_server(ctl: LifecycleController) -> Cmd:
    async def run():
        await ctl.stop()
        ctl.set_server_status(StatusState.stopped())
    return run


def do_nothing(ctl: LifecycleController) -> Cmd:
    async def run():
        return None
    return run


def analyzer_status(ctl: LifecycleController) -> Cmd:
    """Show the server's free-form status report for the active Move document."""
    async def run():
        doc = ctl.active_move_document
        text = await ctl.send_request(
            lsp_ext.ANALYZER_STATUS,
            lsp_ext.analyzer_status_params(doc.uri if doc is not None else None),
        )
        ctl.host.show_text_document('aptos-lsp-status://status', str(text or ''))
        return text
    return run


def server_version(ctl: LifecycleController) -> Cmd:
    async def run():
        if not ctl.server_path:
            ctl.host.show_warning_message(f'{SERVER_NAME} is not running')
            return None
        message = f'{SERVER_NAME} version: {ctl.server_version} [{ctl.server_path}]'
        ctl.host.show_information_message(message)
        return message
    return run


def open_logs(ctl: LifecycleController) -> Cmd:
    async def run():
        ctl.host.show_output(SERVER_OUTPUT)
    return run


def toggle_lsp_logs(ctl: LifecycleController) -> Cmd:
    """Flip ``trace.server`` between ``verbose`` and unset."""
    async def run():
        config = ctl.config
        target = None if config.trace_server == 'verbose' else 'verbose'
        config.settings.update('trace.server', target)
        if target and ctl.is_running:
            ctl.host.show_output(TRACE_OUTPUT)
        ctl.on_configuration_changed()
        return target
    return run


def syntax_tree_toggle_whitespace(ctl: LifecycleController) -> Cmd:
    async def run():
        provider = ctl.syntax_tree_provider
        if provider is None:
            return None
        hidden = provider.toggle_whitespace()
        ctl.host.set_context(HIDE_WHITESPACE_CONTEXT, hidden)
        return hidden
    return run


def organize_imports(ctl: LifecycleController) -> Cmd:
    async def run():
        doc = ctl.active_move_document
        if doc is None:
            return None
        result = await ctl.send_request(
            lsp_ext.ORGANIZE_IMPORTS, lsp_ext.organize_imports_params(doc.uri)
        )
        edits = lsp_ext.text_edits(result)
        if not edits:
            return None
        ctl.host.apply_text_edits(doc.uri, edits)
        return edits
    return run


def resolve_code_action(ctl: LifecycleController) -> Cmd:
    async def run(action):
        return await ctl.resolve_code_action(action)
    return run


def create_commands() -> dict[str, CommandFactory]:
    return {
        'restartServer': CommandFactory(enabled=restart_server, disabled=start_server),
        'startServer': CommandFactory(enabled=start_server, disabled=start_server),
        'stopServer': CommandFactory(enabled=stop_server, disabled=do_nothing),
        'analyzerStatus': CommandFactory(enabled=analyzer_status),
        'serverVersion': CommandFactory(enabled=server_version),
        'toggleLSPLogs': CommandFactory(enabled=toggle_lsp_logs),
        'openLogs': CommandFactory(enabled=open_logs),
        'syntaxTreeHideWhitespace': CommandFactory(enabled=syntax_tree_toggle_whitespace),
        'syntaxTreeShowWhitespace': CommandFactory(enabled=syntax_tree_toggle_whitespace),
        'organizeImports': CommandFactory(enabled=organize_imports),
        'resolveCodeAction': CommandFactory(enabled=resolve_code_action),
    }
