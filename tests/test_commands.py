"""Tests for movelc.commands — live/not-live gating and the command bodies."""
from __future__ import annotations

import asyncio
import json

import pytest

from movelc import lsp_ext
from movelc.commands import CommandFactory, CommandRegistry, create_commands
from movelc.controller import ControllerState
from movelc.host import TRACE_OUTPUT, Document


def _run_command(host, name, *args):
    return host.commands[f'move-on-aptos.{name}'](*args)


class TestRegistry:
    def test_all_commands_registered_once(self, host, make_controller):
        async def scenario():
            make_controller()

        asyncio.run(scenario())
        assert set(host.commands) == {f'move-on-aptos.{n}' for n in create_commands()}

    def test_not_live_uses_uniform_warning(self, host, make_controller):
        async def scenario():
            make_controller()
            await _run_command(host, 'analyzerStatus')

        asyncio.run(scenario())
        assert host.warnings() == [
            'command move-on-aptos.analyzerStatus failed: aptos-language-server is not running']

    def test_rebind_swaps_table(self, host):
        calls = []
        factories = {
            'ping': CommandFactory(enabled=lambda ctl: lambda: calls.append(('live', ctl)),
                                   disabled=lambda ctl: lambda: calls.append(('idle', ctl))),
        }
        registry = CommandRegistry(host, factories, prefix='test')

        async def scenario():
            registry.rebind('ctl-a', live=False)
            await registry.invoke('ping')
            registry.rebind('ctl-b', live=True)
            await host.commands['test.ping']()

        asyncio.run(scenario())
        assert calls == [('idle', 'ctl-a'), ('live', 'ctl-b')]
        assert registry.live

    def test_unknown_command(self, host):
        registry = CommandRegistry(host, {})
        with pytest.raises(KeyError):
            asyncio.run(registry.invoke('nope'))

    def test_dispose(self, host):
        registry = CommandRegistry(host, create_commands())
        registry.dispose()
        assert host.commands == {}


class TestLifecycleCommands:
    def test_start_server_while_stopped(self, host, make_controller):
        async def scenario():
            ctl = make_controller()
            await _run_command(host, 'startServer')
            assert ctl.is_running
            await ctl.dispose()

        asyncio.run(scenario())
        assert host.warnings() == []

    def test_restart_while_stopped_starts(self, host, connections, make_controller):
        async def scenario():
            ctl = make_controller()
            await _run_command(host, 'restartServer')
            assert ctl.is_running
            await ctl.dispose()

        asyncio.run(scenario())
        assert len(connections.created) == 1

    def test_stop_server(self, host, make_controller):
        async def scenario():
            ctl = make_controller()
            await ctl.start()
            await _run_command(host, 'stopServer')
            assert ctl.state is ControllerState.STOPPED
            # Now gated again.
            await _run_command(host, 'serverVersion')

        asyncio.run(scenario())
        assert host.warnings() == [
            'command move-on-aptos.serverVersion failed: aptos-language-server is not running']
        assert host.status_line.startswith('$(stop-circle)')

    def test_stop_server_while_stopped_is_silent(self, host, make_controller):
        async def scenario():
            make_controller()
            await _run_command(host, 'stopServer')

        asyncio.run(scenario())
        assert host.messages == []


class TestLiveCommands:
    def test_server_version(self, host, make_controller):
        async def scenario():
            ctl = make_controller()
            await ctl.start()
            await asyncio.sleep(0)
            message = await _run_command(host, 'serverVersion')
            await ctl.dispose()
            return message

        message = asyncio.run(scenario())
        assert message == 'aptos-language-server version: 1.2.3 [/usr/bin/aptos-language-server]'

    def test_analyzer_status(self, host, connections, make_controller):
        connections.responses[lsp_ext.ANALYZER_STATUS] = 'workspaces: 1'
        host.active = Document('file:///tmp/a.move')

        async def scenario():
            ctl = make_controller()
            await ctl.start()
            await _run_command(host, 'analyzerStatus')
            assert connections.last.requests[-1] == (
                lsp_ext.ANALYZER_STATUS, {'textDocument': {'uri': 'file:///tmp/a.move'}})
            await ctl.dispose()

        asyncio.run(scenario())
        assert host.documents_shown == [('aptos-lsp-status://status', 'workspaces: 1')]

    def test_open_logs(self, host, make_controller):
        async def scenario():
            ctl = make_controller()
            await ctl.start()
            await _run_command(host, 'openLogs')
            await ctl.dispose()

        asyncio.run(scenario())
        assert host.outputs == ['Move-on-Aptos Language Server']

    def test_toggle_lsp_logs(self, host, connections, make_controller):
        async def scenario():
            ctl = make_controller()
            await ctl.start()
            assert await _run_command(host, 'toggleLSPLogs') == 'verbose'
            assert host.settings.get('trace.server') == 'verbose'
            assert connections.last.config_changes[-1] == {'trace': {'server': 'verbose'}}
            assert await _run_command(host, 'toggleLSPLogs') is None
            assert host.settings.get('trace.server') is None
            await ctl.dispose()

        asyncio.run(scenario())
        assert host.outputs == [TRACE_OUTPUT]

    def test_organize_imports(self, host, connections, make_controller):
        host.active = Document('file:///tmp/a.move')
        connections.responses[lsp_ext.ORGANIZE_IMPORTS] = [
            {'range': {'start': {'line': 0, 'character': 0}, 'end': {'line': 2, 'character': 0}},
             'newText': 'use std::signer;\n'},
        ]

        async def scenario():
            ctl = make_controller()
            await ctl.start()
            await _run_command(host, 'organizeImports')
            await ctl.dispose()

        asyncio.run(scenario())
        (uri, edits), = host.edits
        assert uri == 'file:///tmp/a.move'
        assert edits[0].new_text == 'use std::signer;\n'

    def test_organize_imports_without_edits(self, host, connections, make_controller):
        host.active = Document('file:///tmp/a.move')
        connections.responses[lsp_ext.ORGANIZE_IMPORTS] = None

        async def scenario():
            ctl = make_controller()
            await ctl.start()
            await _run_command(host, 'organizeImports')
            await ctl.dispose()

        asyncio.run(scenario())
        assert host.edits == []

    def test_organize_imports_needs_move_document(self, host, connections, make_controller):
        host.active = Document('file:///tmp/notes.txt', 'plaintext')

        async def scenario():
            ctl = make_controller()
            await ctl.start()
            assert await _run_command(host, 'organizeImports') is None
            assert connections.last.requests == []
            await ctl.dispose()

        asyncio.run(scenario())

    def test_syntax_tree_whitespace_toggle(self, host, connections, make_controller):
        host.active = Document('file:///tmp/a.move')
        connections.responses[lsp_ext.VIEW_SYNTAX_TREE] = json.dumps(
            {'type': 'Token', 'kind': 'IDENT', 'start': [0, 0, 0], 'end': [1, 0, 1]})

        async def scenario():
            ctl = make_controller()
            await ctl.start()
            await ctl.on_syntax_tree_visibility_changed(True)
            assert await _run_command(host, 'syntaxTreeHideWhitespace') is True
            assert host.context['aptosSyntaxTree.hideWhitespace'] is True
            assert await _run_command(host, 'syntaxTreeShowWhitespace') is False
            await ctl.dispose()

        asyncio.run(scenario())

    def test_resolve_code_action(self, host, connections, make_controller):
        connections.responses['codeAction/resolve'] = {'title': 'Import', 'edit': {'changes': {}}}

        async def scenario():
            ctl = make_controller()
            await ctl.start()
            result = await _run_command(host, 'resolveCodeAction', {'title': 'Import'})
            await ctl.dispose()
            return result

        assert asyncio.run(scenario())['edit'] == {'changes': {}}
        assert connections.last.requests[-1] == ('codeAction/resolve', {'title': 'Import'})
