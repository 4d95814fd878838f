"""Shared fakes: a recording host and an in-memory server connection."""
from __future__ import annotations

import asyncio
import inspect
from dataclasses import dataclass, field

import pytest

from movelc.connection import SERVER_EXITED
from movelc.controller import LifecycleController
from movelc.host import HeadlessHost


@dataclass
class RecordingHost(HeadlessHost):
    messages: list = field(default_factory=list)
    outputs: list = field(default_factory=list)
    documents_shown: list = field(default_factory=list)
    terminal: list = field(default_factory=list)
    edits: list = field(default_factory=list)
    revealed: list = field(default_factory=list)
    statuses: list = field(default_factory=list)
    answer: str | None = None

    def show_error_message(self, message, *actions):
        self.messages.append(('error', message, actions))
        return self.answer if self.answer in actions else None

    def show_warning_message(self, message, *actions):
        self.messages.append(('warning', message, actions))
        return None

    def show_information_message(self, message, *actions):
        self.messages.append(('info', message, actions))
        return None

    def show_output(self, channel):
        self.outputs.append(channel)

    def show_text_document(self, title, text):
        self.documents_shown.append((title, text))

    def render_status(self, presentation):
        super().render_status(presentation)
        self.statuses.append(presentation)

    def reveal_syntax_element(self, element):
        self.revealed.append(element)

    def run_in_terminal(self, name, command):
        self.terminal.append((name, command))

    def apply_text_edits(self, uri, edits):
        self.edits.append((uri, edits))

    def errors(self):
        return [m for kind, m, _ in self.messages if kind == 'error']

    def warnings(self):
        return [m for kind, m, _ in self.messages if kind == 'warning']


class FakeConnection:
    def __init__(self, factory, server_path, *, env=None, cwd=None):
        self.factory = factory
        self.server_path = server_path
        self.env = env
        self.cwd = cwd
        self.channels = {}
        self.configuration_provider = None
        self.start_kwargs = None
        self.requests = []
        self.config_changes = []
        self.opened = []
        self.stop_timeout = None
        self.disposed = False
        self._running = False

    def subscribe(self, method, channel):
        self.channels[method] = channel

    def set_configuration_provider(self, provider):
        self.configuration_provider = provider

    def push(self, method, params=None):
        self.channels[method].put_nowait((self, method, params))

    def crash(self, returncode=101):
        self._running = False
        channel = next(iter(self.channels.values()))
        channel.put_nowait((self, SERVER_EXITED, returncode))

    def is_running(self):
        return self._running

    async def start(self, **kwargs):
        self.start_kwargs = kwargs
        if self.factory.fail_start is not None:
            raise self.factory.fail_start
        self._running = True

    async def send_request(self, method, params=None):
        self.requests.append((method, params))
        response = self.factory.responses.get(method)
        result = response(params) if callable(response) else response
        if inspect.isawaitable(result):
            result = await result
        return result

    def notify(self, method, params=None):
        self.requests.append((method, params))

    def did_change_configuration(self, settings):
        self.config_changes.append(settings)

    def open_document(self, uri, text, language_id='move', version=1):
        self.opened.append((uri, text))

    async def stop(self, timeout):
        self.stop_timeout = timeout
        self._running = False
        if self.factory.hang_shutdown:
            await asyncio.wait_for(asyncio.Event().wait(), timeout)

    async def dispose(self):
        self.disposed = True
        self._running = False


class FakeConnectionFactory:
    def __init__(self):
        self.created: list[FakeConnection] = []
        self.fail_start: Exception | None = None
        self.hang_shutdown = False
        self.responses = {}

    def __call__(self, server_path, **kwargs):
        connection = FakeConnection(self, server_path, **kwargs)
        self.created.append(connection)
        return connection

    @property
    def last(self) -> FakeConnection:
        return self.created[-1]


@pytest.fixture
def host(tmp_path):
    return RecordingHost(folders=[str(tmp_path)])


@pytest.fixture
def connections():
    return FakeConnectionFactory()


@pytest.fixture
def make_controller(host, connections):
    """Build a controller wired to the fakes.  Call it inside the event loop."""
    def make(*, server='/usr/bin/aptos-language-server', version='1.2.3', **kwargs):
        async def fake_bootstrap(config):
            if isinstance(server, Exception):
                raise server
            return server

        async def fake_probe(path):
            if isinstance(version, Exception):
                raise version
            return version

        kwargs.setdefault('bootstrapper', fake_bootstrap)
        kwargs.setdefault('connection_factory', connections)
        kwargs.setdefault('version_probe', fake_probe)
        return LifecycleController(host, **kwargs)
    return make
