"""
Server health state and its status-bar presentation.

The server pushes ``experimental/serverStatus`` notifications; the
controller stores the latest one verbatim as a :class:`StatusState` and
recomputes a :class:`StatusPresentation` from it.  Rendering is a pure
function of its inputs.
"""
from __future__ import annotations

import enum
from dataclasses import dataclass

from movelc.lsp_ext import get_param

COMMAND_PREFIX = 'move-on-aptos'
STATUS_TEXT = 'move-on-aptos'


class Health(str, enum.Enum):
    STOPPED = 'stopped'
    STARTING = 'starting'
    OK = 'ok'
    WARNING = 'warning'
    ERROR = 'error'


@dataclass(frozen=True)
class StatusState:
    health: Health
    quiescent: bool = True
    message: str | None = None

    @classmethod
    def stopped(cls) -> StatusState:
        return cls(Health.STOPPED)

    @classmethod
    def starting(cls) -> StatusState:
        return cls(Health.STARTING, quiescent=False)

    @classmethod
    def error(cls, message: str) -> StatusState:
        return cls(Health.ERROR, message=message)

    @classmethod
    def from_params(cls, params) -> StatusState:
        """Build a state from a ``ServerStatusParams`` payload.

        Unknown health values are treated as errors.
        """
        raw = str(get_param(params, 'health', '') or '').lower()
        try:
            health = Health(raw)
        except ValueError:
            health = Health.ERROR
        if health in (Health.STOPPED, Health.STARTING):
            # Only the client produces these.
            health = Health.ERROR
        message = get_param(params, 'message')
        return cls(
            health=health,
            quiescent=bool(get_param(params, 'quiescent', True)),
            message=str(message) if message else None,
        )


@dataclass(frozen=True)
class StatusPresentation:
    text: str
    color: str | None
    background: str | None
    command: str
    tooltip: str


def _command(name: str) -> str:
    return f'{COMMAND_PREFIX}.{name}'


_WARNING_COLORS = ('statusBarItem.warningForeground', 'statusBarItem.warningBackground')
_ERROR_COLORS = ('statusBarItem.errorForeground', 'statusBarItem.errorBackground')


def render_status(
    state: StatusState,
    *,
    click_action: str = 'openLogs',
    extension_version: str = '<unknown>',
    server_version: str = '<not running>',
) -> StatusPresentation:
    """Compute the status-bar presentation for *state*."""
    if state.health is Health.STOPPED:
        tooltip = (
            'Server is stopped'
            f'\n\n[Start server](command:{_command("startServer")})'
        )
        if state.message:
            tooltip = f'{state.message}\n\n---\n\n{tooltip}'
        return StatusPresentation(
            text=f'$(stop-circle) {STATUS_TEXT}',
            color=_WARNING_COLORS[0],
            background=_WARNING_COLORS[1],
            command=_command('startServer'),
            tooltip=tooltip,
        )

    icon = ''
    color = background = None
    if state.health is Health.OK:
        command = _command('stopServer' if click_action == 'stopServer' else 'openLogs')
    elif state.health is Health.WARNING:
        color, background = _WARNING_COLORS
        command = _command('openLogs')
        icon = '$(warning) '
    elif state.health is Health.ERROR:
        color, background = _ERROR_COLORS
        command = _command('openLogs')
        icon = '$(error) '
    else:
        command = _command('openLogs')

    parts: list[str] = []
    if state.message:
        parts.append(state.message)
        parts.append('\n\n---\n\n')
    parts.append(
        f'[Extension Info](command:{_command("serverVersion")} "Show version and server binary info"): '
        f'Version {extension_version}, Server Version {server_version}\n\n'
        '---\n\n'
        f'[$(terminal) Open Logs](command:{_command("openLogs")} "Open the server logs")\n\n'
        f'[$(stop-circle) Stop server](command:{_command("stopServer")} "Stop the server")\n\n'
        f'[$(debug-restart) Restart server](command:{_command("restartServer")} "Restart the server")'
    )
    if not state.quiescent:
        icon = '$(loading~spin) '
    return StatusPresentation(
        text=f'{icon}{STATUS_TEXT}',
        color=color,
        background=background,
        command=command,
        tooltip=''.join(parts),
    )
