"""
Editor host surface.

The controller never talks to a UI toolkit directly; it calls the small set
of operations below.  :class:`Host` documents them and :class:`HeadlessHost`
implements them for command-line use by logging and printing.
"""
from __future__ import annotations

import logging
import shlex
import subprocess
import sys
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol

from lsprotocol import types as lsp

from movelc.config import Config, Settings, read_project_settings

logger = logging.getLogger(__name__)

SERVER_OUTPUT = 'Move-on-Aptos Language Server'
TRACE_OUTPUT = 'Move-on-Aptos LSP Trace'


@dataclass(frozen=True)
class Document:
    uri: str
    language_id: str = 'move'

    @property
    def is_move(self) -> bool:
        # Only real files; diff views and the like use other schemes.
        return self.language_id == 'move' and self.uri.startswith('file:')


class Host(Protocol):
    def show_error_message(self, message: str, *actions: str) -> str | None: ...

    def show_warning_message(self, message: str, *actions: str) -> str | None: ...

    def show_information_message(self, message: str, *actions: str) -> str | None: ...

    def show_output(self, channel: str) -> None: ...

    def show_text_document(self, title: str, text: str) -> None: ...

    def register_command(self, name: str, callback: Callable) -> Callable[[], None]: ...

    def set_context(self, key: str, value) -> None: ...

    def render_status(self, presentation) -> None: ...

    def reveal_syntax_element(self, element) -> None: ...

    def run_in_terminal(self, name: str, command: str) -> None: ...

    def apply_text_edits(self, uri: str, edits: list[lsp.TextEdit]) -> None: ...

    def workspace_folders(self) -> list[str]: ...

    def open_documents(self) -> list[Document]: ...

    def active_document(self) -> Document | None: ...

    def configuration(self) -> Config: ...


@dataclass
class HeadlessHost:
    """A host without a UI: messages go to the log, documents to stdout."""
    folders: list[str] = field(default_factory=list)
    documents: list[Document] = field(default_factory=list)
    active: Document | None = None
    settings: Settings | None = None
    commands: dict[str, Callable] = field(default_factory=dict)
    context: dict[str, object] = field(default_factory=dict)
    status_line: str = ''

    def __post_init__(self):
        if self.settings is None:
            self.settings = Settings()

    @classmethod
    def for_workspace(cls, root: str | None) -> HeadlessHost:
        folders = [str(Path(root).resolve())] if root else []
        return cls(folders=folders, settings=read_project_settings(folders[0] if folders else None))

    def show_error_message(self, message: str, *actions: str) -> str | None:
        logger.error('%s', message)
        return None

    def show_warning_message(self, message: str, *actions: str) -> str | None:
        logger.warning('%s', message)
        return None

    def show_information_message(self, message: str, *actions: str) -> str | None:
        logger.info('%s', message)
        return None

    def show_output(self, channel: str) -> None:
        logger.info('Output channel requested: %s', channel)

    def show_text_document(self, title: str, text: str) -> None:
        print(text)

    def register_command(self, name: str, callback: Callable) -> Callable[[], None]:
        self.commands[name] = callback

        def dispose() -> None:
            if self.commands.get(name) is callback:
                del self.commands[name]
        return dispose

    def set_context(self, key: str, value) -> None:
        self.context[key] = value

    def render_status(self, presentation) -> None:
        self.status_line = presentation.text
        logger.debug('status: %s', presentation.text)

    def reveal_syntax_element(self, element) -> None:
        print(f'{element.kind}@{element.offsets[0]}..{element.offsets[1]}')

    def run_in_terminal(self, name: str, command: str) -> None:
        logger.info('%s: running %s', name, command)
        try:
            subprocess.run(shlex.split(command), check=False, stdout=sys.stderr)
        except (OSError, ValueError) as e:
            logger.error('%s: cannot run %s: %s', name, command, e)

    def apply_text_edits(self, uri: str, edits: list[lsp.TextEdit]) -> None:
        for edit in edits:
            r = edit.range
            print(f'{uri}:{r.start.line}:{r.start.character}-{r.end.line}:{r.end.character} '
                  f'{edit.new_text!r}')

    def workspace_folders(self) -> list[str]:
        return list(self.folders)

    def open_documents(self) -> list[Document]:
        return list(self.documents)

    def active_document(self) -> Document | None:
        return self.active

    def configuration(self) -> Config:
        return Config(self.settings, workspace_folder=self.folders[0] if self.folders else None)
