"""Protocol extensions spoken by aptos-language-server (mirrors the server's ``lsp/ext.rs``)."""
from __future__ import annotations

from lsprotocol import types as lsp
from lsprotocol.converters import get_converter

SERVER_STATUS = 'experimental/serverStatus'
OPEN_SERVER_LOGS = 'aptos-language-server/openServerLogs'
MOVEFMT_VERSION_ERROR = 'aptos-language-server/movefmtVersionError'

VIEW_SYNTAX_TREE = 'aptos-language-server/viewSyntaxTree'
ANALYZER_STATUS = 'aptos-language-server/analyzerStatus'
ORGANIZE_IMPORTS = 'experimental/organizeImports'

# Required by the server; anything newer than 1.2.1 works.
MOVEFMT_REQUIRED_VERSION = '1.2.4'

_converter = get_converter()


def text_document(uri: str) -> dict:
    return {'uri': uri}


def view_syntax_tree_params(uri: str) -> dict:
    return {'textDocument': text_document(uri)}


def analyzer_status_params(uri: str | None = None) -> dict:
    if uri is None:
        return {}
    return {'textDocument': text_document(uri)}


def organize_imports_params(uri: str) -> dict:
    return {'textDocument': text_document(uri)}


def to_plain(value):
    """Convert pygls attribute objects (namedtuple-like) back into plain data."""
    if hasattr(value, '_asdict'):
        value = value._asdict()
    if isinstance(value, dict):
        return {k: to_plain(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_plain(v) for v in value]
    return value


def text_edits(result) -> list[lsp.TextEdit] | None:
    """Structure an ``organizeImports`` result into lsprotocol ``TextEdit`` objects."""
    if result is None:
        return None
    if isinstance(result, list) and all(isinstance(e, lsp.TextEdit) for e in result):
        return result
    return _converter.structure(to_plain(result), list[lsp.TextEdit])


def get_param(params, name: str, default=None):
    """Read *name* from a mapping or from an attribute object (pygls params)."""
    if isinstance(params, dict):
        return params.get(name, default)
    return getattr(params, name, default)
