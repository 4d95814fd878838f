"""
Variable substitution for client-side configuration.

``server.extraEnv`` values may reference other variables with ``${...}``
placeholders:

* ``${env:NAME}`` – another key of the same map, or the ambient process
  environment (empty string when unset).
* ``${name}`` – one of the built-in context variables (``workspaceFolder``,
  ``userHome``, ``cwd`` …).
* ``${prefix:body}`` with any other prefix is left as-is.

Resolution builds a small dependency graph and iterates to a fixpoint.
It never fails: placeholders that cannot be resolved, including cycles,
are left verbatim in the output.
"""
from __future__ import annotations

import os
import re
import sys
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path

# Non-greedy so that "${a}${b}" yields two references.
_VAR_RE = re.compile(r'\$\{(.+?)\}')
_PREFIXED_RE = re.compile(r'^(.*?):(.+)$')


@dataclass
class _EnvVariable:
    value: str
    deps: frozenset[str] = field(default_factory=frozenset)


def _workspace_folder(workspace_folder: str | None) -> str:
    return workspace_folder or ''


def compute_builtin_var(name: str, *, workspace_folder: str | None = None) -> str | None:
    """Return the value of built-in context variable *name*, or None if unknown."""
    if name == 'workspaceFolder':
        return _workspace_folder(workspace_folder)
    if name == 'workspaceFolderBasename':
        return Path(_workspace_folder(workspace_folder)).name
    if name == 'cwd':
        return os.getcwd()
    if name == 'userHome':
        return str(Path.home())
    if name == 'execPath':
        return os.environ.get('VSCODE_EXEC_PATH', sys.executable)
    if name == 'pathSeparator':
        return os.sep
    return None


def substitute_builtin_variables_in_string(value: str, *, workspace_folder: str | None = None) -> str:
    """Replace every known ``${name}`` built-in in *value*; unknown ones stay verbatim."""
    def _replace(m: re.Match) -> str:
        return compute_builtin_var(m.group(1), workspace_folder=workspace_folder) or m.group(0)
    return _VAR_RE.sub(_replace, value)


def prepare_config(value, *, workspace_folder: str | None = None):
    """Recursively substitute built-in variables in strings, lists and mappings."""
    if isinstance(value, str):
        return substitute_builtin_variables_in_string(value, workspace_folder=workspace_folder)
    if isinstance(value, (list, tuple)):
        return [prepare_config(v, workspace_folder=workspace_folder) for v in value]
    if isinstance(value, Mapping):
        return {k: prepare_config(v, workspace_folder=workspace_folder) for k, v in value.items()}
    return value


def _leaf_for(dep: str, environ: Mapping[str, str], workspace_folder: str | None) -> _EnvVariable:
    """Synthesize an already-resolved leaf for a reference that is not an input key."""
    m = _PREFIXED_RE.match(dep)
    if m:
        prefix, body = m.group(1), m.group(2)
        if prefix == 'env':
            return _EnvVariable(value=environ.get(body, ''))
        # Other prefixes are not supported; keep the placeholder text.
        return _EnvVariable(value='${' + dep + '}')
    builtin = compute_builtin_var(dep, workspace_folder=workspace_folder)
    return _EnvVariable(value=builtin or '${' + dep + '}')


def substitute_variables_in_env(
    env: Mapping[str, object],
    *,
    environ: Mapping[str, str] | None = None,
    workspace_folder: str | None = None,
) -> dict[str, str]:
    """Resolve ``${...}`` references in the values of *env*.

    Keys are tracked as ``env:KEY`` so that ``${env:KEY}`` refers to a sibling
    entry when one exists and falls back to *environ* (the process
    environment by default) otherwise.  Entries caught in a reference cycle
    keep their original template text.
    """
    if environ is None:
        environ = os.environ

    graph: dict[str, _EnvVariable] = {}
    for key, raw in env.items():
        value = raw if isinstance(raw, str) else str(raw)
        deps = frozenset(m.group(1) for m in _VAR_RE.finditer(value))
        graph[f'env:{key}'] = _EnvVariable(value=value, deps=deps)

    missing = {dep for item in graph.values() for dep in item.deps if dep not in graph}
    resolved: set[str] = set()
    for dep in missing:
        graph[dep] = _leaf_for(dep, environ, workspace_folder)
        resolved.add(dep)

    to_resolve = [key for key in graph if key not in resolved]
    while to_resolve:
        progressed = False
        for key in list(to_resolve):
            item = graph[key]
            if item.deps <= resolved:
                item.value = _VAR_RE.sub(lambda m: graph[m.group(1)].value, item.value)
                resolved.add(key)
                to_resolve.remove(key)
                progressed = True
        if not progressed:
            break

    return {key: graph[f'env:{key}'].value for key in env}
