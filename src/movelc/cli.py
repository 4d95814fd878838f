"""
movelc – Move-on-Aptos language client CLI entry point.

Usage
-----
    movelc version                      # locate the server and print its version
    movelc status                       # start, wait for it to settle, print status
    movelc syntax-tree sources/a.move   # print the syntax tree of a file
    movelc syntax-tree a.move --line 3 --character 8
"""
from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path


def _build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog='movelc',
        description='Headless client for aptos-language-server (Move on Aptos).',
    )
    p.add_argument(
        '--version',
        action='store_true',
        default=False,
        help='Print the movelc version and exit',
    )
    p.add_argument(
        '--server-path',
        metavar='PATH',
        default=None,
        help='Path to the aptos-language-server binary (overrides server.path)',
    )
    p.add_argument(
        '--workspace',
        metavar='DIR',
        default='.',
        help='Workspace folder to open (default: current directory)',
    )
    p.add_argument(
        '--log-level',
        metavar='LEVEL',
        default='WARNING',
        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'],
        help='Logging level written to stderr (default: WARNING)',
    )
    sub = p.add_subparsers(dest='command')
    sub.add_parser('version', help='Print the server version')
    status = sub.add_parser('status', help='Start the server and print its status')
    status.add_argument(
        '--timeout', type=float, default=60.0,
        help='Seconds to wait for the server to settle (default: 60)',
    )
    tree = sub.add_parser('syntax-tree', help='Print the syntax tree of a Move file')
    tree.add_argument('file', help='Move source file')
    tree.add_argument('--line', type=int, default=None, help='Zero-based line of the cursor')
    tree.add_argument('--character', type=int, default=None, help='Zero-based column of the cursor')
    tree.add_argument('--hide-whitespace', action='store_true', default=False,
                      help='Leave WHITESPACE tokens out of the output')
    return p


def _make_host(args):
    from movelc.host import HeadlessHost

    host = HeadlessHost.for_workspace(args.workspace)
    if args.server_path:
        host.settings.update('server.path', args.server_path)
    return host


async def _version(args) -> int:
    from movelc.bootstrap import BootstrapError, bootstrap, probe_server_version

    config = _make_host(args).configuration()
    try:
        path = await bootstrap(config)
        version = await probe_server_version(path)
    except (BootstrapError, OSError, RuntimeError) as e:
        print(f'error: {e}', file=sys.stderr)
        return 1
    print(f'aptos-language-server {version} [{path}]')
    return 0


async def _status(args) -> int:
    from movelc.controller import LifecycleController

    host = _make_host(args)
    controller = LifecycleController(host)
    try:
        if not await controller.start():
            return 1
        settled = await controller.wait_until_quiescent(args.timeout)
        if settled:
            await controller.commands.invoke('analyzerStatus')
        print(host.status_line)
        return 0 if settled else 1
    finally:
        await controller.dispose()


def _print_tree(provider, element, depth: int = 0) -> None:
    start, end = element.offsets
    print(f'{"  " * depth}{element.kind}@{start}..{end}')
    for child in provider.children(element):
        _print_tree(provider, child, depth + 1)


async def _syntax_tree(args) -> int:
    from movelc.controller import LifecycleController
    from movelc.host import Document
    from movelc.syntax_tree import make_range

    path = Path(args.file).resolve()
    try:
        text = path.read_text(encoding='utf-8')
    except OSError as e:
        print(f'error: {e}', file=sys.stderr)
        return 1

    host = _make_host(args)
    document = Document(path.as_uri())
    host.documents.append(document)
    host.active = document
    controller = LifecycleController(host)
    try:
        if not await controller.start():
            return 1
        controller.connection.open_document(document.uri, text)
        await controller.on_syntax_tree_visibility_changed(True)
        provider = controller.syntax_tree_provider
        if provider is None or provider.root is None:
            print('error: no syntax tree returned', file=sys.stderr)
            return 1
        provider.hide_whitespace = args.hide_whitespace
        if args.line is not None:
            cursor = make_range(args.line, args.character or 0, args.line, args.character or 0)
            if await controller.on_selection_changed(document.uri, cursor) is None:
                print('error: no element at that position', file=sys.stderr)
                return 1
        else:
            _print_tree(provider, provider.root)
        return 0
    finally:
        await controller.dispose()


def movelc() -> None:
    """Entry point for the ``movelc`` command."""
    import logging
    parser = _build_parser()
    args = parser.parse_args()
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format='%(levelname)s %(name)s: %(message)s',
        stream=sys.stderr,
    )

    from movelc import __version__

    if args.version:
        print(f'movelc {__version__}')
        sys.exit(0)

    handlers = {
        'version': _version,
        'status': _status,
        'syntax-tree': _syntax_tree,
    }
    if args.command is None:
        parser.print_help()
        sys.exit(2)
    sys.exit(asyncio.run(handlers[args.command](args)))


if __name__ == '__main__':
    movelc()
