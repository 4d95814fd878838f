"""
Syntax tree view model.

The server answers ``aptos-language-server/viewSyntaxTree`` with a JSON
string of nested elements::

    {"type": "Node", "kind": "SOURCE_FILE", "start": [0, 0, 0],
     "end": [44, 0, 44], "children": [...]}

where ``start``/``end`` are ``[offset, line, column]`` triples.  The whole
tree is rebuilt on every refresh; nothing is patched incrementally.

Parent links are integer indices into the tree's element arena rather than
object references, so the tree holds no reference cycles.
"""
from __future__ import annotations

import json
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field

from lsprotocol import types as lsp

logger = logging.getLogger(__name__)

WHITESPACE = 'WHITESPACE'


@dataclass(eq=False)
class SyntaxToken:
    kind: str
    range: lsp.Range
    offsets: tuple[int, int]
    parent: int | None = None    # index into SyntaxTree.elements
    index: int = -1

    type = 'Token'


@dataclass(eq=False)
class SyntaxNode:
    kind: str
    range: lsp.Range
    offsets: tuple[int, int]
    children: list = field(default_factory=list)
    parent: int | None = None
    index: int = -1

    type = 'Node'


SyntaxElement = SyntaxNode | SyntaxToken


def is_element(value) -> bool:
    return isinstance(value, (SyntaxNode, SyntaxToken))


# ---------------------------------------------------------------------------
# Range helpers
# ---------------------------------------------------------------------------

def _key(pos: lsp.Position) -> tuple[int, int]:
    return pos.line, pos.character


def range_contains(outer: lsp.Range, inner: lsp.Range) -> bool:
    """True if *inner* lies within *outer* (both ends inclusive)."""
    return _key(outer.start) <= _key(inner.start) and _key(inner.end) <= _key(outer.end)


def range_is_empty(r: lsp.Range) -> bool:
    return _key(r.start) == _key(r.end)


def range_equals(a: lsp.Range, b: lsp.Range) -> bool:
    return _key(a.start) == _key(b.start) and _key(a.end) == _key(b.end)


def make_range(start_line: int, start_char: int, end_line: int, end_char: int) -> lsp.Range:
    return lsp.Range(
        start=lsp.Position(line=start_line, character=start_char),
        end=lsp.Position(line=end_line, character=end_char),
    )


# ---------------------------------------------------------------------------
# Reconstruction
# ---------------------------------------------------------------------------

def _triple(value) -> tuple[int, int, int] | None:
    if not isinstance(value, (list, tuple)) or len(value) != 3:
        return None
    if not all(isinstance(v, int) and not isinstance(v, bool) for v in value):
        return None
    return value[0], value[1], value[2]


def _object_hook(value: dict):
    """Turn a raw ``{"type": "Node"|"Token", ...}`` object into an element.

    Anything else is passed through untouched.
    """
    kind_of = value.get('type')
    if kind_of not in ('Node', 'Token'):
        return value
    start = _triple(value.get('start'))
    end = _triple(value.get('end'))
    if start is None or end is None:
        return value
    start_offset, start_line, start_col = start
    end_offset, end_line, end_col = end
    rng = make_range(start_line, start_col, end_line, end_col)
    offsets = (start_offset, end_offset)
    kind = str(value.get('kind', ''))
    if kind_of == 'Node':
        children = value.get('children')
        return SyntaxNode(
            kind=kind,
            range=rng,
            offsets=offsets,
            children=list(children) if isinstance(children, list) else [],
        )
    return SyntaxToken(kind=kind, range=rng, offsets=offsets)


@dataclass
class SyntaxTree:
    """An immutable snapshot of one document's syntax tree."""
    root: SyntaxElement
    elements: list[SyntaxElement]

    def parent(self, element: SyntaxElement) -> SyntaxElement | None:
        if element.parent is None:
            return None
        return self.elements[element.parent]


def parse_syntax_tree(text: str) -> SyntaxTree | None:
    """Reconstruct a :class:`SyntaxTree` from the server's JSON payload.

    Returns *None* when the top-level value is not a syntax element.
    """
    root = json.loads(text, object_hook=_object_hook)
    if not is_element(root):
        logger.debug('parse_syntax_tree: top-level value is not an element: %r', type(root))
        return None

    elements: list[SyntaxElement] = []
    stack: list[tuple[SyntaxElement, int | None]] = [(root, None)]
    while stack:
        element, parent = stack.pop()
        element.index = len(elements)
        element.parent = parent
        elements.append(element)
        if isinstance(element, SyntaxNode):
            for child in reversed(element.children):
                if is_element(child):
                    stack.append((child, element.index))
    return SyntaxTree(root=root, elements=elements)


# ---------------------------------------------------------------------------
# Provider
# ---------------------------------------------------------------------------

FetchTree = Callable[[str], Awaitable[str]]


class SyntaxTreeProvider:
    """Holds the current tree snapshot and answers tree-view queries.

    *fetch* is a coroutine function taking a document URI and returning the
    serialized tree (normally a ``viewSyntaxTree`` request).
    """

    def __init__(self, fetch: FetchTree):
        self._fetch = fetch
        self.tree: SyntaxTree | None = None
        self.hide_whitespace = False
        self._listeners: list[Callable[[], None]] = []

    @property
    def root(self) -> SyntaxElement | None:
        return self.tree.root if self.tree is not None else None

    def on_did_change(self, listener: Callable[[], None]) -> Callable[[], None]:
        """Register *listener*; returns a callable that unregisters it."""
        self._listeners.append(listener)

        def dispose() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)
        return dispose

    def _fire(self) -> None:
        for listener in list(self._listeners):
            listener()

    def children(self, element: SyntaxElement | None = None) -> list[SyntaxElement]:
        if element is None:
            return [self.tree.root] if self.tree is not None else []
        if isinstance(element, SyntaxToken):
            return []
        children = [c for c in element.children if is_element(c)]
        if self.hide_whitespace:
            return [c for c in children if c.kind != WHITESPACE]
        return children

    def parent(self, element: SyntaxElement) -> SyntaxElement | None:
        if self.tree is None:
            return None
        return self.tree.parent(element)

    async def refresh(self, document_uri: str | None) -> None:
        if document_uri is None:
            self.tree = None
        else:
            text = await self._fetch(document_uri)
            self.tree = parse_syntax_tree(text) if text else None
        self._fire()

    def toggle_whitespace(self) -> bool:
        self.hide_whitespace = not self.hide_whitespace
        self._fire()
        return self.hide_whitespace

    def element_by_range(self, target: lsp.Range) -> SyntaxElement | None:
        """Return the deepest element covering *target*.

        An empty (cursor) target sitting exactly on a child's end boundary
        prefers the following sibling, so a cursor placed right after a
        token selects what comes next.
        """
        if self.tree is None:
            return None
        result = self.tree.root
        if range_equals(result.range, target):
            return result

        children = self.children(result)
        while True:
            for child in children:
                if not range_contains(child.range, target):
                    continue
                result = child
                if range_is_empty(target) and _key(target.start) == _key(child.range.end):
                    continue
                if isinstance(child, SyntaxToken) or range_equals(child.range, target):
                    return result
                children = self.children(child)
                break
            else:
                return result
