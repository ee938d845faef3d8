"""Zero dependency routing tree with path param support.

Inspired by go 1.22+ net/http's routingNode. Segments may be static ("user"),
a named parameter ("{id}" or ":id"), or a trailing catch-all ("{path...}" or
"*", whose param is named "*").
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from enum import Enum
from functools import lru_cache
from typing import Never

from .errors import DuplicateRouteError, RouteConflictError


class LeafKey(Enum):
    """HTTP methods a route can be registered for.

    Methods from the following RFCs are all observed:

        * RFC 9110: HTTP Semantics, obsoletes 7231, which obsoleted 2616
        * RFC 5789: PATCH Method for HTTP
    """

    CONNECT = "CONNECT"  # Establish a connection to the server.
    DELETE = "DELETE"  # Remove the target.
    GET = "GET"  # Retrieve the target.
    HEAD = "HEAD"  # Same as GET, but only retrieve status line and header section.
    OPTIONS = "OPTIONS"  # Describe the communication options for the target.
    PATCH = "PATCH"  # Apply partial modifications to a target.
    POST = "POST"  # Perform target-specific processing with the request payload.
    PUT = "PUT"  # Replace the target with the request payload.
    TRACE = "TRACE"  # Perform a message loop-back test along the path to the target.

    def __repr__(self) -> str:
        return str(self.value)


_LEAF_KEYS = {key.value: key for key in LeafKey}


class FrozenDict[K, V](dict[K, V]):
    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self._hash: int | None = None

    def __hash__(self) -> int:
        if self._hash is None:
            self._hash = hash(frozenset(self.items()))
        return self._hash

    def _immutable(self, *args, **kwargs) -> Never:
        msg = "FrozenDict is immutable"
        raise TypeError(msg)

    __setitem__ = __delitem__ = clear = pop = popitem = setdefault = update = _immutable


type Constraints = FrozenDict[str, str]


@dataclass(slots=True, frozen=True)
class Node[T]:
    """Segment-based trie node.

    Leaf nodes (children keyed by LeafKey) carry the handler for unconstrained
    requests, handlers per constraint set, and the pattern they were
    registered under.
    """

    handler: T | None = field(default=None)
    constrained: FrozenDict[Constraints, T] = field(default_factory=FrozenDict)
    pattern: str | None = field(default=None)
    children: FrozenDict[str | LeafKey, Node[T]] = field(default_factory=FrozenDict)
    wildcard: WildCardNode[T] | None = field(default=None)
    catchall: CatchAllNode[T] | None = field(default=None)


@dataclass(slots=True, frozen=True)
class WildCardNode[T]:
    name: str
    child: Node[T]


@dataclass(slots=True, frozen=True)
class CatchAllNode[T]:
    name: str
    child: Node[T]


@dataclass(slots=True, frozen=True)
class RouteMatch[T]:
    handler: T
    params: dict[str, str]
    route: str


@dataclass(slots=True, frozen=True)
class RouteRecord[T]:
    method: str
    path: str
    handler: T
    constraints: Constraints


@lru_cache(maxsize=1024)
def find_leaf[T](
    path: str,
    method: LeafKey,
    tree: Node[T],
    *,
    case_sensitive: bool = True,
) -> tuple[Node[T] | None, tuple[tuple[str, str], ...]]:
    """Traverses the tree to find the leaf for method at path.

    Each path segment priority is: exact match > wildcard match > catchall match.
    Returns (leaf, params); leaf is None when nothing is registered for the
    path or for the method at that path. Params are returned as pairs so cached
    results cannot be mutated by callers.
    """
    segments = path[1:].split("/")  # assumes leading "/"

    current = tree
    params: list[tuple[str, str]] = []
    for i, seg in enumerate(segments):
        child = current.children.get(seg if case_sensitive else seg.lower())
        if child is not None:  # exact match
            current = child
            continue
        if current.wildcard is not None:  # fallback to wildcard match
            params.append((current.wildcard.name, seg))
            current = current.wildcard.child
            continue
        if current.catchall is not None:  # fallback to catchall match
            params.append((current.catchall.name, "/".join(segments[i:])))
            current = current.catchall.child
            break
        return None, ()

    leaf = current.children.get(method)
    if leaf is None:
        return None, ()
    return leaf, tuple(params)


def select_handler[T](leaf: Node[T], constraints: Mapping[str, str] | None) -> T | None:
    """Pick the first constrained handler whose constraints are all satisfied,
    falling back to the unconstrained handler."""
    if constraints:
        for required, handler in leaf.constrained.items():
            if all(constraints.get(k) == v for k, v in required.items()):
                return handler
    return leaf.handler


def add_route[T](
    tree: Node[T],
    method: LeafKey,
    path: str,
    handler: T,
    constraints: Mapping[str, str] | None = None,
    *,
    case_sensitive: bool = True,
) -> Node[T]:
    """add route to tree for handler on method/path, optionally constrained"""
    new_tree = _construct_route_tree(
        method, path, handler, constraints, case_sensitive=case_sensitive
    )
    try:
        return _merge_trees(tree, new_tree)
    except DuplicateRouteError as e:
        msg = f"Method '{method.value}' already declared for route '{path}'"
        if constraints:
            msg += f" with constraints {dict(constraints)!r}"
        raise DuplicateRouteError(msg) from e


def _construct_route_tree[T](
    method: LeafKey,
    path: str,
    handler: T,
    constraints: Mapping[str, str] | None = None,
    *,
    case_sensitive: bool = True,
) -> Node[T]:
    """construct tree for handler on method/path"""
    if constraints:
        leaf: Node[T] = Node(
            constrained=FrozenDict({FrozenDict(constraints): handler}), pattern=path
        )
    else:
        leaf = Node(handler=handler, pattern=path)
    child: Node[T] = Node(children=FrozenDict({method: leaf}))
    return _construct_sub_tree(path, child, case_sensitive=case_sensitive)


def _construct_sub_tree[T](
    path: str, child: Node[T], *, case_sensitive: bool = True
) -> Node[T]:
    """construct sub tree for existing node on path"""
    if not path.startswith("/"):
        msg = f"path must start with '/', provided {path=}"
        raise ValueError(msg)
    segments = path[1:].split("/")
    if any(_is_catchall(seg) for seg in segments[:-1]):
        msg = f"catch-all segment must be last, provided {path=}"
        raise ValueError(msg)

    for seg in reversed(segments):
        if _is_catchall(seg):
            name = "*" if seg == "*" else seg[1:-4]
            child = Node(catchall=CatchAllNode(name=name, child=child))
        elif seg.startswith("{") and seg.endswith("}"):
            child = Node(wildcard=WildCardNode(name=seg[1:-1], child=child))
        elif seg.startswith(":") and len(seg) > 1:
            child = Node(wildcard=WildCardNode(name=seg[1:], child=child))
        else:
            key = seg if case_sensitive else seg.lower()
            child = Node(children=FrozenDict({key: child}))

    return child


def _is_catchall(seg: str) -> bool:
    return seg == "*" or (seg.startswith("{") and seg.endswith("...}"))


def _merge_trees[T](tree1: Node[T], tree2: Node[T]) -> Node[T]:
    """merge tree1 and tree2, error on conflict"""
    if tree1.handler is not None and tree2.handler is not None:
        msg = "nodes have conflicting handlers"
        raise DuplicateRouteError(msg)
    handler = tree1.handler if tree1.handler is not None else tree2.handler

    if tree1.constrained.keys() & tree2.constrained.keys():
        msg = "nodes have conflicting constrained handlers"
        raise DuplicateRouteError(msg)
    constrained: FrozenDict[Constraints, T] = FrozenDict(
        tree1.constrained | tree2.constrained
    )

    if tree1.wildcard is not None and tree2.wildcard is not None:
        if tree1.wildcard.name != tree2.wildcard.name:
            msg = (
                "nodes have conflicting wildcards: "
                f"{tree1.wildcard.name!r} and {tree2.wildcard.name!r}"
            )
            raise RouteConflictError(msg)
        wildcard: WildCardNode[T] | None = WildCardNode(
            name=tree1.wildcard.name,
            child=_merge_trees(tree1.wildcard.child, tree2.wildcard.child),
        )
    else:
        wildcard = tree1.wildcard or tree2.wildcard

    if tree1.catchall is not None and tree2.catchall is not None:
        if tree1.catchall.name != tree2.catchall.name:
            msg = (
                "nodes have conflicting catchalls: "
                f"{tree1.catchall.name!r} and {tree2.catchall.name!r}"
            )
            raise RouteConflictError(msg)
        catchall: CatchAllNode[T] | None = CatchAllNode(
            name=tree1.catchall.name,
            child=_merge_trees(tree1.catchall.child, tree2.catchall.child),
        )
    else:
        catchall = tree1.catchall or tree2.catchall

    tree1_keys = set(tree1.children.keys())
    tree2_keys = set(tree2.children.keys())
    unique_tree1_keys = tree1_keys.difference(tree2_keys)
    unique_tree2_keys = tree2_keys.difference(tree1_keys)
    common_keys = tree1_keys.intersection(tree2_keys)
    children: FrozenDict[str | LeafKey, Node[T]] = FrozenDict(
        {k: tree1.children[k] for k in unique_tree1_keys}
        | {k: tree2.children[k] for k in unique_tree2_keys}
        | {k: _merge_trees(tree1.children[k], tree2.children[k]) for k in common_keys}
    )

    return Node(
        handler=handler,
        constrained=constrained,
        pattern=tree1.pattern or tree2.pattern,
        children=children,
        wildcard=wildcard,
        catchall=catchall,
    )


class RouteTable[T]:
    """Method + path (+ constraints) lookup over an immutable routing tree.

    Each registration swaps in a new tree, so a tree being read is never
    modified.
    """

    __slots__ = (
        "_has_constraints",
        "_routes",
        "_tree",
        "case_sensitive",
        "ignore_trailing_slash",
    )

    def __init__(
        self, *, case_sensitive: bool = True, ignore_trailing_slash: bool = False
    ) -> None:
        self._tree: Node[T] = Node()
        self._routes: list[RouteRecord[T]] = []
        self._has_constraints = False
        self.case_sensitive = case_sensitive
        self.ignore_trailing_slash = ignore_trailing_slash

    @property
    def has_constraints(self) -> bool:
        return self._has_constraints

    @property
    def routes(self) -> tuple[RouteRecord[T], ...]:
        return tuple(self._routes)

    def on(
        self,
        method: str | Iterable[str],
        path: str,
        handler: T,
        constraints: Mapping[str, str] | None = None,
    ) -> None:
        """Register handler for one method, or for several at once.

        Registration is all or nothing: if any method conflicts with an existing
        route, none of them are added.
        """
        methods = (method,) if isinstance(method, str) else tuple(method)
        keys: list[LeafKey] = []
        for m in methods:
            key = _LEAF_KEYS.get(m.upper())
            if key is None:
                msg = f"unsupported HTTP method {m!r}"
                raise ValueError(msg)
            keys.append(key)
        tree = self._tree
        for key in keys:
            tree = add_route(
                tree,
                key,
                self._normalize(path),
                handler,
                constraints,
                case_sensitive=self.case_sensitive,
            )
        self._tree = tree
        frozen = FrozenDict(constraints or {})
        self._routes.extend(RouteRecord(k.value, path, handler, frozen) for k in keys)
        if constraints:
            self._has_constraints = True

    def find(
        self,
        method: str,
        path: str,
        constraints: Mapping[str, str] | None = None,
    ) -> RouteMatch[T] | None:
        key = _LEAF_KEYS.get(method)
        if key is None or not path.startswith("/"):
            return None
        leaf, params = find_leaf(
            self._normalize(path), key, self._tree, case_sensitive=self.case_sensitive
        )
        if leaf is None:
            return None
        handler = select_handler(leaf, constraints)
        if handler is None:
            return None
        return RouteMatch(
            handler=handler, params=dict(params), route=leaf.pattern or path
        )

    def pretty_print(self) -> str:
        """Column-aligned flat route list:

        GET    /greetings/:name   greet
        POST   /user              auth > create_user   {'host': 'api.example.com'}
        """
        rows = [
            (
                r.method,
                r.path,
                _describe(r.handler),
                repr(dict(r.constraints)) if r.constraints else "",
            )
            for r in self._routes
        ]
        rows.sort(key=lambda r: (r[1], r[0]))
        if not rows:
            return ""
        method_w = max(len(r[0]) for r in rows)
        path_w = max(len(r[1]) for r in rows)
        handler_w = max(len(r[2]) for r in rows)
        lines: list[str] = []
        for method, path, handler, constraints in rows:
            line = f"{method:<{method_w}}   {path:<{path_w}}   {handler:<{handler_w}}"
            if constraints:
                line += f"   {constraints}"
            lines.append(line.rstrip())
        return "\n".join(lines)

    def _normalize(self, path: str) -> str:
        if self.ignore_trailing_slash and len(path) > 1 and path.endswith("/"):
            return path[:-1]
        return path


def _qualname(obj: object) -> str:
    """Extract __qualname__ from a callable, falling back to the type name."""
    if hasattr(obj, "__qualname__"):
        return str(obj.__qualname__)
    return type(obj).__qualname__


def _describe(handler: object) -> str:
    if isinstance(handler, tuple):
        return " > ".join(_qualname(h) for h in handler)
    return _qualname(handler)
