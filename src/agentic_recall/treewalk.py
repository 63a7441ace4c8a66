# treewalk.py
# Generic traversal over neutral request trees (dict / list / scalar).
#
# Request bodies come from an oracle and may nest any clause at any depth.
# Both embedding injection and field validation are expressed as walks over
# the same tree, so the traversal lives here once.

from collections.abc import Callable, Iterator
from typing import Any

Path = tuple[Any, ...]


def iter_nodes(tree: Any, path: Path = ()) -> Iterator[tuple[Path, Any]]:
    """
    Yield (path, node) for every node in `tree`, parents before children.

    Paths are tuples of dict keys and list indices from the root.
    """
    yield path, tree
    if isinstance(tree, dict):
        for key, value in tree.items():
            yield from iter_nodes(value, path + (key,))
    elif isinstance(tree, list):
        for index, value in enumerate(tree):
            yield from iter_nodes(value, path + (index,))


def find_keyed(tree: Any, key: str) -> Iterator[tuple[Path, dict]]:
    """Yield (path, parent) for every dict in `tree` that contains `key`."""
    for path, node in iter_nodes(tree):
        if isinstance(node, dict) and key in node:
            yield path, node


def transform(tree: Any, fn: Callable[[Path, Any], Any], path: Path = ()) -> Any:
    """
    Rebuild `tree` bottom-up, passing every node through `fn(path, node)`.

    Children are transformed before their parent sees them. The input is
    never mutated.
    """
    if isinstance(tree, dict):
        rebuilt: Any = {k: transform(v, fn, path + (k,)) for k, v in tree.items()}
    elif isinstance(tree, list):
        rebuilt = [transform(v, fn, path + (i,)) for i, v in enumerate(tree)]
    else:
        rebuilt = tree
    return fn(path, rebuilt)
