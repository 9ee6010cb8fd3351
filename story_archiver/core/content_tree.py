"""
Traversal and diff helpers for a story's content forest.

All walks use an explicit stack so very deep or wide tables of contents do
not hit the interpreter's recursion limit.
"""
from typing import Iterable, Iterator, List, Optional, Sequence, Set, Tuple, Union

from .models import Chapter, Content, Section

IdKey = Tuple[Tuple[int, Union[int, str]], ...]


def iter_content(forest: Sequence[Content]) -> Iterator[Tuple[Content, Optional[Section]]]:
    """Yields every node with its parent section, depth-first in document order."""
    stack: List[Tuple[Content, Optional[Section]]] = [(node, None) for node in reversed(forest)]
    while stack:
        node, parent = stack.pop()
        yield node, parent
        if isinstance(node, Section):
            stack.extend((child, node) for child in reversed(node.chapters))


def iter_chapters(forest: Sequence[Content]) -> Iterator[Chapter]:
    for node, _ in iter_content(forest):
        if isinstance(node, Chapter):
            yield node


def flatten_ids(forest: Sequence[Content]) -> Set[str]:
    return {node.id for node, _ in iter_content(forest)}


def find_by_id(forest: Sequence[Content], content_id: str) -> Optional[Tuple[Content, Optional[Section]]]:
    """Returns the first node with `content_id` and its immediate parent section, if any."""
    for node, parent in iter_content(forest):
        if node.id == content_id:
            return node, parent
    return None


def new_content_ids(fresh: Sequence[Content], existing: Sequence[Content]) -> Set[str]:
    """Ids present in the freshly fetched forest but not in the stored one."""
    return flatten_ids(fresh) - flatten_ids(existing)


def new_content_roots(fresh: Sequence[Content], new_ids: Set[str]) -> List[Tuple[Content, Optional[Section]]]:
    """
    The topmost new nodes of `fresh`, in document order, with their parents.

    A new node whose parent is also new is left out: saving the parent
    saves its whole subtree.
    """
    roots = []
    for node, parent in iter_content(fresh):
        if node.id in new_ids and (parent is None or parent.id not in new_ids):
            roots.append((node, parent))
    return roots


def id_sort_key(content_id: str) -> IdKey:
    """
    Ordering key for content ids.

    Ids are ':'-separated; numeric segments compare as numbers so "x:2"
    sorts before "x:10", other segments compare as text.
    """
    key = []
    for segment in content_id.split(":"):
        if segment.isdigit():
            key.append((0, int(segment)))
        else:
            key.append((1, segment))
    return tuple(key)


def sort_content(nodes: Iterable[Content]) -> List[Content]:
    return sorted(nodes, key=lambda node: id_sort_key(node.id))


def count_chapters(nodes: Iterable[Content]) -> int:
    return sum(1 for _ in iter_chapters(list(nodes)))


def prune_dehydrated(forest: Sequence[Content]) -> List[Content]:
    """
    Copy of the forest without dehydrated chapters.

    Sections left without children are dropped as well. Used when partial
    hydration is allowed, so that only fetched chapters get written.
    """
    pruned: List[Content] = []
    # (node, output list of the parent, finished?) - post-order with an explicit stack
    stack: List[Tuple[Content, List[Content], Optional[List[Content]]]] = [
        (node, pruned, None) for node in reversed(forest)
    ]
    while stack:
        node, out, children = stack.pop()
        if isinstance(node, Chapter):
            if node.text.is_hydrated:
                out.append(node)
            continue
        if children is None:
            children = []
            stack.append((node, out, children))
            stack.extend((child, children, None) for child in reversed(node.chapters))
        elif children:
            out.append(Section(
                id=node.id,
                name=node.name,
                chapters=children,
                description=node.description,
                url=node.url,
                author=node.author,
            ))
    return pruned
