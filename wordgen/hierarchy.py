"""Section hierarchy reconstruction.

Rebuilds a rooted forest from the flat section list of a request, where each
section may name its parent by id.  Nodes live in an arena indexed by input
position; parent links are resolved through an id -> position map.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Optional, Sequence

from wordgen.models import Section

logger = logging.getLogger(__name__)


@dataclass
class SectionNode:
    """A section together with its child sections, in input order."""
    section: Section
    position: int
    children: list[SectionNode] = field(default_factory=list)

    def walk(self):
        """Yield this node and its descendants, parent before children."""
        yield self
        for child in self.children:
            yield from child.walk()


def _index_by_id(sections: Sequence[Section]) -> dict[str, int]:
    index: dict[str, int] = {}
    for position, section in enumerate(sections):
        if section.section_id in index:
            logger.warning(
                "Duplicate section id %r at position %d; parent references "
                "resolve to the first occurrence",
                section.section_id,
                position,
            )
            continue
        index[section.section_id] = position
    return index


def _resolve_parents(sections: Sequence[Section], index: dict[str, int]) -> list[Optional[int]]:
    parents: list[Optional[int]] = []
    for section in sections:
        parent_id = section.parent_section_id
        if not parent_id:
            parents.append(None)
        elif parent_id in index:
            parents.append(index[parent_id])
        else:
            logger.warning(
                "Parent section with ID %s not found; section %s promoted to root",
                parent_id,
                section.section_id,
            )
            parents.append(None)
    return parents


def _break_cycles(sections: Sequence[Section], parents: list[Optional[int]]) -> None:
    """Cut every parent-reference cycle in place.

    The cycle member that comes first in the input loses its parent and
    becomes a root.
    """
    unvisited, in_progress, done = 0, 1, 2
    state = [unvisited] * len(parents)

    for start in range(len(parents)):
        path: list[int] = []
        current = start
        while current is not None and state[current] == unvisited:
            state[current] = in_progress
            path.append(current)
            current = parents[current]

        if current is not None and state[current] == in_progress:
            cycle = path[path.index(current):]
            breaker = min(cycle)
            logger.warning(
                "Section parent cycle detected (%s); section %s promoted to root",
                " -> ".join(sections[i].section_id for i in cycle),
                sections[breaker].section_id,
            )
            parents[breaker] = None

        for position in path:
            state[position] = done


def build_hierarchy(sections: Sequence[Section]) -> list[SectionNode]:
    """Return the root nodes of *sections*, in first-seen order.

    Every input section appears exactly once in the result: sections with
    an unknown parent, and one member of each parent cycle, become roots.
    """
    nodes = [SectionNode(section=s, position=i) for i, s in enumerate(sections)]
    parents = _resolve_parents(sections, _index_by_id(sections))
    _break_cycles(sections, parents)

    roots: list[SectionNode] = []
    for node, parent in zip(nodes, parents):
        if parent is None:
            roots.append(node)
        else:
            nodes[parent].children.append(node)

    logger.debug("Built hierarchy: %d section(s), %d root(s)", len(nodes), len(roots))
    return roots
