from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple

from story_archiver.core.content_tree import sort_content
from story_archiver.core.exceptions import InternalError
from story_archiver.core.models import Author, Chapter, Content, Section
from story_archiver.utils.logger import get_logger

logger = get_logger(__name__)


@dataclass
class SectionRecord:
    """A section row as stored, before its children are attached."""
    id: str
    name: str
    parent_id: Optional[str] = None
    description: Optional[str] = None
    url: Optional[str] = None
    author: Optional[Author] = None


def _section_depths(sections: Dict[str, SectionRecord]) -> Dict[str, int]:
    depths: Dict[str, int] = {}
    for section_id in sections:
        path: List[str] = []
        current: Optional[str] = section_id
        while current is not None and current not in depths:
            if current in path:
                raise InternalError(f"Section {current} is its own ancestor.")
            record = sections.get(current)
            if record is None:
                raise InternalError(f"Section {path[-1]} has parent_id {current} that does not match any section.")
            path.append(current)
            current = record.parent_id
        base = depths[current] + 1 if current is not None else 0
        for offset, node_id in enumerate(reversed(path)):
            depths[node_id] = base + offset
    return depths


def build_content_tree(
    section_rows: Sequence[SectionRecord],
    chapter_rows: Sequence[Tuple[Optional[str], Chapter]],
) -> List[Content]:
    """
    Rebuilds a story's content forest from flat rows.

    `chapter_rows` pairs each chapter with its section_id (None at the root).
    Sections are attached deepest-first so each one is complete before it is
    placed in its parent. Every level comes back sorted by content id.
    """
    sections = {record.id: record for record in section_rows}
    children: Dict[str, List[Content]] = {section_id: [] for section_id in sections}
    roots: List[Content] = []

    for section_id, chapter in chapter_rows:
        if section_id is None:
            roots.append(chapter)
        elif section_id in children:
            children[section_id].append(chapter)
        else:
            raise InternalError(f"Chapter {chapter.id} has section_id {section_id} that does not match any section.")

    depths = _section_depths(sections)
    for record in sorted(sections.values(), key=lambda r: depths[r.id], reverse=True):
        kids = children[record.id]
        if not kids:
            logger.warning(f"Skipping section {record.id}: it has no chapters.")
            continue
        section = Section(
            id=record.id,
            name=record.name,
            chapters=sort_content(kids),
            description=record.description,
            url=record.url,
            author=record.author,
        )
        if record.parent_id is None:
            roots.append(section)
        else:
            children[record.parent_id].append(section)

    return sort_content(roots)
