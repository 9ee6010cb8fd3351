from .database import Database
from .tree_builder import SectionRecord, build_content_tree

__all__ = ["Database", "SectionRecord", "build_content_tree"]
