from processflow.models.block import Block, BlockType, DelayType, TERMINAL_TYPES
from processflow.models.path import Path
from processflow.models.path_parent_block import PathParentBlock
from processflow.models.workflow import Workflow

__all__ = [
    "Block",
    "BlockType",
    "DelayType",
    "Path",
    "PathParentBlock",
    "TERMINAL_TYPES",
    "Workflow",
]
