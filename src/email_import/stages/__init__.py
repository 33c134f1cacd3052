"""
Import stage managers.
"""

from .attachments import AttachmentStageManager
from .base import (
    NULL_ID,
    StageOptions,
    StageProcessorContext,
    TransactionalStateManagerBase,
    calculate_next_stage,
)
from .contacts import ContactStageManager
from .email import EmailStageManager
from .headers import HeaderStageManager
from .manager_map import StageManagerFactory, manager_map_factory
from .references import ReferenceStageManager
from .staging import StagingStageManager

__all__ = [
    'NULL_ID',
    'StageOptions',
    'StageProcessorContext',
    'TransactionalStateManagerBase',
    'calculate_next_stage',
    'AttachmentStageManager',
    'ContactStageManager',
    'EmailStageManager',
    'HeaderStageManager',
    'ReferenceStageManager',
    'StagingStageManager',
    'StageManagerFactory',
    'manager_map_factory',
]
