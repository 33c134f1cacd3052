"""
Email Import Pipeline

Imports provider (Gmail) messages into the compliance email store by moving
each message through transactional import stages backed by a staging table.
"""

__version__ = '0.1.0'

# Re-export key classes for convenience
from .manager import DefaultImportManager
from .models import (
    ImportResponse,
    ImportSourceMessage,
    ImportStage,
    ImportStatus,
)
from .stages import (
    StageProcessorContext,
    TransactionalStateManagerBase,
    calculate_next_stage,
    manager_map_factory,
)
from .headers import ParsedHeaderMap
from .repository import StagingRepository
from .logging import (
    configure_logging,
    get_logger,
    logging_context,
    StageTimer,
)
from .errors import (
    EmailImportError,
    ImportSourceError,
    ImportStageError,
    ImportRollbackError,
    StageNotProgressingError,
    TransientImportError,
    UnsupportedProviderError,
    PartialSuccessResult,
)

__all__ = [
    # Version
    '__version__',
    # Manager
    'DefaultImportManager',
    # Models
    'ImportResponse',
    'ImportSourceMessage',
    'ImportStage',
    'ImportStatus',
    # Stages
    'StageProcessorContext',
    'TransactionalStateManagerBase',
    'calculate_next_stage',
    'manager_map_factory',
    'ParsedHeaderMap',
    # Repository
    'StagingRepository',
    # Logging
    'configure_logging',
    'get_logger',
    'logging_context',
    'StageTimer',
    # Errors
    'EmailImportError',
    'ImportSourceError',
    'ImportStageError',
    'ImportRollbackError',
    'StageNotProgressingError',
    'TransientImportError',
    'UnsupportedProviderError',
    'PartialSuccessResult',
]
