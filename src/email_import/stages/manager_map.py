"""
Stage manager lookup per mail provider.
"""

from collections.abc import Callable, Mapping

from ..errors import UnsupportedProviderError
from ..models.message import ImportStage
from .attachments import AttachmentStageManager
from .base import StageOptions, TransactionalStateManagerBase
from .contacts import ContactStageManager
from .email import EmailStageManager
from .headers import HeaderStageManager
from .references import ReferenceStageManager
from .staging import StagingStageManager

StageManagerFactory = Callable[[ImportStage, StageOptions], TransactionalStateManagerBase]

_GOOGLE: dict[ImportStage, StageManagerFactory] = {
    ImportStage.NEW: StagingStageManager,
    ImportStage.STAGED: EmailStageManager,
    ImportStage.HEADERS: HeaderStageManager,
    ImportStage.BODY: ReferenceStageManager,
    ImportStage.CONTACTS: ContactStageManager,
    ImportStage.ATTACHMENTS: AttachmentStageManager,
}

SUPPORTED_PROVIDERS: dict[str, Mapping[ImportStage, StageManagerFactory]] = {
    'google': _GOOGLE,
}


def manager_map_factory(provider: str) -> Mapping[ImportStage, StageManagerFactory]:
    """
    Stage → manager factory mapping for a provider.

    Raises:
        UnsupportedProviderError: No stage managers exist for the provider
    """
    managers = SUPPORTED_PROVIDERS.get(provider)
    if managers is None:
        raise UnsupportedProviderError(
            f"Unsupported provider: {provider}",
            context={'provider': provider},
        )
    return managers
