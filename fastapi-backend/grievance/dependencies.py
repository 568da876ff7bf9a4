"""Common FastAPI dependencies.

External collaborators (mail, WhatsApp, classifier, evidence storage) are
bundled into one `Services` object that route handlers receive through
`Depends(get_services)`. Tests swap it out with
``app.dependency_overrides[get_services]``.
"""

from dataclasses import dataclass
from functools import lru_cache

from .classifier import PriorityClassifier
from .config import get_settings
from .email_service import EmailDispatcher
from .storage import EvidenceStorage
from .whatsapp_notifier import WhatsAppNotifier


@dataclass
class Services:
    mailer: EmailDispatcher
    messenger: WhatsAppNotifier
    classifier: PriorityClassifier
    storage: EvidenceStorage


@lru_cache()
def build_services() -> Services:
    settings = get_settings()
    return Services(
        mailer=EmailDispatcher(settings),
        messenger=WhatsAppNotifier(settings),
        classifier=PriorityClassifier(settings),
        storage=EvidenceStorage(settings),
    )


def get_services() -> Services:
    return build_services()


__all__ = ["Services", "build_services", "get_services"]
