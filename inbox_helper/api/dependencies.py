"""FastAPI dependency providers.

Routes receive repositories, the classifier and the Gmail client factory
through these functions so tests can swap them via app.dependency_overrides.
"""

from __future__ import annotations

from collections.abc import Callable

from inbox_helper.classification.classifier import BucketClassifier, get_classifier
from inbox_helper.gmail.client import GmailAuthError, GmailClient, get_gmail_client
from inbox_helper.observability.telemetry import counter, log_event
from inbox_helper.storage.bucket_repository import BucketRepository
from inbox_helper.storage.classification_cache import ClassificationCacheRepository
from inbox_helper.storage.inbox_repository import InboxRepository
from inbox_helper.storage.models import GoogleOAuthToken
from inbox_helper.storage.token_repository import CredentialEncryptionError, TokenRepository
from inbox_helper.utils.redaction import redact

GmailClientFactory = Callable[[str, GoogleOAuthToken, TokenRepository], GmailClient]


def get_token_repository() -> TokenRepository:
    return TokenRepository()


def get_bucket_repository() -> BucketRepository:
    return BucketRepository()


def get_inbox_repository() -> InboxRepository:
    return InboxRepository()


def get_cache_repository() -> ClassificationCacheRepository:
    return ClassificationCacheRepository()


def get_bucket_classifier() -> BucketClassifier:
    return get_classifier()


def get_gmail_factory() -> GmailClientFactory:
    return get_gmail_client


def read_stored_token(tokens: TokenRepository, user_id: str) -> GoogleOAuthToken | None:
    """
    The user's stored Google token, or None when Google was never connected.

    Raises:
        GmailAuthError: If the stored token cannot be decrypted (e.g. the key changed)
    """
    try:
        return tokens.get_token(user_id)
    except CredentialEncryptionError as e:
        counter("tokens.decrypt_failed")
        log_event("tokens.decrypt_failed", user_id=redact(user_id))
        raise GmailAuthError("Stored Google token could not be decrypted") from e
