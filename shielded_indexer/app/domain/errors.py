from __future__ import annotations


class IndexerError(Exception):
    """Base class for all shielded pool indexer errors."""


class SignatureUnresolved(IndexerError):
    """
    A log's topic0 matched neither the registry nor any candidate signature.

    Recoverable: the log is quarantined and ingestion continues.
    """

    def __init__(
        self,
        *,
        topic_hash: str,
        transaction_hash: str | None = None,
        log_index: int | None = None,
    ) -> None:
        self.topic_hash = topic_hash
        self.transaction_hash = transaction_hash
        self.log_index = log_index
        super().__init__(
            f"Unresolved event signature {topic_hash} "
            f"(tx={transaction_hash}, log_index={log_index})"
        )


class DecodeError(IndexerError):
    """
    A log could not be decoded against its resolved signature.

    Carries enough context (tx hash, log index, topic hash) to replay the
    failure offline. Recoverable per log: never fatal to the batch.
    """

    def __init__(
        self,
        message: str,
        *,
        transaction_hash: str | None = None,
        log_index: int | None = None,
        topic_hash: str | None = None,
    ) -> None:
        self.reason = message
        self.transaction_hash = transaction_hash
        self.log_index = log_index
        self.topic_hash = topic_hash
        super().__init__(
            f"{message} (tx={transaction_hash}, log_index={log_index}, topic0={topic_hash})"
        )


class StoreError(IndexerError):
    def __init__(self, message: str, *, fact: str | None = None) -> None:
        self.fact = fact
        super().__init__(message if fact is None else f"{message} [{fact}]")


class StoreTransientError(StoreError):
    """Connectivity loss or serialization conflict that outlived the retry budget."""


class StoreFatalError(StoreError):
    """
    Schema or constraint violation.

    Implies an upstream decoding/schema assumption is wrong, so ingestion for
    the affected block range halts instead of skipping.
    """


class ChainSourceError(IndexerError):
    """The chain log source failed after bounded retries."""
