from __future__ import annotations

from typing import Any


class Sub0Error(Exception):
    """Base error. ``stage`` names the protocol step that failed, when known."""

    kind = "error"

    def __init__(self, message: str, *, stage: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.stage = stage

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"type": self.__class__.__name__, "kind": self.kind, "error": self.message}
        if self.stage:
            payload["stage"] = self.stage
        return payload


class ConfigError(Sub0Error):
    kind = "config"


class ValidationError(Sub0Error):
    kind = "validation"


class InvalidParameter(ValidationError):
    pass


class IndexOutOfRange(ValidationError):
    pass


class StateConflict(Sub0Error):
    kind = "state_conflict"


class MarketNotFound(StateConflict):
    pass


class NonceAlreadyUsed(StateConflict):
    pass


class InsufficientVaultBalance(StateConflict):
    pass


class CryptoError(Sub0Error):
    kind = "crypto"


class InvalidSignature(CryptoError):
    pass


class MissingSecret(CryptoError):
    def __init__(self, secret_id: str, message: str | None = None, *, stage: str | None = None) -> None:
        super().__init__(message or f"secret not configured ({secret_id})", stage=stage)
        self.secret_id = secret_id


class SubmissionError(Sub0Error):
    def __init__(
        self,
        message: str,
        *,
        label: str,
        receiver: str,
        tx_status: str,
        receiver_status: str,
        tx_hash: str = "",
        stage: str | None = None,
    ) -> None:
        super().__init__(message, stage=stage)
        self.label = label
        self.receiver = receiver
        self.tx_status = tx_status
        self.receiver_status = receiver_status
        self.tx_hash = tx_hash

    def to_payload(self) -> dict[str, Any]:
        payload = super().to_payload()
        payload.update(
            {
                "label": self.label,
                "receiver": self.receiver,
                "txStatus": self.tx_status,
                "receiverStatus": self.receiver_status,
            }
        )
        if self.tx_hash:
            payload["txHash"] = self.tx_hash
        return payload


class TransportFailure(SubmissionError):
    """The report transaction itself did not succeed (gas, nonce, RPC)."""

    kind = "transport_failure"


class ReceiverRevert(SubmissionError):
    """The transaction landed but the receiving contract reverted."""

    kind = "receiver_revert"
