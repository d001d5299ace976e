"""Failure types raised at the engine's I/O seams.

Each one is caught where the turn can degrade gracefully; only
SignatureInvalid is allowed to reject a request outright.
"""


class EnclaveError(Exception):
    """Base class for engine failures."""


class SignatureInvalid(EnclaveError):
    """Inbound webhook signature did not match the payload."""


class SessionLoadFailure(EnclaveError):
    """Session store unreachable or returned an unreadable blob."""


class StateConflict(EnclaveError):
    """Compare-and-swap upsert lost against a concurrent turn."""


class RetrievalLayerFailure(EnclaveError):
    def __init__(self, layer: str, cause: Exception):
        super().__init__(f"{layer} retrieval failed: {cause}")
        self.layer = layer
        self.cause = cause


class LanguageModelTimeout(EnclaveError):
    """Language-model call exceeded its hard timeout."""


class DeliveryFailure(EnclaveError):
    def __init__(self, recipient: str, reason: str):
        super().__init__(f"delivery to {recipient} failed: {reason}")
        self.recipient = recipient
        self.reason = reason
