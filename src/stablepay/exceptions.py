class StablePayError(Exception):
    """Base class."""


# --- client errors: bad input, never retried ---
class ClientError(StablePayError):
    pass


class UnsupportedNetworkError(ClientError):
    pass


class UnsupportedTokenError(ClientError):
    pass


class InvalidAmountError(ClientError):
    pass


class PaymentNotFoundError(ClientError):
    pass


# --- conflicts: record is in the wrong state, nothing mutated ---
class ConflictError(StablePayError):
    pass


class PaymentAlreadyProcessedError(ConflictError):
    pass


class PaymentNotVerifiedError(ConflictError):
    pass


class TransactionAlreadyUsedError(ConflictError):
    pass


# --- verification failures: transaction exists (or not) but does not pay this invoice ---
class VerificationError(StablePayError):
    pass


class TransactionNotFoundError(VerificationError):
    pass


class TransactionRevertedError(VerificationError):
    pass


class InvalidTransactionError(VerificationError):
    pass


# --- chain/RPC problems, surfaced as verification failures ---
class TransientChainError(StablePayError):
    pass


class ChainRPCError(TransientChainError):
    pass


class DecodeError(TransientChainError):
    pass


class SignatureError(StablePayError):
    pass
