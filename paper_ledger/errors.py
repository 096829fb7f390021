class LedgerError(Exception):
    """Base class for every typed failure raised by the ledger core."""

    status_code = 400

    def __init__(self, detail: str = ""):
        super().__init__(detail or self.kind)
        self.detail = detail or self.kind

    @property
    def kind(self) -> str:
        return type(self).__name__


class NotFound(LedgerError):
    status_code = 404


class Unauthorized(LedgerError):
    status_code = 403


class AlreadyVerified(LedgerError):
    status_code = 409


class AlreadyGranted(LedgerError):
    status_code = 409


class NotGranted(LedgerError):
    status_code = 409


class SelfCitation(LedgerError):
    pass


class InvalidAmount(LedgerError):
    pass


class InvalidRecipient(LedgerError):
    pass


class InvalidAddress(LedgerError):
    pass


class FeeTooHigh(LedgerError):
    pass


class ArityMismatch(LedgerError):
    pass


class NothingToWithdraw(LedgerError):
    pass


class NotOwner(LedgerError):
    status_code = 403


class AttestationCallFailed(LedgerError):
    status_code = 502


class TransferFailed(LedgerError):
    status_code = 502


class FeeTransferFailed(TransferFailed):
    pass


class PayoutFailed(TransferFailed):
    pass
