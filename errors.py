"""
Named failure conditions of the donation ledger.

Each condition is its own exception class so callers can branch on the kind
of failure. The HTTP layer maps them to responses via ``status_code``.
"""


class LedgerError(Exception):
    status_code = 400

    def __init__(self, detail: str = ""):
        self.detail = detail or self.__class__.__doc__ or self.code
        super().__init__(self.detail)

    @property
    def code(self) -> str:
        return self.__class__.__name__


class InvalidAmount(LedgerError):
    """Amount must be a positive integer"""


class InvalidAddress(LedgerError):
    """Identity or required field is empty"""


class InvalidMetadata(LedgerError):
    """Metadata pointer is not a string"""


class CharityNotRegistered(LedgerError):
    """Charity is not registered"""
    status_code = 404


class CharityNotVerified(LedgerError):
    """Charity is not verified"""
    status_code = 409


class CharityAlreadyRegistered(LedgerError):
    """Charity is already registered"""
    status_code = 409


class AlreadyVerified(LedgerError):
    """Charity is already verified"""
    status_code = 409


class TokenNotSupported(LedgerError):
    """Token is not accepted for donations"""


class TokenNotTransferable(LedgerError):
    """Reputation credentials cannot be transferred"""
    status_code = 403


class TokenAlreadyMinted(LedgerError):
    """Donor already holds a reputation credential"""
    status_code = 409


class CredentialNotFound(LedgerError):
    """No reputation credential exists"""
    status_code = 404


class TransferFailed(LedgerError):
    """Value transfer failed"""
    status_code = 402


class Unauthorized(LedgerError):
    """Caller is not allowed to perform this action"""
    status_code = 403


class ReentrantCall(LedgerError):
    """Reentrant call into a guarded operation"""
    status_code = 423
