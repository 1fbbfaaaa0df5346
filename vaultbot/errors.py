class VaultBotError(Exception):
    """Base class for everything the bot raises on purpose."""


class TransportError(VaultBotError):
    """Feed disconnected or could not be reached."""


class AuthorizationError(VaultBotError):
    """The API token was rejected. Trading stays blocked until re-authorized."""


class ValidationError(VaultBotError):
    """Malformed or unexpected message / record."""


class RiskGuardRejection(VaultBotError):
    """A trade or start request refused by a bankroll rule."""

    def __init__(self, reason: str, message: str):
        super().__init__(message)
        self.reason = reason


class PersistenceError(VaultBotError):
    """The journal could not read or write."""
