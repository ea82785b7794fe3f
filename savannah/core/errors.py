"""Exceptions raised by the relationship engine."""


class SavannahError(Exception):
    """Base class for every error raised by this package."""


class NoActiveSessionError(SavannahError, RuntimeError):
    """A per-session operation was called for a user with no open session."""

    def __init__(self, user_id: str):
        self.user_id = user_id
        super().__init__(f"No active session for user {user_id!r}. Call start_session() first.")


class SessionAlreadyActiveError(SavannahError, RuntimeError):
    def __init__(self, user_id: str):
        self.user_id = user_id
        super().__init__(f"Session already active for user {user_id!r}")


class PersistenceError(SavannahError):
    """Backend I/O failed. Raised by store backends, absorbed by MemoryStore."""


class ClassifierNotConfiguredError(SavannahError, RuntimeError):
    """process_utterance was called on an engine built without a classifier."""
