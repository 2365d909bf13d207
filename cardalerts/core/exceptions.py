class PipelineError(Exception):
    """Base class for email pipeline failures."""


class FatalPipelineError(PipelineError):
    """Aborts the whole run; reported as a single top-level error."""


class ConfigurationError(FatalPipelineError):
    """Raised when required configuration is missing."""


class MailboxConnectionError(FatalPipelineError):
    """Raised when the IMAP connection, login or mailbox selection fails."""


class MailboxFetchError(PipelineError):
    """Raised when a single message cannot be fetched or parsed."""

    def __init__(self, uid: int, message: str):
        super().__init__(f"UID {uid}: {message}")
        self.uid = uid
