"""Exceptions raised by the batch scan coordinator."""


class ScanErrorBase(RuntimeError):
    """Base class for scan errors."""


class SourceUnavailableError(ScanErrorBase):
    """The item source could not answer a count, page or write."""


class StateConflictError(ScanErrorBase):
    """The scan state changed between read and write."""

    def __init__(self, key: str, expected_version: int):
        super().__init__(f"State '{key}' is no longer at version {expected_version}")
        self.key = key
        self.expected_version = expected_version
