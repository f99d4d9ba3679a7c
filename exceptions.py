"""Update checker exception classes."""


class UpdaterError(Exception):
    """Base class for all update checker exceptions."""


# Content validation errors: never retried, the offending URL gets excluded
class ContentValidationError(UpdaterError):
    """Downloaded content cannot be trusted."""


class DownloadValidationError(ContentValidationError):
    """A downloaded file does not match what the catalog announced."""

    def __init__(self, url: str, message: str) -> None:
        super().__init__(message)
        self.url = url


class SizeMismatchError(DownloadValidationError):
    def __init__(self, url: str, expected: int, actual: int) -> None:
        super().__init__(
            url,
            f"The announced file size ({expected}) does not match what we got "
            f"({actual}) for file {url}",
        )
        self.expected = expected
        self.actual = actual


class HashMismatchError(DownloadValidationError):
    def __init__(self, url: str, actual: str) -> None:
        super().__init__(url, f"xxHash checksum failure on file {url}!")
        self.actual = actual


class ArchiveError(ContentValidationError):
    """An archive cannot be opened or does not look like a ZIP file."""


class BadZipSignatureError(ArchiveError):
    """The file does not start with a ZIP local file header."""


class ManifestError(ContentValidationError, ValueError):
    """The mod manifest is missing mandatory fields or is not a list of mods."""


# Configuration errors
class MirrorNotConfiguredError(UpdaterError, RuntimeError):
    """A mirror operation was requested without mirror credentials."""
