from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .schemas import DownloadReport


class DeploymentDownloaderError(Exception):
    """Base class for every error raised by the downloader."""


class ApiError(DeploymentDownloaderError):
    def __init__(
        self,
        message: str,
        status: int | None = None,
        *,
        retryable: bool = False,
    ) -> None:
        super().__init__(message)
        self.status = status
        self.retryable = retryable


class DownloadError(DeploymentDownloaderError):
    """A single failed request for one file's bytes.

    ``retryable`` tells the retry policy whether another attempt may help.
    """

    retryable = True

    def __init__(self, message: str, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


class AuthenticationFailure(DownloadError):
    retryable = False

    def __init__(
        self,
        message: str = 'Authentication failed',
        status: int | None = 401,
    ) -> None:
        super().__init__(message, status)


class RateLimited(DownloadError):
    pass


class ResourceExhausted(DownloadError):
    pass


class TransientServerError(DownloadError):
    pass


class TerminalDownloadFailure(DeploymentDownloaderError):
    def __init__(self, relative_path: str, attempts: int, message: str) -> None:
        super().__init__(message)
        self.relative_path = relative_path
        self.attempts = attempts
        self.message = message


class DownloadCancelled(DeploymentDownloaderError):
    pass


class IncompleteDownload(DeploymentDownloaderError):
    def __init__(self, report: DownloadReport) -> None:
        failed = ', '.join(item.relative_path for item in report.failed)
        super().__init__(f'{len(report.failed)} file(s) failed to download: {failed}')
        self.report = report
