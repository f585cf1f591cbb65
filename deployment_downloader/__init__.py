from .config import ClientConfig, DownloadConfig
from .downloader import AsyncDeploymentDownloader
from .exceptions import (
    ApiError,
    AuthenticationFailure,
    DeploymentDownloaderError,
    DownloadCancelled,
    IncompleteDownload,
    TerminalDownloadFailure,
)
from .schemas import DownloadReport, NodeKind, RemoteNode, parse_tree

__all__ = [
    'ApiError',
    'AsyncDeploymentDownloader',
    'AuthenticationFailure',
    'ClientConfig',
    'DeploymentDownloaderError',
    'DownloadCancelled',
    'DownloadConfig',
    'DownloadReport',
    'IncompleteDownload',
    'NodeKind',
    'RemoteNode',
    'TerminalDownloadFailure',
    'parse_tree',
]
