import os
from dataclasses import dataclass

import aiohttp

from .retry import RetryPolicy

API_URL = 'https://api.vercel.com'
DOWNLOAD_LIMIT = 2
MAX_ATTEMPTS = 5
RETRY_DELAY = 5.0


@dataclass(frozen=True)
class ClientConfig:
    """Everything a request to the deployments API needs.

    Passed explicitly to the fetcher and downloader; there is no shared
    module-level session.
    """

    api_url: str
    token: str
    team_id: str | None = None
    request_timeout: float = 180.0
    connect_timeout: float = 60.0

    @property
    def base_url(self) -> str:
        return self.api_url.rstrip('/')

    @property
    def headers(self) -> dict[str, str]:
        return {'Authorization': f'Bearer {self.token}'}

    @property
    def params(self) -> dict[str, str]:
        return {'teamId': self.team_id} if self.team_id else {}

    @property
    def timeout(self) -> aiohttp.ClientTimeout:
        return aiohttp.ClientTimeout(
            total=self.request_timeout,
            connect=self.connect_timeout,
        )

    @classmethod
    def from_env(cls) -> 'ClientConfig':
        token = os.getenv('VERCEL_TOKEN', '')
        if not token:
            raise ValueError('VERCEL_TOKEN is not set')
        return cls(
            api_url=os.getenv('VERCEL_API_URL', API_URL),
            token=token,
            team_id=os.getenv('VERCEL_TEAM_ID') or None,
        )


@dataclass(frozen=True)
class DownloadConfig:
    concurrency: int = DOWNLOAD_LIMIT
    max_attempts: int = MAX_ATTEMPTS
    base_delay: float = RETRY_DELAY
    backoff_factor: float = 2.0
    exhausted_backoff_factor: float = 4.0
    # A file that still fails after every attempt fails the whole run.
    fail_on_error: bool = False

    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_attempts=self.max_attempts,
            base_delay=self.base_delay,
            backoff_factor=self.backoff_factor,
            exhausted_backoff_factor=self.exhausted_backoff_factor,
        )

    @classmethod
    def from_env(cls, **overrides) -> 'DownloadConfig':
        values = {
            'concurrency': int(os.getenv('DOWNLOAD_LIMIT', DOWNLOAD_LIMIT)),
            'max_attempts': int(os.getenv('DOWNLOAD_MAX_ATTEMPTS', MAX_ATTEMPTS)),
            'base_delay': float(os.getenv('DOWNLOAD_RETRY_DELAY', RETRY_DELAY)),
        }
        values.update(
            (key, value) for key, value in overrides.items() if value is not None
        )
        return cls(**values)
