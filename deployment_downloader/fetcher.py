import asyncio
import binascii
import json
import logging
import os
import uuid
from base64 import b64decode
from contextlib import suppress

import aiofiles
import aiofiles.os
import aiohttp

from .config import ClientConfig
from .exceptions import (
    AuthenticationFailure,
    DownloadCancelled,
    DownloadError,
    RateLimited,
    ResourceExhausted,
    TransientServerError,
)
from .limiter import ConcurrencyLimiter
from .retry import RetryPolicy
from .schemas import DownloadTask

JSON_CONTENT_TYPE = 'application/json'

logger = logging.getLogger(__name__)


async def read_error_message(resp: aiohttp.ClientResponse, default: str) -> str:
    """Return ``error.message`` from a JSON error body, or ``default``."""
    try:
        body = await resp.json(content_type=None)
    except (aiohttp.ClientError, ValueError):
        return default
    if isinstance(body, dict) and isinstance(body.get('error'), dict):
        return body['error'].get('message') or default
    return default


def classify_status(status: int, message: str) -> DownloadError:
    if status == 401:
        return AuthenticationFailure(message)
    if status == 429:
        return RateLimited(message, status)
    if status == 507:
        return ResourceExhausted(message, status)
    return TransientServerError(message, status)


class LeafFetcher:
    """Downloads single files of one deployment into place."""

    def __init__(
        self,
        session: aiohttp.ClientSession,
        config: ClientConfig,
        limiter: ConcurrencyLimiter,
        policy: RetryPolicy,
        deployment_id: str,
        *,
        cancel_event: asyncio.Event | None = None,
    ) -> None:
        self._session = session
        self._config = config
        self._limiter = limiter
        self._policy = policy
        self._deployment_id = deployment_id
        self._cancel_event = cancel_event

    async def fetch(self, task: DownloadTask) -> int:
        """Download ``task`` and return the number of bytes written.

        Holds one limiter slot for the whole attempt sequence. Raises
        ``AuthenticationFailure`` on a 401, ``TerminalDownloadFailure`` once
        the retry policy gives up and ``DownloadCancelled`` when the cancel
        event is set before an attempt or during a backoff wait.
        """
        state = self._policy.new_state()
        async with self._limiter.slot():
            while True:
                self._check_cancelled()
                attempt = state.attempt
                try:
                    payload = await self._request(task.remote_id)
                    await self._write(task.destination, payload)
                except DownloadError as exc:
                    decision = self._policy.decide(exc, state, task.relative_path)
                    if not decision.retry:
                        if decision.failure is exc:
                            raise
                        raise decision.failure from exc
                    logger.warning(
                        'Attempt %d/%d for %s failed: %s. Retrying in %.1fs',
                        attempt, state.max_attempts, task.relative_path,
                        exc, decision.delay,
                    )
                    await self._backoff(decision.delay)
                    continue
                logger.debug('Downloaded %s (%d bytes)', task.relative_path, len(payload))
                return len(payload)

    def _check_cancelled(self) -> None:
        if self._cancel_event is not None and self._cancel_event.is_set():
            raise DownloadCancelled('Download cancelled')

    async def _backoff(self, delay: float) -> None:
        if self._cancel_event is None:
            await asyncio.sleep(delay)
            return
        try:
            await asyncio.wait_for(self._cancel_event.wait(), delay)
        except asyncio.TimeoutError:
            return
        raise DownloadCancelled('Download cancelled')

    def _file_url(self, remote_id: str) -> str:
        return '/'.join((
            self._config.base_url,
            'v7/deployments',
            self._deployment_id,
            'files',
            remote_id,
        ))

    async def _request(self, remote_id: str) -> bytes:
        try:
            async with self._session.get(
                self._file_url(remote_id),
                params=self._config.params,
                headers=self._config.headers,
                timeout=self._config.timeout,
            ) as resp:
                if resp.status == 200:
                    return await self._read_payload(resp)
                message = await read_error_message(
                    resp, f'{resp.status} {resp.reason}',
                )
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            raise TransientServerError(
                f'{exc.__class__.__name__}: {exc}',
            ) from exc
        raise classify_status(resp.status, message)

    async def _read_payload(self, resp: aiohttp.ClientResponse) -> bytes:
        body = await resp.read()
        if resp.content_type != JSON_CONTENT_TYPE:
            return body
        try:
            envelope = json.loads(body)
        except ValueError:
            return body
        if isinstance(envelope, dict) and isinstance(envelope.get('data'), str):
            try:
                return b64decode(envelope['data'], validate=True)
            except binascii.Error:
                logger.debug('JSON body is not a base64 envelope, keeping it as is')
        return body

    async def _write(self, destination: str, payload: bytes) -> None:
        directory, name = os.path.split(destination)
        temp_path = os.path.join(directory, f'.{name}.{uuid.uuid4().hex}.part')
        try:
            async with aiofiles.open(temp_path, 'wb') as file_d:
                await file_d.write(payload)
            await aiofiles.os.replace(temp_path, destination)
        except BaseException:
            with suppress(FileNotFoundError):
                os.remove(temp_path)
            raise
