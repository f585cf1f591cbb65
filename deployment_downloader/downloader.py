import asyncio
import logging
import os
from typing import Any, Awaitable, Iterable, TypeVar

import aiohttp
from pydantic import ValidationError

from .config import ClientConfig, DownloadConfig
from .exceptions import (
    ApiError,
    AuthenticationFailure,
    DownloadCancelled,
    IncompleteDownload,
    TerminalDownloadFailure,
)
from .fetcher import LeafFetcher, read_error_message
from .limiter import ConcurrencyLimiter
from .schemas import (
    Deployment,
    DownloadReport,
    DownloadTask,
    FailedFile,
    RemoteNode,
    parse_tree,
)

T = TypeVar('T')

logger = logging.getLogger(__name__)


class AsyncDeploymentDownloader:
    def __init__(
        self,
        client_config: ClientConfig,
        download_config: DownloadConfig | None = None,
    ) -> None:
        self._client_config = client_config
        self._download_config = download_config or DownloadConfig()
        self._limiter: ConcurrencyLimiter | None = None

    @property
    def download_config(self) -> DownloadConfig:
        return self._download_config

    @property
    def limiter(self) -> ConcurrencyLimiter:
        if self._limiter is None:
            raise AttributeError('No download has been started')
        return self._limiter

    async def download(
        self,
        deployment_id: str,
        download_path: str,
        *,
        cancel_event: asyncio.Event | None = None,
        timeout: float | None = None,
    ) -> DownloadReport:
        """Mirror the files of ``deployment_id`` into ``download_path``."""

        async def run() -> DownloadReport:
            async with self.__open_session() as session:
                nodes = await self.__fetch_tree(session, deployment_id)
                return await self.__download_nodes(
                    session, nodes, download_path, deployment_id, cancel_event,
                )

        return await self.__with_deadline(run(), timeout)

    async def download_tree(
        self,
        nodes: Iterable[RemoteNode],
        download_path: str,
        deployment_id: str,
        *,
        cancel_event: asyncio.Event | None = None,
        timeout: float | None = None,
    ) -> DownloadReport:
        """Same as :meth:`download` for an already fetched tree."""

        async def run() -> DownloadReport:
            async with self.__open_session() as session:
                return await self.__download_nodes(
                    session, nodes, download_path, deployment_id, cancel_event,
                )

        return await self.__with_deadline(run(), timeout)

    async def fetch_tree(self, deployment_id: str) -> tuple[RemoteNode, ...]:
        async with self.__open_session() as session:
            return await self.__fetch_tree(session, deployment_id)

    async def get_deployment(self, deployment_id: str) -> Deployment:
        async with self.__open_session() as session:
            body = await self.__get_json(
                session,
                f'/v13/deployments/{deployment_id}',
                resource=f'Deployment {deployment_id}',
            )
        if isinstance(body, dict) and isinstance(body.get('deployment'), dict):
            body = body['deployment']
        try:
            return Deployment.model_validate(body)
        except ValidationError as exc:
            raise ApiError(f'Malformed deployment response: {exc}') from exc

    async def list_deployments(self, limit: int = 10) -> list[Deployment]:
        async with self.__open_session() as session:
            body = await self.__get_json(
                session,
                '/v6/deployments',
                params={'limit': str(limit)},
                resource='Deployments',
            )
        if not isinstance(body, dict) or body.get('deployments') is None:
            raise ApiError('No deployments returned')
        try:
            return [Deployment.model_validate(entry) for entry in body['deployments']]
        except ValidationError as exc:
            raise ApiError(f'Malformed deployments response: {exc}') from exc

    def collect(
        self,
        nodes: Iterable[RemoteNode],
        directory: str,
        prefix: str,
        report: DownloadReport,
    ) -> list[DownloadTask]:
        """Create the local directories under ``directory`` and list the files.

        Files directly inside ``directory`` come first, followed by the files
        of each subdirectory, depth first. Unsupported entries are recorded
        in ``report.skipped``.
        """
        files: list[DownloadTask] = []
        subdirectories: list[tuple[RemoteNode, str, str]] = []
        for node in nodes:
            relative_path = f'{prefix}/{node.name}' if prefix else node.name
            destination = os.path.join(directory, node.name)
            if node.is_directory:
                os.makedirs(destination, exist_ok=True)
                subdirectories.append((node, destination, relative_path))
            elif node.is_file:
                files.append(DownloadTask(node.remote_id, destination, relative_path))
            else:
                logger.info('Skipping unsupported entry: %s', relative_path)
                report.skipped.append(relative_path)
        for node, destination, relative_path in subdirectories:
            files.extend(self.collect(node.children, destination, relative_path, report))
        return files

    async def dispatch(
        self,
        fetcher: LeafFetcher,
        tasks: list[DownloadTask],
        report: DownloadReport,
        *,
        chunk_size: int,
        cancel_event: asyncio.Event | None = None,
    ) -> None:
        """Download ``tasks`` in chunks of ``chunk_size``.

        A chunk is finished before the next one starts. Per-file terminal
        failures land in ``report.failed``; anything else cancels the rest of
        the chunk and propagates.
        """
        for start in range(0, len(tasks), chunk_size):
            if cancel_event is not None and cancel_event.is_set():
                raise DownloadCancelled('Download cancelled')
            chunk = [
                asyncio.create_task(self.__download_file(fetcher, task, report))
                for task in tasks[start:start + chunk_size]
            ]
            try:
                await asyncio.gather(*chunk)
            except BaseException:
                for running in chunk:
                    running.cancel()
                await asyncio.gather(*chunk, return_exceptions=True)
                raise

    async def __download_nodes(
        self,
        session: aiohttp.ClientSession,
        nodes: Iterable[RemoteNode],
        download_path: str,
        deployment_id: str,
        cancel_event: asyncio.Event | None,
    ) -> DownloadReport:
        os.makedirs(download_path, exist_ok=True)
        report = DownloadReport()
        self._limiter = limiter = ConcurrencyLimiter(self._download_config.concurrency)
        fetcher = LeafFetcher(
            session,
            self._client_config,
            limiter,
            self._download_config.retry_policy(),
            deployment_id,
            cancel_event=cancel_event,
        )
        tasks = self.collect(nodes, download_path, '', report)
        logger.info('Downloading %d file(s) into %s', len(tasks), download_path)
        await self.dispatch(
            fetcher,
            tasks,
            report,
            chunk_size=limiter.capacity,
            cancel_event=cancel_event,
        )
        logger.info(
            'Downloaded %d file(s) (%d bytes), %d failed, %d skipped',
            report.downloaded_count,
            report.bytes_downloaded,
            len(report.failed),
            len(report.skipped),
        )
        if self._download_config.fail_on_error and not report.ok:
            raise IncompleteDownload(report)
        return report

    async def __download_file(
        self,
        fetcher: LeafFetcher,
        task: DownloadTask,
        report: DownloadReport,
    ) -> None:
        try:
            size = await fetcher.fetch(task)
        except TerminalDownloadFailure as exc:
            logger.error(exc.message)
            report.failed.append(
                FailedFile(exc.relative_path, exc.attempts, exc.message),
            )
            return
        report.downloaded.append(task.relative_path)
        report.bytes_downloaded += size

    async def __fetch_tree(
        self,
        session: aiohttp.ClientSession,
        deployment_id: str,
    ) -> tuple[RemoteNode, ...]:
        raw = await self.__get_json(
            session,
            f'/v6/deployments/{deployment_id}/files',
            resource=f'Deployment {deployment_id}',
        )
        if not isinstance(raw, list):
            raise ApiError(f'Unexpected file tree for deployment {deployment_id}')
        if not raw:
            raise ApiError(f'No files found for deployment {deployment_id}')
        try:
            return parse_tree(raw)
        except ValidationError as exc:
            raise ApiError(f'Malformed file tree: {exc}') from exc

    async def __get_json(
        self,
        session: aiohttp.ClientSession,
        path: str,
        *,
        resource: str,
        params: dict[str, str] | None = None,
    ) -> Any:
        """GET ``path`` and decode its JSON body.

        Transport errors, 429 and 5xx responses are retried with the same
        backoff as file downloads; a 401 is raised at once.
        """
        url = self._client_config.base_url + path
        query = {**self._client_config.params, **(params or {})}
        policy = self._download_config.retry_policy()
        state = policy.new_state()
        while True:
            attempt = state.attempt
            try:
                return await self.__request_json(session, url, query, resource)
            except ApiError as exc:
                decision = policy.decide(exc, state, resource)
                if not decision.retry:
                    raise
                logger.warning(
                    'Attempt %d/%d for %s failed: %s. Retrying in %.1fs',
                    attempt, state.max_attempts, resource, exc, decision.delay,
                )
                await asyncio.sleep(decision.delay)

    async def __request_json(
        self,
        session: aiohttp.ClientSession,
        url: str,
        query: dict[str, str],
        resource: str,
    ) -> Any:
        try:
            async with session.get(
                url,
                params=query,
                headers=self._client_config.headers,
            ) as resp:
                if resp.status == 200:
                    return await resp.json(content_type=None)
                message = await read_error_message(
                    resp, f'{resp.status} {resp.reason}',
                )
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            raise ApiError(
                f'Request for {resource} failed: {exc}', retryable=True,
            ) from exc
        except ValueError as exc:
            raise ApiError(f'{resource} returned invalid JSON') from exc
        if resp.status == 401:
            raise AuthenticationFailure(message)
        if resp.status == 404:
            raise ApiError(f'{resource} not found', resp.status)
        raise ApiError(
            f'Failed to get {resource}: {message}',
            resp.status,
            retryable=resp.status == 429 or resp.status >= 500,
        )

    def __open_session(self) -> aiohttp.ClientSession:
        return aiohttp.ClientSession(timeout=self._client_config.timeout)

    @staticmethod
    async def __with_deadline(coro: Awaitable[T], timeout: float | None) -> T:
        if timeout is None:
            return await coro
        try:
            return await asyncio.wait_for(coro, timeout)
        except asyncio.TimeoutError as exc:
            raise DownloadCancelled(
                f'Download did not finish within {timeout}s',
            ) from exc
