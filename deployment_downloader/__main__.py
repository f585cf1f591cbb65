import argparse
import asyncio
import logging
import os
import sys

from deployment_downloader.config import ClientConfig, DownloadConfig
from deployment_downloader.downloader import AsyncDeploymentDownloader
from deployment_downloader.exceptions import ApiError, DeploymentDownloaderError

logger = logging.getLogger('deployment_downloader')

parser = argparse.ArgumentParser(prog='deployment-downloader')
parser.add_argument('download_path')
parser.add_argument('-d', '--deployment', help='deployment id (default: latest)')
parser.add_argument('-v', '--verbose', action='store_true')
parser.add_argument('-t', '--tasks', type=int, default=None)
parser.add_argument('-a', '--attempts', type=int, default=None)
parser.add_argument('--timeout', type=float, default=None)
parser.add_argument(
    '--strict',
    action='store_true',
    help='fail when any file could not be downloaded',
)


async def main(argv: list[str] | None = None) -> int:
    args = parser.parse_args(argv)
    if not os.path.isdir(args.download_path):
        raise ValueError("Directory doesn't exist")
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format='%(asctime)s: %(message)s',
    )
    downloader = AsyncDeploymentDownloader(
        ClientConfig.from_env(),
        DownloadConfig.from_env(
            concurrency=args.tasks,
            max_attempts=args.attempts,
            fail_on_error=args.strict or None,
        ),
    )
    try:
        deployment_id = args.deployment or await latest_deployment(downloader)
        report = await downloader.download(
            deployment_id,
            os.path.join(args.download_path, deployment_id),
            timeout=args.timeout,
        )
    except DeploymentDownloaderError as exc:
        logger.error('Error: %s', exc)
        return 1
    print(
        f'Downloaded {report.downloaded_count} file(s), '
        f'{len(report.failed)} failed, {len(report.skipped)} skipped'
    )
    for failed in report.failed:
        print(f'  failed: {failed.relative_path} ({failed.message})')
    return 0


async def latest_deployment(downloader: AsyncDeploymentDownloader) -> str:
    deployments = await downloader.list_deployments(limit=1)
    if not deployments:
        raise ApiError('No deployments found')
    logger.info('Latest deployment: %s (%s)', deployments[0].name, deployments[0].id)
    return deployments[0].id


def run() -> None:
    sys.exit(asyncio.run(main()))


if __name__ == '__main__':
    run()
