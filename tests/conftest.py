import asyncio
from base64 import b64encode

import pytest
import pytest_asyncio
from aiohttp import web
from aiohttp.test_utils import TestServer

from deployment_downloader.config import ClientConfig, DownloadConfig

TOKEN = 'test-token'


class FakeDeploymentApi:
    """In-process stand-in for the deployments API.

    ``scripts`` maps a file uid to status codes returned (in order) before
    the file content is finally served.
    """

    def __init__(self) -> None:
        self.tree: list[dict] = []
        self.files: dict[str, bytes] = {}
        self.envelope: set[str] = set()
        self.json_files: dict[str, bytes] = {}
        self.scripts: dict[str, list[int]] = {}
        self.deployments: list[dict] = []
        self.listing_failures: list[int] = []
        self.on_file = None
        self.requests: list[str] = []
        self.queries: list[dict[str, str]] = []
        self.delay = 0.0
        self.in_flight = 0
        self.max_in_flight = 0

    def app(self) -> web.Application:
        app = web.Application()
        app.router.add_get('/v6/deployments', self.list_deployments)
        app.router.add_get('/v6/deployments/{deployment_id}/files', self.get_tree)
        app.router.add_get(
            '/v7/deployments/{deployment_id}/files/{uid}', self.get_file,
        )
        app.router.add_get('/v13/deployments/{deployment_id}', self.get_deployment)
        return app

    def is_authorized(self, request: web.Request) -> bool:
        return request.headers.get('Authorization') == f'Bearer {TOKEN}'

    def unauthorized(self) -> web.Response:
        return web.json_response(
            {'error': {'code': 'forbidden', 'message': 'Invalid token', 'invalidToken': True}},
            status=401,
        )

    async def list_deployments(self, request: web.Request) -> web.Response:
        if not self.is_authorized(request):
            return self.unauthorized()
        if self.listing_failures:
            return web.json_response(
                {'error': {'message': 'internal'}}, status=self.listing_failures.pop(0),
            )
        limit = int(request.query.get('limit', 10))
        return web.json_response({'deployments': self.deployments[:limit]})

    async def get_deployment(self, request: web.Request) -> web.Response:
        if not self.is_authorized(request):
            return self.unauthorized()
        deployment_id = request.match_info['deployment_id']
        for deployment in self.deployments:
            if deployment_id in (deployment.get('uid'), deployment.get('id')):
                return web.json_response(deployment)
        return web.json_response({'error': {'message': 'Not found'}}, status=404)

    async def get_tree(self, request: web.Request) -> web.Response:
        if not self.is_authorized(request):
            return self.unauthorized()
        if request.match_info['deployment_id'] == 'missing':
            return web.json_response({'error': {'message': 'Not found'}}, status=404)
        return web.json_response(self.tree)

    async def get_file(self, request: web.Request) -> web.Response:
        uid = request.match_info['uid']
        self.requests.append(uid)
        self.queries.append(dict(request.query))
        if self.on_file is not None:
            self.on_file(uid)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(self.delay)
            if not self.is_authorized(request):
                return self.unauthorized()
            script = self.scripts.get(uid)
            if script:
                status = script.pop(0)
                if status == 401:
                    return self.unauthorized()
                return web.json_response({'error': {'message': 'try later'}}, status=status)
            if uid in self.json_files:
                return web.Response(
                    body=self.json_files[uid], content_type='application/json',
                )
            if uid not in self.files:
                return web.json_response({'error': {'message': 'Not found'}}, status=404)
            if uid in self.envelope:
                return web.json_response(
                    {'data': b64encode(self.files[uid]).decode('ascii')},
                )
            return web.Response(
                body=self.files[uid], content_type='application/octet-stream',
            )
        finally:
            self.in_flight -= 1


@pytest.fixture
def api() -> FakeDeploymentApi:
    return FakeDeploymentApi()


@pytest_asyncio.fixture
async def server(api):
    async with TestServer(api.app()) as test_server:
        yield test_server


@pytest.fixture
def client_config(server) -> ClientConfig:
    return ClientConfig(api_url=f'http://{server.host}:{server.port}', token=TOKEN)


@pytest.fixture
def download_config() -> DownloadConfig:
    return DownloadConfig(base_delay=0)
