import os

import pytest
from pydantic import ValidationError

from deployment_downloader.schemas import (
    Deployment,
    DownloadReport,
    FailedFile,
    NodeKind,
    RemoteNode,
    parse_tree,
)


def test_parse_tree_dispatches_kinds():
    nodes = parse_tree([
        {
            'name': 'src',
            'type': 'directory',
            'children': [
                {'name': 'a.txt', 'type': 'file', 'uid': 'u1', 'mode': 33188},
                {'name': 'api', 'type': 'lambda'},
            ],
        },
        {'name': 'README.md', 'type': 'file', 'uid': 'u2'},
    ])

    src, readme = nodes
    assert src.kind is NodeKind.DIRECTORY
    assert [child.kind for child in src.children] == [NodeKind.FILE, NodeKind.UNSUPPORTED]
    assert src.children[0].remote_id == 'u1'
    assert readme.is_file and readme.remote_id == 'u2'


def test_unknown_kind_is_unsupported():
    node = RemoteNode.model_validate({'name': 'edge', 'type': 'edge-function', 'uid': 'x'})
    assert node.kind is NodeKind.UNSUPPORTED
    assert node.remote_id is None


def test_file_without_uid_is_unsupported():
    node = RemoteNode.model_validate({'name': 'orphan', 'type': 'file'})
    assert node.kind is NodeKind.UNSUPPORTED


def test_kind_decides_populated_fields():
    leaf = RemoteNode.model_validate({
        'name': 'a.txt',
        'type': 'file',
        'uid': 'u1',
        'children': [{'name': 'b', 'type': 'file', 'uid': 'u2'}],
    })
    directory = RemoteNode.model_validate({'name': 'src', 'type': 'directory', 'uid': 'd1'})
    assert leaf.children == ()
    assert directory.remote_id is None
    assert directory.children == ()


def test_build_by_field_name():
    node = RemoteNode(name='a.txt', kind=NodeKind.FILE, remote_id='u1')
    assert node.is_file
    assert node.remote_id == 'u1'


@pytest.mark.parametrize('name', ['', '.', '..', 'a/b', os.path.join('a', 'b')])
@pytest.mark.parametrize('kind', ['file', 'directory', 'lambda'])
def test_unsafe_names_are_unsupported(name, kind):
    node = RemoteNode.model_validate({'name': name, 'type': kind, 'uid': 'u1', 'children': []})
    assert node.kind is NodeKind.UNSUPPORTED
    assert node.remote_id is None


def test_unsafe_name_does_not_fail_the_tree():
    nodes = parse_tree([
        {'name': 'index.html', 'type': 'file', 'uid': 'u1'},
        {'name': 'api/hello', 'type': 'lambda'},
    ])
    assert [node.kind for node in nodes] == [NodeKind.FILE, NodeKind.UNSUPPORTED]


@pytest.mark.skipif(os.sep != '/', reason='backslash is a separator here')
def test_backslash_is_a_legal_name_on_posix():
    node = RemoteNode.model_validate({'name': 'a\\b', 'type': 'file', 'uid': 'u1'})
    assert node.is_file


def test_nodes_are_immutable():
    node = RemoteNode.model_validate({'name': 'a.txt', 'type': 'file', 'uid': 'u1'})
    with pytest.raises(ValidationError):
        node.name = 'b.txt'


def test_deployment_aliases():
    deployment = Deployment.model_validate({
        'uid': 'dpl_1',
        'name': 'site',
        'url': 'site.vercel.app',
        'state': 'READY',
        'created': 1700000000000,
        'creator': {'uid': 'someone'},
    })
    assert deployment.id == 'dpl_1'
    assert deployment.created_at == 1700000000000


def test_report_properties():
    report = DownloadReport(downloaded=['a', 'b'])
    assert report.downloaded_count == 2
    assert report.ok
    report.failed.append(FailedFile('c', 5, 'boom'))
    assert not report.ok
