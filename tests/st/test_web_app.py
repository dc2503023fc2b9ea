"""只读 HTTP 服务测试"""

from __future__ import annotations

import hashlib
from pathlib import Path

import pytest

from cratemirror.core.config import CRATES_IO_REGISTRY
from cratemirror.core.models import PackageDescriptor
from cratemirror.core.semver import Version
from cratemirror.core.store import MirrorStore
from cratemirror.web.app import create_app

ARCHIVES = {
    ("serde", "1.0.0"): b"serde archive",
    ("curl-sys", "0.4.80+curl-8.12.1"): b"curl-sys archive",
}


@pytest.fixture()
def client(tmp_path: Path):
    """创建 Flask 测试客户端，临时镜像目录"""
    store = MirrorStore(tmp_path)
    store.ensure_registry_marker()
    for (name, version), data in ARCHIVES.items():
        desc = PackageDescriptor(
            name=name, version=Version.parse(version), source=CRATES_IO_REGISTRY,
            checksum=hashlib.sha256(data).hexdigest(),
        )
        store.commit(desc, data)
    app = create_app(tmp_path)
    app.config["TESTING"] = True
    with app.test_client() as c:
        yield c


class TestGlobalErrorHandlers:
    def test_404_returns_json(self, client) -> None:
        resp = client.get("/nonexistent/path")
        assert resp.status_code == 404
        assert "error" in resp.get_json()

    def test_405_returns_json(self, client) -> None:
        resp = client.post("/index/config.json")
        assert resp.status_code == 405
        assert "error" in resp.get_json()


class TestIndex:
    def test_config(self, client) -> None:
        data = client.get("/index/config.json").get_json()
        assert data["dl"] == "http://localhost/{crate}-{version}.crate"
        assert data["api"] is None

    def test_index_file(self, client) -> None:
        resp = client.get("/index/se/rd/serde")
        assert resp.status_code == 200
        assert b'"vers":"1.0.0"' in resp.data

    def test_wrong_prefix(self, client) -> None:
        resp = client.get("/index/xx/yy/serde")
        assert resp.status_code == 404
        assert "索引路径无效" in resp.get_json()["error"]

    def test_unknown_package(self, client) -> None:
        resp = client.get("/index/ra/nd/rand")
        assert resp.status_code == 404
        assert "包不存在" in resp.get_json()["error"]

    def test_path_traversal_rejected(self, client) -> None:
        assert client.get("/index/../config.json").status_code == 404


class TestArchives:
    def test_download(self, client) -> None:
        resp = client.get("/serde-1.0.0.crate")
        assert resp.status_code == 200
        assert resp.data == b"serde archive"

    def test_version_with_dashes(self, client) -> None:
        resp = client.get("/curl-sys-0.4.80+curl-8.12.1.crate")
        assert resp.status_code == 200
        assert resp.data == b"curl-sys archive"

    def test_missing_version(self, client) -> None:
        resp = client.get("/serde-9.9.9.crate")
        assert resp.status_code == 404
        assert "归档不存在" in resp.get_json()["error"]

    def test_not_an_archive(self, client) -> None:
        assert client.get("/config.json").status_code == 404
