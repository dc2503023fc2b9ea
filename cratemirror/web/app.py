"""只读镜像 HTTP 服务（基于 Flask）

按 cargo sparse 协议对外提供本地镜像，不访问任何上游:
  GET /index/config.json          注册表配置，dl 指向本服务
  GET /index/<cargo 索引路径>      包索引文件
  GET /<name>-<version>.crate     包归档

cargo 配置示例:
  [source.crates-io]
  replace-with = "mirror"
  [source.mirror]
  registry = "sparse+http://127.0.0.1:8080/index/"

启动方式: cratemirror serve <mirror_dir> --port 8080
生产部署: gunicorn --config deploy/gunicorn.conf.py cratemirror.web.app:app
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

from flask import Blueprint, Flask, Response, abort, current_app, jsonify, request, send_file
from werkzeug.exceptions import HTTPException

from cratemirror.core.layout import index_relpath, is_valid_name, parse_archive_filename
from cratemirror.core.store import MirrorStore

logger = logging.getLogger(__name__)

DEFAULT_MIRROR_DIR = "mirror"

registry_bp = Blueprint("registry", __name__)


def _store() -> MirrorStore:
    return MirrorStore(current_app.config["MIRROR_DIR"])


@registry_bp.route("/index/config.json", methods=["GET"])
def registry_config() -> Response:
    return jsonify(dl=f"{request.host_url}{{crate}}-{{version}}.crate", api=None)


@registry_bp.route("/index/<path:subpath>", methods=["GET"])
def index_file(subpath: str) -> Response:
    name = subpath.rsplit("/", 1)[-1]
    if not is_valid_name(name) or subpath.lower() != index_relpath(name):
        abort(404, description=f"索引路径无效: {subpath}")
    path = _store().index_path(name)
    if not path.is_file():
        abort(404, description=f"包不存在: {name}")
    return send_file(path.resolve(), mimetype="text/plain")


@registry_bp.route("/<filename>", methods=["GET"])
def archive_file(filename: str) -> Response:
    parsed = parse_archive_filename(filename)
    if parsed is None:
        abort(404, description=f"不是归档文件: {filename}")
    path = _store().archive_path(*parsed)
    if not path.is_file():
        abort(404, description=f"归档不存在: {filename}")
    return send_file(path.resolve(), mimetype="application/x-tar", download_name=filename)


def handle_http_exception(exc: HTTPException):  # type: ignore[no-untyped-def]
    """将所有 HTTP 异常统一返回 JSON"""
    return jsonify(error=exc.description), exc.code


def handle_generic_exception(exc: Exception):  # type: ignore[no-untyped-def]  # noqa: ARG001
    """捕获未处理异常，返回 500 JSON"""
    logger.exception("未处理的异常")
    return jsonify(error="服务器内部错误"), 500


def create_app(mirror_dir: str | Path = DEFAULT_MIRROR_DIR) -> Flask:
    app = Flask(__name__)
    app.config["MIRROR_DIR"] = str(mirror_dir)
    app.register_blueprint(registry_bp)
    app.register_error_handler(HTTPException, handle_http_exception)
    app.register_error_handler(Exception, handle_generic_exception)
    return app


# gunicorn 入口，镜像目录取自环境变量
app = create_app(os.getenv("CRATEMIRROR_MIRROR_DIR", DEFAULT_MIRROR_DIR))


def run_server(mirror_dir: str | Path, port: int = 8080, host: str = "127.0.0.1") -> None:
    server = create_app(mirror_dir)
    logger.info("镜像服务已启动: http://%s:%d (%s)", host, port, mirror_dir)
    server.run(host=host, port=port)
