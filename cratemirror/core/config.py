"""集中配置管理

支持从 YAML 文件加载 + CLI 参数覆盖，示例 cratemirror.yml:

    retries: 3
    backoff: 0.5
    timeout: 30
    jobs: 4
    continue_on_error: false
    sources:
      "registry+https://my.corp/index": "https://my.corp/dl/{crate}/{version}"
      "registry+file:///srv/vendored-index": "/srv/vendored-crates"
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field, fields
from typing import Any

import yaml

from cratemirror import __version__
from cratemirror.core.exceptions import ConfigError
from cratemirror.utils.fileio import load_yaml

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_FILE = "cratemirror.yml"
CRATES_IO_REGISTRY = "registry+https://github.com/rust-lang/crates.io-index"


@dataclass
class Config:
    """同步引擎配置"""

    # 拉取
    retries: int = 3             # 失败后额外重试次数
    backoff: float = 0.5         # 首次重试等待秒数，之后指数翻倍
    timeout: float = 30.0        # 单次请求超时（秒）
    jobs: int = 1                # 并行拉取数，提交阶段始终串行
    user_agent: str = f"cratemirror/{__version__}"

    # 策略
    continue_on_error: bool = False  # 默认任一包失败即中止

    # 来源
    default_registry: str = CRATES_IO_REGISTRY
    sources: dict[str, str] = field(default_factory=dict)  # source id -> 下载地址模板

    # 自定义扩展 (放不到字段里的配置项)
    extra: dict = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.validate()

    def validate(self) -> None:
        if not isinstance(self.retries, int) or self.retries < 0:
            raise ConfigError(f"retries 必须是非负整数: {self.retries!r}")
        if not isinstance(self.jobs, int) or self.jobs < 1:
            raise ConfigError(f"jobs 必须是正整数: {self.jobs!r}")
        for key in ("backoff", "timeout"):
            value = getattr(self, key)
            if not isinstance(value, (int, float)) or value < 0:
                raise ConfigError(f"{key} 必须是非负数: {value!r}")
        if not isinstance(self.sources, dict) or not all(
            isinstance(k, str) and isinstance(v, str) for k, v in self.sources.items()
        ):
            raise ConfigError("sources 必须是 source id -> 下载地址模板 的字符串映射")

    @classmethod
    def from_file(cls, path: str = DEFAULT_CONFIG_FILE) -> Config:
        """从 YAML 文件加载配置，不存在则返回默认"""
        try:
            data = load_yaml(path)
        except (OSError, ValueError, yaml.YAMLError) as e:
            raise ConfigError(f"无法读取配置文件 {path}: {e}") from e
        if not data:
            return cls()
        known = {f.name for f in fields(cls)} - {"extra"}
        matched = {k: v for k, v in data.items() if k in known}
        extra = {k: v for k, v in data.items() if k not in known}
        if extra:
            logger.warning("配置文件 %s 含未识别的字段: %s", path, ", ".join(sorted(extra)))
        try:
            cfg = cls(**matched)
        except TypeError as e:
            raise ConfigError(f"配置文件 {path} 内容无效: {e}") from e
        cfg.extra = extra
        return cfg

    def override(self, **values: Any) -> Config:
        """返回应用了非 None 覆盖值的新配置（CLI 参数优先于文件）"""
        merged = {**asdict(self), **{k: v for k, v in values.items() if v is not None}}
        return Config(**merged)

    def to_dict(self) -> dict:
        return asdict(self)


# 全局单例，首次 import 时不加载文件；由 CLI / Web 入口显式初始化
_current: Config | None = None


def get_config() -> Config:
    """获取当前配置（未初始化则返回默认值）"""
    global _current  # noqa: PLW0603
    if _current is None:
        _current = Config()
    return _current


def init_config(path: str = DEFAULT_CONFIG_FILE) -> Config:
    """从文件初始化全局配置"""
    global _current  # noqa: PLW0603
    _current = Config.from_file(path)
    logger.info("配置已加载: %s", path)
    return _current
