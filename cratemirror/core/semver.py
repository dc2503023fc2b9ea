"""语义化版本 (SemVer 2.0.0)

只负责解析与排序，不做版本范围求解；锁文件里的版本都已冻结。
索引文件按版本排序输出依赖这里的全序比较。
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from functools import total_ordering

# https://semver.org 官方推荐正则
_SEMVER_RE = re.compile(
    r"^(?P<major>0|[1-9]\d*)\.(?P<minor>0|[1-9]\d*)\.(?P<patch>0|[1-9]\d*)"
    r"(?:-(?P<pre>(?:0|[1-9]\d*|\d*[a-zA-Z-][0-9a-zA-Z-]*)"
    r"(?:\.(?:0|[1-9]\d*|\d*[a-zA-Z-][0-9a-zA-Z-]*))*))?"
    r"(?:\+(?P<build>[0-9a-zA-Z-]+(?:\.[0-9a-zA-Z-]+)*))?$"
)


def _pre_key(pre: tuple[str, ...]) -> tuple:
    # 无预发布标识的版本优先级更高；数字标识符低于字母标识符
    if not pre:
        return (1,)
    parts = tuple(
        (0, int(p), "") if p.isdigit() else (1, 0, p)
        for p in pre
    )
    return (0, parts)


@total_ordering
@dataclass(frozen=True)
class Version:
    """不可变的语义化版本值"""

    major: int
    minor: int
    patch: int
    pre: tuple[str, ...] = ()
    build: tuple[str, ...] = ()

    @classmethod
    def parse(cls, text: str) -> Version:
        """解析版本字符串，不合法时抛 ValueError"""
        m = _SEMVER_RE.match(text.strip()) if isinstance(text, str) else None
        if m is None:
            raise ValueError(f"不是合法的语义化版本: {text!r}")
        pre = m.group("pre")
        build = m.group("build")
        return cls(
            major=int(m.group("major")),
            minor=int(m.group("minor")),
            patch=int(m.group("patch")),
            pre=tuple(pre.split(".")) if pre else (),
            build=tuple(build.split(".")) if build else (),
        )

    @staticmethod
    def is_valid(text: str) -> bool:
        return isinstance(text, str) and _SEMVER_RE.fullmatch(text) is not None

    def sort_key(self) -> tuple:
        # build 元数据不参与优先级，仅作为最后的确定性排序依据
        return (self.major, self.minor, self.patch, _pre_key(self.pre), self.build)

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, Version):
            return NotImplemented
        return self.sort_key() < other.sort_key()

    def __str__(self) -> str:
        text = f"{self.major}.{self.minor}.{self.patch}"
        if self.pre:
            text += "-" + ".".join(self.pre)
        if self.build:
            text += "+" + ".".join(self.build)
        return text
