"""平台谓词表达式

依赖边上可选的平台条件，两种形式:
  - 目标三元组:  x86_64-pc-windows-gnu
  - cfg 表达式:  cfg(all(unix, target_arch = "x86_64"))

解析为带标签的表达式树（All / Any / Not / Name / KeyValue）用于语法校验；
同时保留原始文本，写入索引的 target 字段时逐字节照抄。
规范化文本可通过 canonical() 取得。
镜像与平台无关，这里只做语法解析和回写，从不求值：
求值属于下游客户端。
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Union

_IDENT_RE = re.compile(r"[A-Za-z_][A-Za-z0-9_]*")
_TRIPLE_RE = re.compile(r"^[A-Za-z0-9_.\-]+$")


@dataclass(frozen=True)
class Name:
    """单个标识符，如 unix、windows、test"""

    name: str

    def __str__(self) -> str:
        return self.name


@dataclass(frozen=True)
class KeyValue:
    """键值比较，如 target_os = "linux" """

    key: str
    value: str

    def __str__(self) -> str:
        return f'{self.key} = "{self.value}"'


@dataclass(frozen=True)
class All:
    exprs: tuple[CfgExpr, ...]

    def __str__(self) -> str:
        return f"all({', '.join(str(e) for e in self.exprs)})"


@dataclass(frozen=True)
class Any_:
    exprs: tuple[CfgExpr, ...]

    def __str__(self) -> str:
        return f"any({', '.join(str(e) for e in self.exprs)})"


@dataclass(frozen=True)
class Not:
    expr: CfgExpr

    def __str__(self) -> str:
        return f"not({self.expr})"


CfgExpr = Union[Name, KeyValue, All, Any_, Not]


@dataclass(frozen=True)
class Cfg:
    """cfg(...) 形式的平台谓词"""

    expr: CfgExpr
    text: str = field(default="", compare=False)  # 锁文件中的原始写法

    def canonical(self) -> str:
        return f"cfg({self.expr})"

    def __str__(self) -> str:
        return self.text or self.canonical()


@dataclass(frozen=True)
class Triple:
    """目标三元组形式的平台谓词"""

    triple: str
    text: str = field(default="", compare=False)

    def canonical(self) -> str:
        return self.triple

    def __str__(self) -> str:
        return self.text or self.triple


PlatformPredicate = Union[Cfg, Triple]


class _Parser:
    """cfg 表达式的递归下降解析器"""

    def __init__(self, text: str) -> None:
        self.text = text
        self.pos = 0

    def _skip_ws(self) -> None:
        while self.pos < len(self.text) and self.text[self.pos].isspace():
            self.pos += 1

    def _peek(self) -> str:
        self._skip_ws()
        return self.text[self.pos] if self.pos < len(self.text) else ""

    def _expect(self, ch: str) -> None:
        if self._peek() != ch:
            found = self._peek() or "结尾"
            raise ValueError(
                f"平台谓词语法错误: 位置 {self.pos} 期望 '{ch}'，实际 '{found}': {self.text}"
            )
        self.pos += 1

    def _ident(self) -> str:
        self._skip_ws()
        m = _IDENT_RE.match(self.text, self.pos)
        if m is None:
            raise ValueError(f"平台谓词语法错误: 位置 {self.pos} 期望标识符: {self.text}")
        self.pos = m.end()
        return m.group(0)

    def _string(self) -> str:
        self._expect('"')
        end = self.text.find('"', self.pos)
        if end < 0:
            raise ValueError(f"平台谓词语法错误: 字符串未闭合: {self.text}")
        value = self.text[self.pos:end]
        self.pos = end + 1
        return value

    def _list(self) -> tuple[CfgExpr, ...]:
        self._expect("(")
        items: list[CfgExpr] = []
        while self._peek() != ")":
            items.append(self.expr())
            if self._peek() == ",":
                self.pos += 1
            elif self._peek() != ")":
                raise ValueError(f"平台谓词语法错误: 位置 {self.pos} 期望 ',' 或 ')': {self.text}")
        self._expect(")")
        return tuple(items)

    def expr(self) -> CfgExpr:
        ident = self._ident()
        nxt = self._peek()
        if nxt == "(":
            if ident == "all":
                return All(self._list())
            if ident == "any":
                return Any_(self._list())
            if ident == "not":
                self._expect("(")
                inner = self.expr()
                self._expect(")")
                return Not(inner)
            raise ValueError(f"平台谓词语法错误: 未知运算符 '{ident}': {self.text}")
        if nxt == "=":
            self.pos += 1
            return KeyValue(ident, self._string())
        return Name(ident)

    def finish(self) -> None:
        self._skip_ws()
        if self.pos != len(self.text):
            raise ValueError(f"平台谓词语法错误: 位置 {self.pos} 存在多余内容: {self.text}")


def parse_predicate(text: str) -> PlatformPredicate:
    """解析平台谓词文本，语法错误抛 ValueError"""
    raw = text.strip()
    if raw.startswith("cfg(") and raw.endswith(")"):
        parser = _Parser(raw[4:-1])
        expr = parser.expr()
        parser.finish()
        return Cfg(expr, text)
    if _TRIPLE_RE.match(raw):
        return Triple(raw, text)
    raise ValueError(f"无法识别的平台谓词: {text!r}")
