"""锁文件解析测试"""

import hashlib
import json
from pathlib import Path

import pytest

from cratemirror.core.config import CRATES_IO_REGISTRY
from cratemirror.core.exceptions import MalformedLockDocument, UnresolvedDependency
from cratemirror.core.lockfile import LockDocumentReader, parse_lockfile
from cratemirror.core.models import MirrorIndexEntry
from cratemirror.core.platform import Cfg, Name
from cratemirror.core.semver import Version

SHA_A = hashlib.sha256(b"a").hexdigest()
SHA_B = hashlib.sha256(b"b").hexdigest()


def _write(tmp_path: Path, text: str) -> Path:
    p = tmp_path / "Cargo.lock"
    p.write_text(text, encoding="utf-8")
    return p


class TestCurrentFormat:
    def test_mirrorable_packages_only(self, tmp_path: Path) -> None:
        lock = _write(tmp_path, f'''
version = 3

[[package]]
name = "myapp"
version = "0.1.0"
dependencies = ["serde", "local-helper"]

[[package]]
name = "local-helper"
version = "0.1.0"
source = "path+file:///work/local-helper"

[[package]]
name = "patched"
version = "2.0.0"
source = "git+https://github.com/example/patched?branch=main#abcdef"

[[package]]
name = "serde"
version = "1.0.197"
source = "{CRATES_IO_REGISTRY}"
checksum = "{SHA_A}"
''')
        result = LockDocumentReader().parse(lock)
        assert len(result) == 1
        desc = result.pop()
        assert desc.name == "serde"
        assert desc.version == Version.parse("1.0.197")
        assert desc.source == CRATES_IO_REGISTRY
        assert desc.checksum == SHA_A

    def test_string_dependencies(self, tmp_path: Path) -> None:
        lock = _write(tmp_path, f'''
[[package]]
name = "foo"
version = "1.0.0"
source = "{CRATES_IO_REGISTRY}"
checksum = "{SHA_A}"
dependencies = [
  "libc",
  "cfg-if 1.0.0",
  "bar 0.3.1 ({CRATES_IO_REGISTRY})",
]
''')
        (desc,) = parse_lockfile(lock)
        assert [(d.name, d.req) for d in desc.dependencies] == [
            ("libc", "*"), ("cfg-if", "^1.0.0"), ("bar", "^0.3.1"),
        ]
        assert all(d.kind == "normal" and d.target is None for d in desc.dependencies)

    def test_table_dependencies(self, tmp_path: Path) -> None:
        lock = _write(tmp_path, f'''
[[package]]
name = "foo"
version = "1.0.0"
source = "{CRATES_IO_REGISTRY}"
checksum = "{SHA_A}"
dependencies = [
  {{ name = "winapi", req = "^0.3", target = "cfg(windows)", kind = "build", optional = true, features = ["std"] }},
  {{ name = "rand_core", version = "0.6.4", default-features = false, package = "rand-core" }},
]

[package.features]
default = ["std"]
std = []
''')
        (desc,) = parse_lockfile(lock)
        winapi, rand = desc.dependencies
        assert winapi.target == Cfg(Name("windows"))
        assert winapi.kind == "build"
        assert winapi.optional is True
        assert winapi.features == ("std",)
        assert rand.req == "^0.6.4"
        assert rand.default_features is False
        assert rand.package == "rand-core"
        assert desc.feature_map() == {"default": ["std"], "std": []}

    def test_identical_duplicates_collapse(self, tmp_path: Path) -> None:
        entry = f'[[package]]\nname = "foo"\nversion = "1.0.0"\nsource = "{CRATES_IO_REGISTRY}"\nchecksum = "{SHA_A}"\n\n'
        assert len(parse_lockfile(_write(tmp_path, entry * 2))) == 1

    def test_verbatim_target_reaches_index_line(self, tmp_path: Path) -> None:
        lock = _write(tmp_path, f'''
[[package]]
name = "foo"
version = "1.0.0"
source = "{CRATES_IO_REGISTRY}"
checksum = "{SHA_A}"
dependencies = [{{ name = "libc", req = "^0.2", target = 'cfg(all(unix,target_os="linux"))' }}]
''')
        (desc,) = parse_lockfile(lock)
        line = MirrorIndexEntry.from_descriptor(desc).to_json_line()
        assert json.loads(line)["deps"][0]["target"] == 'cfg(all(unix,target_os="linux"))'


class TestLegacyFormat:
    def test_metadata_checksums(self, tmp_path: Path) -> None:
        lock = _write(tmp_path, f'''
[root]
name = "myapp"
version = "0.1.0"
dependencies = ["foo 1.0.0 ({CRATES_IO_REGISTRY})"]

[[package]]
name = "foo"
version = "1.0.0"
source = "{CRATES_IO_REGISTRY}"

[metadata]
"checksum foo 1.0.0 ({CRATES_IO_REGISTRY})" = "{SHA_B}"
''')
        (desc,) = parse_lockfile(lock)
        assert desc.checksum == SHA_B

    def test_none_checksum_is_unresolved(self, tmp_path: Path) -> None:
        lock = _write(tmp_path, f'''
[[package]]
name = "foo"
version = "1.0.0"
source = "{CRATES_IO_REGISTRY}"

[metadata]
"checksum foo 1.0.0 ({CRATES_IO_REGISTRY})" = "<none>"
''')
        with pytest.raises(UnresolvedDependency, match="缺少 checksum"):
            parse_lockfile(lock)


class TestErrors:
    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(MalformedLockDocument, match="无法读取锁文件"):
            parse_lockfile(tmp_path / "nope.lock")

    def test_bad_toml(self, tmp_path: Path) -> None:
        with pytest.raises(MalformedLockDocument, match="TOML 语法错误"):
            parse_lockfile(_write(tmp_path, "[[package]\nname = "))

    def test_package_not_array(self, tmp_path: Path) -> None:
        with pytest.raises(MalformedLockDocument, match="表数组"):
            parse_lockfile(_write(tmp_path, 'package = "serde"\n'))

    def test_missing_name(self, tmp_path: Path) -> None:
        with pytest.raises(MalformedLockDocument, match="缺少 name"):
            parse_lockfile(_write(tmp_path, '[[package]]\nversion = "1.0.0"\n'))

    def test_invalid_version(self, tmp_path: Path) -> None:
        lock = _write(tmp_path, f'''
[[package]]
name = "foo"
version = "2.0"
source = "{CRATES_IO_REGISTRY}"
checksum = "{SHA_A}"
''')
        with pytest.raises(MalformedLockDocument, match="版本号不合法"):
            parse_lockfile(lock)

    def test_checksum_without_source(self, tmp_path: Path) -> None:
        lock = _write(tmp_path, f'[[package]]\nname = "foo"\nversion = "1.0.0"\nchecksum = "{SHA_A}"\n')
        with pytest.raises(UnresolvedDependency, match="缺少 source"):
            parse_lockfile(lock)

    def test_sparse_without_checksum(self, tmp_path: Path) -> None:
        lock = _write(tmp_path, '''
[[package]]
name = "foo"
version = "1.0.0"
source = "sparse+https://index.crates.io/"
''')
        with pytest.raises(UnresolvedDependency):
            parse_lockfile(lock)

    def test_unsupported_checksum_algorithm(self, tmp_path: Path) -> None:
        lock = _write(tmp_path, f'''
[[package]]
name = "foo"
version = "1.0.0"
source = "{CRATES_IO_REGISTRY}"
checksum = "md5:{"0" * 32}"
''')
        with pytest.raises(MalformedLockDocument, match="checksum 无效"):
            parse_lockfile(lock)

    def test_bad_target_predicate(self, tmp_path: Path) -> None:
        lock = _write(tmp_path, f'''
[[package]]
name = "foo"
version = "1.0.0"
source = "{CRATES_IO_REGISTRY}"
checksum = "{SHA_A}"
dependencies = [{{ name = "bar", target = "cfg(all(unix" }}]
''')
        with pytest.raises(MalformedLockDocument, match="平台谓词"):
            parse_lockfile(lock)

    def test_unknown_dependency_kind(self, tmp_path: Path) -> None:
        lock = _write(tmp_path, f'''
[[package]]
name = "foo"
version = "1.0.0"
source = "{CRATES_IO_REGISTRY}"
checksum = "{SHA_A}"
dependencies = [{{ name = "bar", kind = "runtime" }}]
''')
        with pytest.raises(MalformedLockDocument, match="kind 未知"):
            parse_lockfile(lock)

    @pytest.mark.parametrize("name", ["../x", "a/b", "..", "foo bar"])
    def test_unsafe_package_name(self, tmp_path: Path, name: str) -> None:
        lock = _write(tmp_path, f'''
[[package]]
name = "{name}"
version = "1.0.0"
source = "{CRATES_IO_REGISTRY}"
checksum = "{SHA_A}"
''')
        with pytest.raises(MalformedLockDocument, match="包名不合法"):
            parse_lockfile(lock)

    @pytest.mark.parametrize("dep", [
        '"../x 1.0.0"',
        '{ name = "a/b" }',
        '{ name = "rand_core", package = "../rand" }',
    ])
    def test_unsafe_dependency_name(self, tmp_path: Path, dep: str) -> None:
        lock = _write(tmp_path, f'''
[[package]]
name = "foo"
version = "1.0.0"
source = "{CRATES_IO_REGISTRY}"
checksum = "{SHA_A}"
dependencies = [{dep}]
''')
        with pytest.raises(MalformedLockDocument, match="包名不合法"):
            parse_lockfile(lock)

    def test_dependencies_must_be_array(self, tmp_path: Path) -> None:
        lock = _write(tmp_path, f'''
[[package]]
name = "foo"
version = "1.0.0"
source = "{CRATES_IO_REGISTRY}"
checksum = "{SHA_A}"
dependencies = "serde"
''')
        with pytest.raises(MalformedLockDocument, match="dependencies 必须是数组"):
            parse_lockfile(lock)

    @pytest.mark.parametrize("flag", ['optional = "no"', "default-features = 0", 'default_features = "false"'])
    def test_dependency_flags_must_be_bool(self, tmp_path: Path, flag: str) -> None:
        lock = _write(tmp_path, f'''
[[package]]
name = "foo"
version = "1.0.0"
source = "{CRATES_IO_REGISTRY}"
checksum = "{SHA_A}"
dependencies = [{{ name = "bar", {flag} }}]
''')
        with pytest.raises(MalformedLockDocument, match="必须是布尔值"):
            parse_lockfile(lock)

    def test_same_version_from_two_sources(self, tmp_path: Path) -> None:
        lock = _write(tmp_path, f'''
[[package]]
name = "foo"
version = "1.0.0"
source = "{CRATES_IO_REGISTRY}"
checksum = "{SHA_A}"

[[package]]
name = "foo"
version = "1.0.0"
source = "sparse+https://index.crates.io/"
checksum = "{SHA_A}"
''')
        with pytest.raises(MalformedLockDocument, match="出现了多次"):
            parse_lockfile(lock)

    def test_same_version_with_different_checksums(self, tmp_path: Path) -> None:
        entry = '[[package]]\nname = "foo"\nversion = "1.0.0"\nsource = "{src}"\nchecksum = "{sha}"\n\n'
        lock = _write(
            tmp_path,
            entry.format(src=CRATES_IO_REGISTRY, sha=SHA_A) + entry.format(src=CRATES_IO_REGISTRY, sha=SHA_B),
        )
        with pytest.raises(MalformedLockDocument, match="出现了多次"):
            parse_lockfile(lock)
