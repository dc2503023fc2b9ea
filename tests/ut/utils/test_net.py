"""来源标识拆分与 URL scheme 校验测试"""

import pytest

from cratemirror.core.exceptions import ValidationError
from cratemirror.utils.net import FETCH_SCHEMES, split_source_id, url_scheme, validate_url_scheme


class TestSplitSourceId:
    def test_registry(self) -> None:
        assert split_source_id("registry+https://github.com/rust-lang/crates.io-index") == (
            "registry", "https://github.com/rust-lang/crates.io-index",
        )

    def test_git_keeps_fragment(self) -> None:
        assert split_source_id("git+https://github.com/a/b?rev=1#abc") == ("git", "https://github.com/a/b?rev=1#abc")

    def test_no_kind(self) -> None:
        assert split_source_id("https://example.com/a+b") == ("", "https://example.com/a+b")


class TestValidateUrlScheme:
    def test_https_ok(self) -> None:
        assert validate_url_scheme("https://example.com/api") == "https"

    def test_file_rejected_by_default(self) -> None:
        with pytest.raises(ValidationError, match="不允许的 URL 协议"):
            validate_url_scheme("file:///etc/passwd")

    def test_file_allowed_for_fetch(self) -> None:
        assert validate_url_scheme("file:///srv/crates/a.crate", allowed=FETCH_SCHEMES) == "file"

    def test_ftp_rejected(self) -> None:
        with pytest.raises(ValidationError, match="不允许的 URL 协议"):
            validate_url_scheme("ftp://evil.com/payload", allowed=FETCH_SCHEMES)

    def test_context_in_error(self) -> None:
        with pytest.raises(ValidationError, match="上游下载"):
            validate_url_scheme("gopher://x", context="上游下载")

    @pytest.mark.parametrize("url", ["/srv/crates", "C:\\crates\\a.crate", "relative/dir"])
    def test_bare_paths_are_file(self, url: str) -> None:
        assert url_scheme(url) == "file"
