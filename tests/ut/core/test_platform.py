"""平台谓词解析测试"""

import pytest

from cratemirror.core.platform import All, Any_, Cfg, KeyValue, Name, Not, Triple, parse_predicate


class TestParsePredicate:
    def test_all_with_key_value(self) -> None:
        pred = parse_predicate('cfg(all(unix, target_arch = "x86_64"))')
        assert pred == Cfg(All((Name("unix"), KeyValue("target_arch", "x86_64"))))
        assert str(pred) == 'cfg(all(unix, target_arch = "x86_64"))'

    def test_original_text_kept_verbatim(self) -> None:
        text = 'cfg(all(unix,target_os="linux"))'
        pred = parse_predicate(text)
        assert str(pred) == text
        assert pred.canonical() == 'cfg(all(unix, target_os = "linux"))'

    def test_spacing_does_not_affect_equality(self) -> None:
        pred = parse_predicate("cfg(any( windows,unix ))")
        assert str(pred) == "cfg(any( windows,unix ))"
        assert pred.canonical() == "cfg(any(windows, unix))"
        assert pred == Cfg(Any_((Name("windows"), Name("unix"))))
        assert pred == parse_predicate("cfg(any(windows, unix))")

    def test_not(self) -> None:
        pred = parse_predicate('cfg(not(target_os = "macos"))')
        assert pred == Cfg(Not(KeyValue("target_os", "macos")))

    def test_nested(self) -> None:
        text = 'cfg(any(all(target_os = "linux", not(target_env = "musl")), windows))'
        assert str(parse_predicate(text)) == text

    def test_triple(self) -> None:
        pred = parse_predicate("x86_64-pc-windows-gnu")
        assert pred == Triple("x86_64-pc-windows-gnu")
        assert str(pred) == "x86_64-pc-windows-gnu"


class TestSyntaxErrors:
    @pytest.mark.parametrize("text", [
        "cfg(all(unix)",
        "cfg(foo(bar))",
        'cfg(target_os = "linux)',
        "cfg(unix windows)",
    ])
    def test_bad_cfg(self, text: str) -> None:
        with pytest.raises(ValueError, match="平台谓词"):
            parse_predicate(text)

    def test_unrecognized(self) -> None:
        with pytest.raises(ValueError, match="无法识别的平台谓词"):
            parse_predicate("not a predicate!")
