import pytest

from slackduty.errors import FormatError, SelectorError, UnsupportedKindError
from slackduty.selector import (
    EXCLUDE_KINDS,
    USERGROUP_KINDS,
    Selector,
    SelectorKind,
    parse,
    parse_all,
)


@pytest.mark.parametrize(
    "raw, kind, value",
    [
        ("id:PABC123", SelectorKind.ID, "PABC123"),
        ("name:backend-primary", SelectorKind.NAME, "backend-primary"),
        ("email:a@example.com", SelectorKind.EMAIL, "a@example.com"),
        ("handle:backend-oncall", SelectorKind.HANDLE, "backend-oncall"),
        ("NAME:Backend Primary", SelectorKind.NAME, "Backend Primary"),
    ],
)
def test_parse_valid(raw, kind, value):
    sel = parse(raw)
    assert sel == Selector(kind, value)
    assert str(sel) == f"{kind.value}:{value}"


@pytest.mark.parametrize("raw", ["idonly", "a:b:c", ":value", "id:", ""])
def test_parse_malformed_raises_format_error(raw):
    with pytest.raises(FormatError):
        parse(raw)


def test_parse_non_string_is_format_error():
    with pytest.raises(FormatError):
        parse(None)  # type: ignore[arg-type]


def test_parse_unknown_kind():
    with pytest.raises(UnsupportedKindError) as ei:
        parse("foo:bar")
    assert ei.value.kind == "foo"
    assert ei.value.value == "bar"


def test_selector_errors_are_value_errors():
    with pytest.raises(ValueError):
        parse("nope")
    assert issubclass(SelectorError, ValueError)


def test_validate_kind_accepts_and_rejects():
    sel = parse("handle:team")
    assert sel.validate_kind(USERGROUP_KINDS, "usergroup") is sel

    with pytest.raises(UnsupportedKindError) as ei:
        sel.validate_kind(EXCLUDE_KINDS, "exclude")
    assert ei.value.context == "exclude"
    assert ei.value.allowed == ("email", "id")
    assert "handle:team" in str(ei.value)


def test_parse_all_keeps_order():
    sels = parse_all(["id:1", "email:x@y.z"])
    assert [str(s) for s in sels] == ["id:1", "email:x@y.z"]
