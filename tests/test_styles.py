"""Tests for pi.termloop.styles -- colors, style resolution and SGR output."""

from __future__ import annotations

import pytest

from pi.termloop.styles import (
    DEFAULT_ATTRS,
    Attrs,
    ColorDepth,
    Style,
    attrs_to_sgr,
    merge_attrs,
    parse_color,
)


class TestParseColor:
    def test_ansi_name(self) -> None:
        assert parse_color("ansired") == "ansired"

    def test_alias(self) -> None:
        assert parse_color("Red") == "ansired"
        assert parse_color("grey") == "ansigray"

    def test_six_digit_hex(self) -> None:
        assert parse_color("#FF8800") == "ff8800"

    def test_three_digit_hex(self) -> None:
        assert parse_color("#f80") == "ff8800"

    def test_empty_is_default(self) -> None:
        assert parse_color("") == ""

    def test_invalid(self) -> None:
        with pytest.raises(ValueError):
            parse_color("not-a-color")


class TestMergeAttrs:
    def test_later_values_win(self) -> None:
        merged = merge_attrs([Attrs(bold=True, color="ansired"), Attrs(color="ansiblue")])
        assert merged.bold is True
        assert merged.color == "ansiblue"

    def test_none_does_not_override(self) -> None:
        merged = merge_attrs([Attrs(italic=True), Attrs()])
        assert merged.italic is True


class TestStyle:
    def test_inline_attributes(self) -> None:
        attrs = Style().get_attrs_for_style_str("bold fg:ansigreen bg:#000000")
        assert attrs.bold is True
        assert attrs.color == "ansigreen"
        assert attrs.bgcolor == "000000"

    def test_unset_fields_come_from_defaults(self) -> None:
        attrs = Style().get_attrs_for_style_str("")
        assert attrs == DEFAULT_ATTRS

    def test_no_prefix_disables(self) -> None:
        style = Style([("title", "bold underline")])
        attrs = style.get_attrs_for_style_str("class:title nobold")
        assert attrs.bold is False
        assert attrs.underline is True

    def test_class_rule(self) -> None:
        style = Style([("prompt", "ansicyan")])
        assert style.get_attrs_for_style_str("class:prompt").color == "ansicyan"

    def test_inline_after_class_wins(self) -> None:
        style = Style([("prompt", "ansicyan")])
        assert style.get_attrs_for_style_str("class:prompt ansired").color == "ansired"

    def test_dotted_selector_needs_all_classes(self) -> None:
        style = Style([("a.b", "bold")])
        assert style.get_attrs_for_style_str("class:a").bold is False
        assert style.get_attrs_for_style_str("class:a,b").bold is True

    def test_later_rule_wins(self) -> None:
        style = Style([("x", "ansired"), ("x", "ansiblue")])
        assert style.get_attrs_for_style_str("class:x").color == "ansiblue"

    def test_nested_class_in_rule(self) -> None:
        style = Style([("base", "italic"), ("title", "class:base bold")])
        attrs = style.get_attrs_for_style_str("class:title")
        assert attrs.italic is True
        assert attrs.bold is True

    def test_empty_selector_is_default_rule(self) -> None:
        style = Style([("", "ansiyellow")])
        assert style.get_attrs_for_style_str("").color == "ansiyellow"

    def test_bracket_markers_are_ignored(self) -> None:
        attrs = Style().get_attrs_for_style_str("[Transparent] bold")
        assert attrs.bold is True

    def test_mapping_rules(self) -> None:
        style = Style({"error": "ansired bold"})
        assert style.get_attrs_for_style_str("class:error").bold is True

    def test_invalidation_hash_tracks_rules(self) -> None:
        assert Style([("a", "bold")]).invalidation_hash() == Style([("a", "bold")]).invalidation_hash()
        assert Style([("a", "bold")]).invalidation_hash() != Style([("a", "italic")]).invalidation_hash()


class TestAttrsToSgr:
    def test_plain_is_reset(self) -> None:
        assert attrs_to_sgr(Attrs()) == "\x1b[0m"

    def test_bold_and_ansi_color(self) -> None:
        assert attrs_to_sgr(Attrs(bold=True, color="ansired")) == "\x1b[0;31;1m"

    def test_ansi_background(self) -> None:
        assert attrs_to_sgr(Attrs(bgcolor="ansiblue")) == "\x1b[0;44m"

    def test_true_color(self) -> None:
        sgr = attrs_to_sgr(Attrs(color="102030"), ColorDepth.DEPTH_24_BIT)
        assert sgr == "\x1b[0;38;2;16;32;48m"

    def test_256_color_mapping(self) -> None:
        assert attrs_to_sgr(Attrs(color="ff0000"), ColorDepth.DEPTH_8_BIT) == "\x1b[0;38;5;196m"

    def test_16_color_mapping(self) -> None:
        assert attrs_to_sgr(Attrs(color="ff0000"), ColorDepth.DEPTH_4_BIT) == "\x1b[0;91m"

    def test_monochrome_drops_colors(self) -> None:
        sgr = attrs_to_sgr(Attrs(color="ansired", underline=True), ColorDepth.DEPTH_1_BIT)
        assert sgr == "\x1b[0;4m"


class TestColorDepth:
    def test_aliases(self) -> None:
        assert ColorDepth.TRUE_COLOR is ColorDepth.DEPTH_24_BIT
        assert ColorDepth.DEFAULT is ColorDepth.DEPTH_8_BIT

    def test_no_color_forces_monochrome(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("NO_COLOR", "1")
        assert ColorDepth.from_env() is ColorDepth.DEPTH_1_BIT

    def test_env_override(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("NO_COLOR", raising=False)
        monkeypatch.setenv("PI_TERMLOOP_COLOR_DEPTH", "DEPTH_4_BIT")
        assert ColorDepth.from_env() is ColorDepth.DEPTH_4_BIT

    def test_no_override(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("NO_COLOR", raising=False)
        monkeypatch.delenv("PI_TERMLOOP_COLOR_DEPTH", raising=False)
        assert ColorDepth.from_env() is None
