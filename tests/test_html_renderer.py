from __future__ import annotations

import pytest

from core.bindings.models import Binding
from core.render.html_renderer import render_template
from core.templates.models import TemplateSource
from core.utils.errors import RenderFallbackExhausted

DATA = {"name": "Acme", "items": [{"sku": "X1"}]}


def _order_bindings(sku_selector: str | None = "items[0].sku") -> list[Binding]:
    return [
        Binding(id="b1", template_id="t1", placeholder="[[FIELD:name]]", selector="name"),
        Binding(id="b2", template_id="t1", placeholder="{{items[0].sku}}", selector=sku_selector),
    ]


def test_render_substitutes_mapped_values_verbatim() -> None:
    template = TemplateSource(id="t1", html_content="<h1>[[FIELD:name]]</h1><p>{{items[0].sku}}</p>")

    output = render_template(template, _order_bindings(), DATA)

    assert output.content == "<h1>Acme</h1><p>X1</p>"
    assert output.requested_mode == "html"
    assert output.rendered_mode == "html"
    assert output.fell_back is False
    assert output.replace_report.summary.replaced_count == 2
    assert [entry.occurrences for entry in output.replace_report.entries] == [1, 1]


def test_render_leaves_unmapped_literal_and_blanks_missing_values() -> None:
    template = TemplateSource(id="t1", html_content="<h1>[[FIELD:name]]</h1><p>{{items[0].sku}}</p><i>{{x}}</i>")
    bindings = _order_bindings(sku_selector=None) + [
        Binding(id="b3", template_id="t1", placeholder="{{x}}", selector="does.not.exist"),
    ]

    output = render_template(template, bindings, DATA)

    assert output.content == "<h1>Acme</h1><p>{{items[0].sku}}</p><i></i>"
    statuses = {entry.placeholder: entry.status for entry in output.replace_report.entries}
    assert statuses == {
        "[[FIELD:name]]": "replaced",
        "{{items[0].sku}}": "unmapped",
        "{{x}}": "missing",
    }
    summary = output.replace_report.summary
    assert (summary.replaced_count, summary.missing_count, summary.unmapped_count) == (1, 1, 1)


def test_render_is_deterministic() -> None:
    template = TemplateSource(id="t1", html_content="<p>[[FIELD:name]] [[FIELD:name]]</p>", css_content="p{}")

    first = render_template(template, _order_bindings(), DATA)
    second = render_template(template, _order_bindings(), DATA)

    assert first == second
    assert first.replace_report.entries[0].occurrences == 2


def test_substituted_values_are_not_rescanned() -> None:
    template = TemplateSource(id="t1", html_content="<p>{{a}}|{{b}}</p>")
    bindings = [
        Binding(id="b1", template_id="t1", placeholder="{{a}}", selector="a"),
        Binding(id="b2", template_id="t1", placeholder="{{b}}", selector="b"),
    ]

    output = render_template(template, bindings, {"a": "{{b}}", "b": "B"})

    assert output.content == "<p>{{b}}|B</p>"


def test_css_and_js_are_inserted_into_document() -> None:
    template = TemplateSource(
        id="t1",
        html_content="<html><head><title>x</title></head><body><p>hi</p></body></html>",
        css_content="p { color: red; }",
        js_content="console.log(1);",
    )

    output = render_template(template, [], {})

    assert output.content == (
        "<html><head><title>x</title><style>p { color: red; }</style></head>"
        "<body><p>hi</p><script>console.log(1);</script></body></html>"
    )


def test_css_and_js_are_appended_without_head_or_body() -> None:
    template = TemplateSource(id="t1", html_content="<p>hi</p>", css_content="p{}", js_content="go();")

    output = render_template(template, [], {})

    assert output.content == "<p>hi</p><style>p{}</style><script>go();</script>"


def test_svg_mode_renders_svg_with_inline_styles() -> None:
    template = TemplateSource(
        id="t1",
        html_content="<p>[[FIELD:name]]</p>",
        svg_content="<svg><text>[[FIELD:name]]</text></svg>",
        css_content="text{}",
    )

    output = render_template(template, _order_bindings(), DATA, "svg")

    assert output.rendered_mode == "svg"
    assert output.fell_back is False
    assert output.content == "<svg><text>Acme</text><style>text{}</style></svg>"


def test_svg_and_pdf_fall_back_to_html() -> None:
    template = TemplateSource(id="t1", html_content="<p>[[FIELD:name]]</p>")

    for mode in ("svg", "pdf"):
        output = render_template(template, _order_bindings(), DATA, mode)
        assert output.requested_mode == mode
        assert output.rendered_mode == "html"
        assert output.fell_back is True
        assert output.content == "<p>Acme</p>"


def test_pdf_artifact_is_returned_unchanged() -> None:
    template = TemplateSource(id="t1", html_content="<p>[[FIELD:name]]</p>", pdf_content="%PDF-1.7 [[FIELD:name]]")

    output = render_template(template, _order_bindings(), DATA, "pdf")

    assert output.rendered_mode == "pdf"
    assert output.content == "%PDF-1.7 [[FIELD:name]]"
    assert output.replace_report.entries == []


def test_missing_artifacts_raise_fallback_exhausted() -> None:
    template = TemplateSource(id="t1", css_content="p{}")

    with pytest.raises(RenderFallbackExhausted) as exc_info:
        render_template(template, [], {}, "svg")

    assert exc_info.value.mode == "svg"
    assert exc_info.value.attempted == ["svg", "html"]


def test_unknown_mode_is_rejected() -> None:
    template = TemplateSource(id="t1", html_content="<p></p>")

    with pytest.raises(ValueError, match="Unsupported render mode"):
        render_template(template, [], {}, "docx")  # type: ignore[arg-type]


def test_annotated_render_wraps_each_occurrence() -> None:
    template = TemplateSource(id="t1", html_content="<p>[[FIELD:name]]</p><p>{{items[0].sku}}</p>")

    output = render_template(template, _order_bindings(sku_selector=None), DATA, annotate_tokens=True)

    assert (
        '<span class="binder-token" data-binder-token="[[FIELD:name]]" data-mapped="true">Acme</span>'
        in output.content
    )
    assert (
        '<span class="binder-token" data-binder-token="{{items[0].sku}}" data-mapped="false">'
        "{{items[0].sku}}</span>" in output.content
    )


def test_longer_placeholder_wins_over_prefix() -> None:
    template = TemplateSource(id="t1", html_content="<p>${a} ${ab}</p>")
    bindings = [
        Binding(id="b1", template_id="t1", placeholder="${a}", selector="a"),
        Binding(id="b2", template_id="t1", placeholder="${ab}", selector="ab"),
    ]

    output = render_template(template, bindings, {"a": "1", "ab": "2"})

    assert output.content == "<p>1 2</p>"


def test_annotated_render_keeps_attributes_styles_and_scripts_plain() -> None:
    template = TemplateSource(
        id="t1",
        html_content='<html><head></head><body><a href="{{url}}">{{url}}</a></body></html>',
        css_content="a { color: {{color}}; }",
        js_content="var target = '{{url}}';",
    )
    bindings = [
        Binding(id="b1", template_id="t1", placeholder="{{url}}", selector="url"),
        Binding(id="b2", template_id="t1", placeholder="{{color}}", selector="color"),
    ]

    output = render_template(template, bindings, {"url": "http://x", "color": "red"}, annotate_tokens=True)

    assert 'href="http://x"' in output.content
    assert '<a href="http://x"><span class="binder-token" data-binder-token="{{url}}" data-mapped="true">' in output.content
    assert "<style>a { color: red; }</style>" in output.content
    assert "<script>var target = 'http://x';</script>" in output.content
    assert output.content.count('class="binder-token"') == 1
    assert [entry.occurrences for entry in output.replace_report.entries] == [3, 1]
