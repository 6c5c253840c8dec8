import asyncio
import base64
import io

import pytest
from PIL import Image

from nodeflow.clients import HttpResponse
from nodeflow.errors import ExecutionError, ValidationError
from nodeflow.nodes.api_call import ApiCall, build_request
from nodeflow.nodes.conditional import Conditional, evaluate
from nodeflow.nodes.input import ImageInput, ImagePayload, TextInput
from nodeflow.nodes.output import MarkdownOutput, TextOutput
from nodeflow.nodes.text_combiner import TextCombiner
from nodeflow.runtime.contracts import NodeContext, Services


def run_node(node, inputs=None, config=None):
    ctx = NodeContext(
        run_id="r1",
        node_id="n1",
        inputs=inputs or {},
        params=node.validate(config or {}),
        services=node.services,
        logger=lambda msg: None,
        emit=lambda evt: None,
        timeout_ms=1000,
    )
    return asyncio.run(node.execute(ctx))


def png_bytes(size=(4, 3)):
    buf = io.BytesIO()
    Image.new("RGB", size, color=(255, 0, 0)).save(buf, format="PNG")
    return buf.getvalue()


@pytest.mark.parametrize(
    "operator,value,target,case_sensitive,expected",
    [
        ("equals", "yes", "yes", True, True),
        ("equals", "Yes", "yes", True, False),
        ("equals", "Yes", "yes", False, True),
        ("not_equals", "a", "b", True, True),
        ("contains", "Hello World", "world", False, True),
        ("not_contains", "Hello", "x", True, True),
        ("starts_with", "prefix-rest", "prefix", True, True),
        ("ends_with", "file.txt", ".md", True, False),
        ("gt", "10", "9", True, True),
        ("lte", 3, "3.0", True, True),
        ("is_empty", "   ", None, True, True),
        ("is_not_empty", "x", None, True, True),
        ("regex", "order #123", r"#\d+", True, True),
        ("regex", "ABC", "abc", False, True),
    ],
)
def test_evaluate_operators(operator, value, target, case_sensitive, expected):
    assert evaluate(operator, value, target, case_sensitive) is expected


@pytest.mark.parametrize(
    "operator,value,target,code",
    [
        ("gt", "abc", "1", "NOT_NUMERIC"),
        ("equals", "abc", None, "MISSING_TARGET"),
        ("regex", "abc", "(", "INVALID_REGEX"),
    ],
)
def test_evaluate_errors(operator, value, target, code):
    with pytest.raises(ExecutionError) as exc:
        evaluate(operator, value, target)
    assert code in str(exc.value)


def test_conditional_routes_value_to_selected_port():
    result = run_node(Conditional(), {"value": "yes"}, {"operator": "equals", "target": "yes"})
    assert result == {"selectedBranch": "true", "true": "yes"}

    result = run_node(Conditional(), {"value": "no", "target": "yes"}, {})
    assert result == {"selectedBranch": "false", "false": "no"}


def test_conditional_rejects_bad_regex_before_run():
    with pytest.raises(ValidationError) as exc:
        Conditional().validate({"operator": "regex", "target": "("})
    assert exc.value.code == "INVALID_REGEX"


def test_conditional_rejects_unknown_operator():
    with pytest.raises(ValidationError) as exc:
        Conditional().validate({"operator": "between"})
    assert exc.value.code == "INVALID_CHOICE"


def test_text_input_renders_placeholders_from_inputs():
    result = run_node(TextInput(), {"name": "Ada"}, {"text": "Hello {name}, {unknown}"})
    assert result == {"text": "Hello Ada, {unknown}"}


def test_text_input_doubled_braces_are_literal():
    result = run_node(TextInput(), {"name": "Ada"}, {"text": "use {{ here }} for {name}: {{name}}"})
    assert result == {"text": "use { here } for Ada: {name}"}


@pytest.mark.parametrize("text", ["use { here", "close } only", "{a{b}}", "{{name}"])
def test_text_input_rejects_lone_braces(text):
    with pytest.raises(ValidationError) as exc:
        TextInput().validate({"text": text})
    assert exc.value.code == "MALFORMED_TEMPLATE"


def test_text_input_uses_text_input_when_config_empty():
    assert run_node(TextInput(), {"text": "given"}) == {"text": "given"}


def test_image_input_loads_file(tmp_path):
    path = tmp_path / "red.png"
    path.write_bytes(png_bytes())

    image = run_node(ImageInput(), config={"path": str(path)})["image"]

    assert isinstance(image, ImagePayload)
    assert (image.format, image.width, image.height) == ("PNG", 4, 3)
    assert image.mime_type == "image/png"


def test_image_input_decodes_base64_config():
    encoded = base64.b64encode(png_bytes((2, 2))).decode()

    image = run_node(ImageInput(), config={"base64": f"data:image/png;base64,{encoded}"})["image"]

    assert (image.width, image.height) == (2, 2)
    assert image.to_data_url() == f"data:image/png;base64,{encoded}"


def test_image_input_passes_upstream_payload_through():
    payload = ImagePayload(data=b"x", format="PNG", width=1, height=1)
    assert run_node(ImageInput(), {"image": payload}) == {"image": payload}


@pytest.mark.parametrize(
    "config,code",
    [
        ({"path": "a.png", "base64": "AAAA"}, "AMBIGUOUS_IMAGE_SOURCE"),
        ({"base64": base64.b64encode(b"x" * 64).decode(), "max_bytes": 10}, "IMAGE_TOO_LARGE"),
        ({"base64": "not base64!"}, "INVALID_IMAGE"),
    ],
)
def test_image_input_validation_errors(config, code):
    with pytest.raises(ValidationError) as exc:
        ImageInput().validate(config)
    assert exc.value.code == code


def test_image_input_missing_file(tmp_path):
    with pytest.raises(ExecutionError) as exc:
        run_node(ImageInput(), config={"path": str(tmp_path / "nope.png")})
    assert "IMAGE_NOT_FOUND" in str(exc.value)


def test_image_input_rejects_non_image_bytes():
    encoded = base64.b64encode(b"definitely not an image").decode()
    with pytest.raises(ExecutionError) as exc:
        run_node(ImageInput(), config={"base64": encoded})
    assert "INVALID_IMAGE" in str(exc.value)


def test_text_output_applies_template_and_strip():
    assert run_node(TextOutput(), {"text": " 42 "}, {"text": "Answer: {text}"}) == {
        "content": "Answer:  42"
    }
    assert run_node(TextOutput(), {"text": " 42 "}, {"strip": False}) == {"content": " 42 "}


def test_text_output_fixed_message():
    assert run_node(TextOutput(), {}, {"text": "Positive feedback"}) == {
        "content": "Positive feedback"
    }


def test_markdown_output_title_and_code_fence():
    result = run_node(
        MarkdownOutput(), {"text": "print(1)\n"}, {"title": "Code", "code_language": "python"}
    )
    assert result == {"content": "# Code\n\n```python\nprint(1)\n```", "format": "markdown"}


def test_text_combiner_joins_in_input_order():
    result = run_node(TextCombiner(), {"a": "x", "b": "", "c": "z"}, {"separator": ","})
    assert result == {"text": "x,,z"}

    result = run_node(
        TextCombiner(), {"a": "x", "b": " ", "c": "z"}, {"separator": ",", "skip_empty": True}
    )
    assert result == {"text": "x,z"}


def test_text_combiner_template_by_name_and_position():
    result = run_node(
        TextCombiner(), {"a": "first", "b": "second"}, {"template": "{b} then {0}"}
    )
    assert result == {"text": "second then first"}


def test_build_request_query_and_body():
    assert build_request("https://x.test/u/{id}", "GET", {"id": 7, "q": "a b"}, None) == (
        "https://x.test/u/7?q=a+b",
        None,
    )
    assert build_request("https://x.test/u/{id}", "POST", {"id": 1, "name": "n"}, None) == (
        "https://x.test/u/1",
        {"name": "n"},
    )
    assert build_request("https://x.test/u?x=1", "POST", {"k": 2}, {"body": True}) == (
        "https://x.test/u?x=1&k=2",
        {"body": True},
    )


class FakeHttp:
    def __init__(self, status=200, body=None):
        self.status = status
        self.body = body
        self.calls = []

    def request(self, url, method, headers, body):
        self.calls.append((url, method, headers, body))
        return HttpResponse(status=self.status, body=self.body)


def test_api_call_success():
    http = FakeHttp(body={"name": "Ada"})
    node = ApiCall(Services(http=http))

    result = run_node(
        node,
        {"params": {"id": 7}},
        {"url": "https://api.test/users/{id}", "headers": {"X-Key": "k"}},
    )

    assert result == {"responseBody": {"name": "Ada"}, "statusCode": 200}
    assert http.calls == [("https://api.test/users/7", "GET", {"X-Key": "k"}, None)]


def test_api_call_non_2xx_fails():
    node = ApiCall(Services(http=FakeHttp(status=503, body="busy")))
    with pytest.raises(ExecutionError) as exc:
        run_node(node, {}, {"url": "https://api.test/"})
    assert "HTTP_STATUS:503" in str(exc.value)


def test_api_call_rejects_non_string_headers():
    with pytest.raises(ValidationError) as exc:
        ApiCall().validate({"url": "https://api.test/", "headers": {"X-Retry": 3}})
    assert exc.value.code == "INVALID_TYPE"
