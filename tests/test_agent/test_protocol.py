import pytest

from vibe_devops.agent_protocol import (
    ExplanationStreamExtractor,
    extract_json_object,
    parse_action,
)
from vibe_devops.exceptions import ProtocolError


def test_parse_done_action_inside_code_fence():
    action = parse_action('```json\n{"type":"done","command":"ls -la","explanation":"list"}\n```')
    assert action.type == "done"
    assert action.command == "ls -la"
    assert action.explanation == "list"


def test_parse_action_surrounded_by_prose():
    text = 'Sure! Here you go: {"type":"answer","explanation":"It is fine."} Hope that helps.'
    action = parse_action(text)
    assert action.type == "answer"
    assert action.explanation == "It is fine."


def test_braces_inside_strings_do_not_close_object():
    text = '{"type":"done","command":"awk \'{print $1}\' file","explanation":"a } brace and a \\" quote"}'
    action = parse_action(text)
    assert action.command == "awk '{print $1}' file"
    assert action.explanation == 'a } brace and a " quote'


def test_parse_tool_action_keeps_input_and_thought():
    action = parse_action(
        '{"type":"tool","thought":"Checking files...","tool":" list_dir ","input":{"path":"."}}'
    )
    assert action.tool == "list_dir"
    assert action.input == {"path": "."}
    assert action.thought == "Checking files..."
    assert action.input_json() == '{"path":"."}'


def test_input_json_keeps_non_ascii():
    action = parse_action('{"type":"tool","tool":"grep","input":{"pattern":"lỗi"}}')
    assert action.input_json() == '{"pattern":"lỗi"}'


@pytest.mark.parametrize(
    ("text", "message"),
    [
        ('{"type":"done","explanation":"x"}', "missing field: command"),
        ('{"type":"done","command":"   "}', "missing field: command"),
        ('{"type":"tool","input":{}}', "missing field: tool"),
        ('{"type":"answer"}', "missing field: explanation"),
        ('{"command":"ls"}', "missing field: type"),
        ('{"type":"shell","command":"ls"}', "unknown type: shell"),
        ('{"type":"done","command":"ls","extra":1}', "unknown field: extra"),
        ('{"type":"tool","tool":"grep","input":"x"}', "input must be an object"),
        ('{"type":"done","command":42}', "invalid field: command must be a string"),
    ],
)
def test_parse_action_rejects_invalid_actions(text, message):
    with pytest.raises(ProtocolError) as exc:
        parse_action(text)
    assert message in str(exc.value)


def test_no_json_object():
    with pytest.raises(ProtocolError, match="no JSON object found"):
        parse_action("I cannot help with that.")


def test_unterminated_json_object():
    with pytest.raises(ProtocolError, match="unterminated JSON object"):
        extract_json_object('{"type":"done","command":"ls"')


def test_invalid_json_inside_balanced_braces():
    with pytest.raises(ProtocolError, match="invalid JSON action"):
        parse_action("{type: done}")


def test_extract_first_object_only():
    assert extract_json_object('{"a":1} {"b":2}') == '{"a":1}'


def _feed_all(chunks: list[str]) -> str:
    extractor = ExplanationStreamExtractor()
    return "".join(extractor.feed(chunk) for chunk in chunks)


def test_stream_extractor_emits_only_explanation():
    text = '{"type":"done","command":"ls","thought":"hidden","explanation":"Lists files"}'
    assert _feed_all([text]) == "\nLists files"


def test_stream_extractor_handles_any_chunk_split():
    text = '{"type":"answer","explanation":"Line one\\nTab\\tand \\"quoted\\" \\u00e9"}'
    expected = '\nLine one\nTab\tand "quoted" é'
    for size in (1, 2, 3, 7):
        chunks = [text[i : i + size] for i in range(0, len(text), size)]
        assert _feed_all(chunks) == expected


def test_stream_extractor_ignores_nested_explanation_keys():
    text = '{"type":"tool","tool":"grep","input":{"explanation":"nested"},"thought":"x"}'
    assert _feed_all([text]) == ""


def test_stream_extractor_ignores_prefix_and_trailing_text():
    extractor = ExplanationStreamExtractor()
    out = extractor.feed('noise "explanation":"no" {"explanation":"yes"} {"explanation":"again"}')
    assert out == "\nyes"
    assert extractor.started


def test_stream_extractor_surrogate_pairs():
    assert _feed_all(['{"explanation":"\\ud83d', '\\ude00"}']) == "\n\U0001F600"
    assert _feed_all(['{"explanation":"\\ude00"}']) == "\n�"
