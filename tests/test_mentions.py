from agentbridge.agent.mentions import (
    ContainerNode,
    MentionNode,
    contains_mention,
    contains_name_token,
    extract_plain_text,
    is_authored_by_self,
    mentioned_account_ids,
    parse_adf,
)
from tests.conftest import adf_doc, adf_mention, adf_text


def test_parse_adf_builds_tagged_nodes():
    node = parse_adf(adf_doc(adf_text("hi "), adf_mention("svc-1")))
    assert isinstance(node, ContainerNode)
    paragraph = node.children[0]
    assert isinstance(paragraph.children[1], MentionNode)
    assert paragraph.children[1].account_id == "svc-1"


def test_mention_found_at_any_depth_including_arrays():
    body = {
        "type": "doc",
        "content": [
            {"type": "bulletList", "content": [[{"type": "listItem", "content": [adf_mention("svc-1")]}]]}
        ],
    }
    assert contains_mention(body, "svc-1")
    assert contains_mention([[body]], "svc-1")


def test_mention_of_someone_else_does_not_count():
    body = adf_doc(adf_text("cc "), adf_mention("u-2", "@Dana"))
    assert not contains_mention(body, "svc-1")
    assert not contains_mention(body, None)
    assert mentioned_account_ids(body) == ["u-2"]


def test_plain_string_body_has_no_mentions():
    assert not contains_mention("@Blink please help", "svc-1")
    assert extract_plain_text("@Blink please help") == "@Blink please help"


def test_extract_plain_text_substitutes_mentions_and_breaks():
    body = adf_doc(adf_mention("svc-1", "@Blink"), adf_text(" fix the build"), {"type": "hardBreak"}, adf_text("thanks"))
    assert extract_plain_text(body) == "@Blink fix the build\nthanks"
    assert extract_plain_text(None) == ""


def test_is_authored_by_self():
    assert is_authored_by_self("svc-1", "svc-1")
    assert not is_authored_by_self("u-1", "svc-1")
    assert not is_authored_by_self(None, None)


def test_contains_name_token():
    assert contains_name_token("hey @blink can you look?", "blink")
    assert contains_name_token("BLINK, ping", "blink")
    assert not contains_name_token("blinking lights", "blink")
    assert not contains_name_token("re-blink it", "blink")
    assert not contains_name_token(None, "blink")
    assert not contains_name_token("blink", "")
