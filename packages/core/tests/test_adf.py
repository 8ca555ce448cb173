"""Tests for ADF conversion."""

from rosterbot_core.jira.adf import adf_to_text, code_blocks, text_to_adf


class TestTextToAdf:
    def test_paragraphs_and_bold(self):
        doc = text_to_adf("Hello **world**\n\nBye")
        assert doc["type"] == "doc"
        first, second = doc["content"]
        assert first["content"] == [
            {"type": "text", "text": "Hello "},
            {"type": "text", "text": "world", "marks": [{"type": "strong"}]},
        ]
        assert second["content"] == [{"type": "text", "text": "Bye"}]

    def test_heading(self):
        doc = text_to_adf("# Title")
        assert doc["content"][0]["type"] == "heading"
        assert doc["content"][0]["content"][0]["text"] == "Title"

    def test_fenced_block_becomes_code_block(self):
        doc = text_to_adf('Before\n```json\n{"a": 1}\n```\nAfter')
        kinds = [n["type"] for n in doc["content"]]
        assert kinds == ["paragraph", "codeBlock", "paragraph"]
        block = doc["content"][1]
        assert block["attrs"] == {"language": "json"}
        assert block["content"] == [{"type": "text", "text": '{"a": 1}'}]


class TestAdfToText:
    def test_none_and_strings(self):
        assert adf_to_text(None) == ""
        assert adf_to_text("plain") == "plain"

    def test_code_blocks_are_refenced(self):
        text = 'Intro\n```json\n{\n  "a": 1\n}\n```'
        assert adf_to_text(text_to_adf(text)) == text

    def test_jira_reserialized_document(self):
        # Jira adds its own attrs and wraps text differently.
        doc = {
            "type": "doc",
            "version": 1,
            "content": [
                {"type": "paragraph", "content": [{"type": "text", "text": "Line"}, {"type": "hardBreak"}]},
                {
                    "type": "codeBlock",
                    "attrs": {"language": "json", "uniqueId": "abc"},
                    "content": [{"type": "text", "text": '{"a":'}, {"type": "text", "text": " 1}"}],
                },
            ],
        }
        assert adf_to_text(doc) == 'Line\n\n```json\n{"a": 1}\n```'
        assert code_blocks(doc) == ['{"a": 1}']
