from unittest.mock import MagicMock, Mock

import pytest
from openai import OpenAIError

from receiptbot.exceptions import ExtractionError
from receiptbot.recognition.fallback import first_result
from receiptbot.recognition.llm import ChatModel, parse_json_block


class TestFirstResult:
    def test_returns_first_non_empty_result(self):
        later = Mock(return_value="never")
        found = first_result([("a", lambda: None), ("b", lambda: "text"), ("c", later)])

        assert found == ("b", "text")
        later.assert_not_called()

    def test_exceptions_count_as_no_result(self):
        def boom():
            raise RuntimeError("down")

        assert first_result([("a", boom), ("b", lambda: "ok")]) == ("b", "ok")

    def test_exhaustion_returns_none(self):
        assert first_result([("a", lambda: ""), ("b", lambda: None)]) is None


class TestParseJsonBlock:
    def test_strips_reasoning_and_fences(self):
        content = '<think>{"draft": 1}</think>\nSure:\n```json\n{"items": []}\n```'
        assert parse_json_block(content) == {"items": []}

    def test_bare_object_inside_text(self):
        assert parse_json_block('Result: {"currency": "RSD"} done') == {"currency": "RSD"}

    def test_missing_json_raises(self):
        with pytest.raises(ValueError):
            parse_json_block("I could not read the receipt.")


class TestChatModel:
    def _client(self, content):
        client = MagicMock()
        client.chat.completions.create.return_value.choices = [MagicMock(message=MagicMock(content=content))]
        return client

    def test_complete_returns_message_text(self):
        client = self._client("hello")
        model = ChatModel(api_key=None, client=client)

        assert model.complete("gpt-test", "system", "user") == "hello"
        kwargs = client.chat.completions.create.call_args.kwargs
        assert kwargs["model"] == "gpt-test"
        assert kwargs["messages"][0] == {"role": "system", "content": "system"}

    def test_sdk_errors_become_extraction_errors(self):
        client = MagicMock()
        client.chat.completions.create.side_effect = OpenAIError("rate limited")
        model = ChatModel(api_key=None, client=client)

        with pytest.raises(ExtractionError):
            model.complete("gpt-test", "system", "user")

    def test_missing_key_is_reported(self):
        model = ChatModel(api_key=None)

        assert model.available is False
        with pytest.raises(ExtractionError):
            model.complete("gpt-test", "system", "user")
