from unittest import mock

import pytest
import requests

from app.ielts_app.config import ProviderSettings
from app.ielts_app.services.chat_client import ChatCompletionClient
from app.ielts_app.services.errors import MalformedProviderResponse, ProviderUnavailable

from conftest import _Resp


@pytest.fixture
def settings():
    return ProviderSettings(api_key="test-key", model="gpt-4", timeout=30)


def test_request_body_matches_chat_completions_contract(app, provider, settings):
    provider.reply_text('{"ok": true}')
    client = ChatCompletionClient(settings)

    result = client.complete_json("system text", "user text", max_tokens=1500)

    assert result == {"ok": True}
    call = provider.calls[0]
    assert call["url"] == "https://api.openai.com/v1/chat/completions"
    assert call["timeout"] == 30
    assert call["headers"]["Authorization"] == "Bearer test-key"
    assert call["json"] == {
        "model": "gpt-4",
        "messages": [
            {"role": "system", "content": "system text"},
            {"role": "user", "content": "user text"},
        ],
        "temperature": 0.2,
        "max_tokens": 1500,
    }


def test_fenced_and_prefaced_json_is_accepted(app, provider, settings):
    client = ChatCompletionClient(settings)

    provider.reply_text('```json\n{"band_score": 7}\n```')
    assert client.complete_json("s", "u", max_tokens=10) == {"band_score": 7}

    provider.replies.clear()
    provider.reply_text('Here is my assessment: {"band_score": 6.5, "note": "uses {braces}"} Thanks!')
    assert client.complete_json("s", "u", max_tokens=10) == {"band_score": 6.5, "note": "uses {braces}"}


def test_plain_prose_is_malformed(app, provider, settings):
    provider.reply_text("This essay is quite good overall, I would give it a seven.")
    client = ChatCompletionClient(settings)

    with pytest.raises(MalformedProviderResponse) as excinfo:
        client.complete_json("s", "u", max_tokens=10)
    assert "seven" in excinfo.value.raw_text


def test_json_array_content_is_malformed(app, provider, settings):
    provider.reply_text('[1, 2, 3]')
    with pytest.raises(MalformedProviderResponse):
        ChatCompletionClient(settings).complete_json("s", "u", max_tokens=10)


def test_missing_choices_is_malformed(app, provider, settings):
    provider.reply_raw(_Resp(200, {"id": "cmpl-1", "choices": []}))
    with pytest.raises(MalformedProviderResponse):
        ChatCompletionClient(settings).complete_json("s", "u", max_tokens=10)


def test_non_json_body_is_malformed(app, provider, settings):
    provider.reply_raw(_Resp(200, None, text="<html>gateway</html>"))
    with pytest.raises(MalformedProviderResponse):
        ChatCompletionClient(settings).complete_json("s", "u", max_tokens=10)


@pytest.mark.parametrize("status_code", [401, 429, 500, 503])
def test_non_success_status_is_provider_unavailable(app, provider, settings, status_code):
    provider.reply_status(status_code)
    with pytest.raises(ProviderUnavailable) as excinfo:
        ChatCompletionClient(settings).complete_json("s", "u", max_tokens=10)
    assert excinfo.value.status_code == status_code


def test_unexpected_non_2xx_status_is_provider_unavailable(app, provider, settings):
    provider.reply_raw(_Resp(304, {"choices": [{"message": {"content": "{\"a\": 1}"}}]}))
    with pytest.raises(ProviderUnavailable) as excinfo:
        ChatCompletionClient(settings).complete_json("s", "u", max_tokens=10)
    assert excinfo.value.status_code == 304


@pytest.mark.parametrize(
    "exc",
    [requests.exceptions.Timeout("read timed out"), requests.exceptions.ConnectionError("refused")],
)
def test_transport_errors_are_provider_unavailable(app, provider, settings, exc):
    provider.raise_error(exc)
    with pytest.raises(ProviderUnavailable):
        ChatCompletionClient(settings).complete_json("s", "u", max_tokens=10)


def test_missing_api_key_never_calls_provider(app, settings):
    client = ChatCompletionClient(ProviderSettings(api_key=""))
    with mock.patch("app.ielts_app.services.chat_client.requests.post") as post:
        with pytest.raises(ProviderUnavailable):
            client.complete_json("s", "u", max_tokens=10)
    post.assert_not_called()


def test_injected_session_is_used(app, settings):
    session = mock.Mock()
    session.post.return_value = _Resp(200, {"choices": [{"message": {"content": '{"a": 1}'}}]})
    client = ChatCompletionClient(settings, session=session)

    assert client.complete_json("s", "u", max_tokens=10) == {"a": 1}
    assert session.post.call_args.kwargs["timeout"] == 30


def test_extract_json_object_ignores_braces_in_strings():
    text = 'prefix {"a": "}", "b": {"c": 2}} suffix }'
    assert ChatCompletionClient._extract_json_object(text) == '{"a": "}", "b": {"c": 2}}'
