import json

import httpx
import pytest

from cinevibe import completion


def _chat_response(content):
    return {"id": "x", "model": "sonar-pro", "choices": [{"index": 0, "message": {"role": "assistant", "content": content}}]}


def test_complete_posts_messages_with_bearer_auth():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["auth"] = request.headers["authorization"]
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json=_chat_response("1. Oppenheimer (2023)"))

    client = completion.CompletionClient(
        api_key="secret", base_url="https://llm.test/", transport=httpx.MockTransport(handler)
    )
    try:
        text = client.complete("system text", "user text")
    finally:
        client.close()

    assert text == "1. Oppenheimer (2023)"
    assert seen["url"] == "https://llm.test/chat/completions"
    assert seen["auth"] == "Bearer secret"
    assert seen["body"]["model"] == "sonar-pro"
    assert seen["body"]["messages"] == [
        {"role": "system", "content": "system text"},
        {"role": "user", "content": "user text"},
    ]
    assert "temperature" not in seen["body"]


def test_complete_model_override():
    def handler(request):
        return httpx.Response(200, json=_chat_response(json.loads(request.content)["model"]))

    with completion.CompletionClient(api_key="k", transport=httpx.MockTransport(handler)) as client:
        assert client.complete("s", "u", model="other-model") == "other-model"


def test_missing_content_returns_empty_string():
    def handler(request):
        return httpx.Response(200, json={"choices": []})

    with completion.CompletionClient(api_key="k", transport=httpx.MockTransport(handler)) as client:
        assert client.complete("s", "u") == ""


def test_non_2xx_raises_completion_error():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(503, text="unavailable")

    with completion.CompletionClient(api_key="k", transport=httpx.MockTransport(handler)) as client:
        with pytest.raises(completion.CompletionError) as exc:
            client.complete("s", "u")

    assert exc.value.status_code == 503
    assert len(calls) == 1  # no retry


def test_network_error_raises_completion_error():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    with completion.CompletionClient(api_key="k", transport=httpx.MockTransport(handler)) as client:
        with pytest.raises(completion.CompletionError):
            client.complete("s", "u")


def test_missing_api_key_raises_configuration_error():
    with pytest.raises(completion.ConfigurationError):
        completion.CompletionClient(api_key="")
    with pytest.raises(completion.ConfigurationError):
        completion.AsyncCompletionClient(api_key="")


@pytest.mark.asyncio
async def test_async_complete_sends_sampling_options():
    seen = {}

    def handler(request):
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json=_chat_response('{"imdb": {}}'))

    client = completion.AsyncCompletionClient(api_key="k", transport=httpx.MockTransport(handler))
    async with client:
        text = await client.complete("s", "u", temperature=0.7, max_tokens=1000)

    assert text == '{"imdb": {}}'
    assert seen["body"]["temperature"] == 0.7
    assert seen["body"]["max_tokens"] == 1000
    assert client.client is None


@pytest.mark.asyncio
async def test_async_client_requires_context_manager():
    client = completion.AsyncCompletionClient(api_key="k")
    with pytest.raises(RuntimeError):
        await client.complete("s", "u")
