import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

from config import OpenAISettings
from errors import SummarizationError
from llm_client import chat_completion

MESSAGES = [
    {"role": "system", "content": "Summarize."},
    {"role": "user", "content": "The following is the input content:\n---\n <p>body</p>"},
]


def _completion(content):
    return {
        "id": "chatcmpl-1",
        "object": "chat.completion",
        "created": 1700000000,
        "model": "gpt-test",
        "choices": [
            {"index": 0, "message": {"role": "assistant", "content": content}, "finish_reason": "stop"}
        ],
    }


def _fake_endpoint(state):
    async def completions(request):
        state["requests"].append({"auth": request.headers.get("Authorization"), "body": await request.json()})
        if state.get("status", 200) != 200:
            return web.Response(status=state["status"], text=state["error_text"])
        if state.get("raw") is not None:
            return web.json_response(state["raw"])
        return web.json_response(_completion(state["reply"]))

    app = web.Application()
    app.router.add_post("/v1/chat/completions", completions)
    return app


def _settings(server):
    return OpenAISettings(url=str(server.make_url("/")).rstrip("/"), token="sk-test-token", model="gpt-test")


@pytest.mark.asyncio
async def test_chat_completion_posts_model_and_messages():
    state = {"requests": [], "reply": "\n文章概要 \n"}
    async with TestServer(_fake_endpoint(state)) as server:
        result = await chat_completion(_settings(server), MESSAGES, timeout=10)

    # Whitespace around the reply is kept as sent
    assert result == "\n文章概要 \n"
    assert len(state["requests"]) == 1
    request = state["requests"][0]
    assert request["auth"] == "Bearer sk-test-token"
    assert request["body"]["model"] == "gpt-test"
    assert request["body"]["messages"] == MESSAGES


@pytest.mark.asyncio
async def test_non_2xx_raises_with_body_and_no_retry():
    state = {"requests": [], "status": 429, "error_text": "{\"error\": \"quota exceeded\"}"}
    async with TestServer(_fake_endpoint(state)) as server:
        with pytest.raises(SummarizationError) as excinfo:
            await chat_completion(_settings(server), MESSAGES, timeout=10)

    assert excinfo.value.status == 429
    assert "quota exceeded" in excinfo.value.body
    assert len(state["requests"]) == 1


@pytest.mark.asyncio
async def test_empty_choices_raise():
    state = {"requests": [], "raw": {**_completion("x"), "choices": []}}
    async with TestServer(_fake_endpoint(state)) as server:
        with pytest.raises(SummarizationError):
            await chat_completion(_settings(server), MESSAGES, timeout=10)


@pytest.mark.asyncio
async def test_connection_error_raises():
    settings = OpenAISettings(url="http://127.0.0.1:9", token="sk-test-token", model="gpt-test")
    with pytest.raises(SummarizationError):
        await chat_completion(settings, MESSAGES, timeout=5)


@pytest.mark.asyncio
async def test_missing_messages_raise():
    settings = OpenAISettings(url="http://unused", token="t", model="m")
    with pytest.raises(SummarizationError):
        await chat_completion(settings, [], timeout=5)


class FakeMessage:
    def __init__(self, content):
        self.content = content


class FakeChoice:
    def __init__(self, content):
        self.message = FakeMessage(content)
        self.finish_reason = "stop"


class FakeResp:
    def __init__(self, choices):
        self.choices = choices


class FakeClient:
    def __init__(self, resp):
        resp_holder = resp

        class completions:
            @staticmethod
            async def create(**kwargs):
                return resp_holder

        class chat:
            pass

        chat.completions = completions
        self.chat = chat


@pytest.mark.asyncio
async def test_content_parts_are_joined():
    resp = FakeResp([FakeChoice([{"type": "text", "text": "第一句。"}, {"type": "reasoning", "text": ""}, {"type": "text", "text": "第二句。"}])])
    settings = OpenAISettings(url="http://unused", token="t", model="m")
    result = await chat_completion(settings, MESSAGES, client_override=FakeClient(resp))
    assert result == "第一句。\n第二句。"


@pytest.mark.asyncio
async def test_null_content_returns_empty_string():
    settings = OpenAISettings(url="http://unused", token="t", model="m")
    result = await chat_completion(settings, MESSAGES, client_override=FakeClient(FakeResp([FakeChoice(None)])))
    assert result == ""
