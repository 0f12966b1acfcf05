import json

import httpx
import pytest

from shared.clients.llm.LLMClientManager import LLMClientManager
from shared.clients.llm.gemini.LLMClientGemini import LLMClientGemini
from shared.clients.llm.models.ChatCompletion import ChatMessage
from shared.clients.llm.ollama.LLMClientOllama import LLMClientOllama
from shared.clients.llm.openai.LLMClientOpenai import LLMClientOpenai

MESSAGES = [
    ChatMessage(role="system", content="Bạn là trợ lý AI."),
    ChatMessage(role="user", content="Mất điện phải làm gì?"),
    ChatMessage(role="assistant", content="Báo phòng kỹ thuật."),
    ChatMessage(role="user", content="Số điện thoại?"),
]


class TestLLMClientOllama:
    async def test_chat_round_trip(self, helper_config):
        seen: list[dict] = []

        def handler(request):
            seen.append(json.loads(request.content))
            return httpx.Response(200, json={
                "message": {"role": "assistant", "content": "Gọi 1234."},
                "done": True,
                "prompt_eval_count": 120,
                "eval_count": 9,
            })

        client = LLMClientOllama(helper_config)
        await client.boot(transport=httpx.MockTransport(handler))
        completion = await client.do_chat(MESSAGES, temperature=0.2, max_tokens=500)

        assert completion.content == "Gọi 1234."
        assert (completion.usage.prompt_tokens, completion.usage.completion_tokens) == (120, 9)
        assert seen[0]["model"] == "llama3.1"
        assert seen[0]["stream"] is False
        assert seen[0]["options"] == {"temperature": 0.2, "num_predict": 500}
        assert [m["role"] for m in seen[0]["messages"]] == ["system", "user", "assistant", "user"]

    async def test_http_error_raises(self, helper_config):
        client = LLMClientOllama(helper_config)
        await client.boot(transport=httpx.MockTransport(lambda request: httpx.Response(429, text="rate limited")))
        with pytest.raises(Exception, match="status 429"):
            await client.do_chat(MESSAGES)

    def test_missing_message(self, helper_config):
        with pytest.raises(ValueError):
            LLMClientOllama(helper_config).extract_chat_response({"done": True})


class TestLLMClientOpenai:
    def test_payload_and_parse(self, env, helper_config):
        env.setenv("LLM_OPENAI_API_KEY", "sk-test")
        env.setenv("LLM_CHAT_MODEL", "gpt-4o")
        client = LLMClientOpenai(helper_config)
        payload = client.get_chat_payload(MESSAGES, temperature=0.3, max_tokens=1024)
        assert payload["model"] == "gpt-4o"
        assert (payload["temperature"], payload["max_tokens"]) == (0.3, 1024)

        completion = client.extract_chat_response({
            "choices": [{"index": 0, "message": {"role": "assistant", "content": "OK"}}],
            "usage": {"prompt_tokens": 5, "completion_tokens": 1},
        })
        assert completion.content == "OK"
        assert completion.usage.prompt_tokens == 5

    def test_empty_choices(self, env, helper_config):
        env.setenv("LLM_OPENAI_API_KEY", "sk-test")
        with pytest.raises(ValueError):
            LLMClientOpenai(helper_config).extract_chat_response({"choices": []})


class TestLLMClientGemini:
    def test_roles_and_system_instruction(self, env, helper_config):
        env.setenv("LLM_GEMINI_API_KEY", "g-test")
        client = LLMClientGemini(helper_config)
        payload = client.get_chat_payload(MESSAGES, temperature=0.3, max_tokens=256)
        assert payload["systemInstruction"] == {"parts": [{"text": "Bạn là trợ lý AI."}]}
        assert [c["role"] for c in payload["contents"]] == ["user", "model", "user"]
        assert payload["generationConfig"] == {"temperature": 0.3, "maxOutputTokens": 256}
        assert client._get_endpoint_chat() == "/v1beta/models/gemini-1.5-flash:generateContent"

    def test_parse(self, env, helper_config):
        env.setenv("LLM_GEMINI_API_KEY", "g-test")
        completion = LLMClientGemini(helper_config).extract_chat_response({
            "candidates": [{"content": {"parts": [{"text": "Xin "}, {"text": "chào"}], "role": "model"}}],
            "usageMetadata": {"promptTokenCount": 11, "candidatesTokenCount": 2},
        })
        assert completion.content == "Xin chào"
        assert completion.usage.completion_tokens == 2


class TestLLMClientManager:
    def test_selects_ollama(self, helper_config):
        assert isinstance(LLMClientManager(helper_config).get_client(), LLMClientOllama)

    def test_unsupported_engine(self, env, helper_config):
        env.setenv("LLM_ENGINE", "claude-local")
        with pytest.raises(ValueError, match="claude-local"):
            LLMClientManager(helper_config)
