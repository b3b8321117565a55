"""Tests for the /functions endpoints: tutor, grading, save-assessment, billing, CORS."""

import asyncio
import hashlib
import hmac
import json
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from learnsmart.config import settings
from learnsmart.db import accounts as accounts_db
from learnsmart.db import learning as learning_db
from learnsmart.services import billing
from learnsmart.services.ai_client import JSON_ONLY_INSTRUCTION, AIServiceError, ai_chat
from learnsmart.services.grading import build_grading_prompt, parse_grade
from learnsmart.services.tutor import to_model_messages


# ── AI tutor ────────────────────────────────────────────────────────

class TestTutor:

    def test_role_mapping(self):
        mapped = to_model_messages([
            {"role": "user", "content": "hi"},
            {"role": "assistant", "content": "hello"},
            {"role": "bot", "content": "?"},
        ])
        assert [m["role"] for m in mapped] == ["user", "assistant", "assistant"]

    def test_reply(self, client, make_user):
        student = make_user("student")
        mock = AsyncMock(return_value="A fraction is part of a whole.")
        with patch("learnsmart.services.tutor.ai_chat", new=mock):
            res = client.post("/functions/ai-tutor", headers=student["headers"], json={
                "messages": [{"role": "user", "content": "What is a fraction?"}],
                "userId": student["id"],
            })
        assert res.status_code == 200
        assert res.json() == {"message": {"role": "assistant", "content": "A fraction is part of a whole."}}

        sent = mock.call_args.args[0]
        assert sent[0]["role"] == "system"
        assert sent[1] == {"role": "user", "content": "What is a fraction?"}
        assert mock.call_args.kwargs["temperature"] == 0.7
        assert mock.call_args.kwargs["max_tokens"] == 512

    def test_empty_reply_falls_back(self, client, make_user):
        student = make_user("student")
        with patch("learnsmart.services.tutor.ai_chat", new=AsyncMock(return_value="  ")):
            res = client.post("/functions/ai-tutor", headers=student["headers"], json={
                "messages": [{"role": "user", "content": "hi"}],
            })
        assert res.json()["message"]["content"] == "Sorry, I couldn't generate a response."

    def test_upstream_error(self, client, make_user):
        student = make_user("student")
        with patch("learnsmart.services.tutor.ai_chat", new=AsyncMock(side_effect=AIServiceError("quota exceeded"))):
            res = client.post("/functions/ai-tutor", headers=student["headers"], json={
                "messages": [{"role": "user", "content": "hi"}],
            })
        assert res.status_code == 500
        assert res.json() == {"error": "quota exceeded"}

    def test_invalid_messages(self, client, make_user):
        student = make_user("student")
        res = client.post("/functions/ai-tutor", headers=student["headers"], json={"messages": "hello"})
        assert res.status_code == 400
        assert "error" in res.json()

    def test_cannot_chat_as_someone_else(self, client, make_user):
        student = make_user("student")
        other = make_user("student")
        res = client.post("/functions/ai-tutor", headers=student["headers"], json={
            "messages": [{"role": "user", "content": "hi"}],
            "userId": other["id"],
        })
        assert res.status_code == 403

    def test_requires_token(self, client):
        res = client.post("/functions/ai-tutor", json={"messages": []})
        assert res.status_code == 401


# ── Gemini provider ─────────────────────────────────────────────────

class TestGeminiClient:

    def test_request_and_response(self, monkeypatch):
        monkeypatch.setattr(settings, "gemini_api_key", "g-key")
        monkeypatch.setattr(settings, "model_name", "gemini-1.5-flash-latest")
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"candidates": [{"content": {"parts": [{"text": "Hello!"}]}}]})

        async def go():
            async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http_client:
                return await ai_chat(
                    [
                        {"role": "system", "content": "Be kind."},
                        {"role": "user", "content": "hi"},
                        {"role": "assistant", "content": "hello"},
                    ],
                    temperature=0.2,
                    max_tokens=256,
                    http_client=http_client,
                )

        assert asyncio.run(go()) == "Hello!"
        assert "gemini-1.5-flash-latest:generateContent" in seen["url"]
        assert "key=g-key" in seen["url"]
        assert [c["role"] for c in seen["body"]["contents"]] == ["user", "model"]
        assert seen["body"]["systemInstruction"]["parts"][0]["text"] == "Be kind."
        assert seen["body"]["generationConfig"] == {"temperature": 0.2, "maxOutputTokens": 256}

    def test_upstream_error_message(self, monkeypatch):
        monkeypatch.setattr(settings, "gemini_api_key", "g-key")
        monkeypatch.setattr(settings, "model_name", "gemini-1.5-flash-latest")

        def handler(request):
            return httpx.Response(429, json={"error": {"message": "Resource has been exhausted"}})

        async def go():
            async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http_client:
                return await ai_chat([{"role": "user", "content": "hi"}], http_client=http_client)

        with pytest.raises(AIServiceError, match="Resource has been exhausted"):
            asyncio.run(go())

    def test_missing_key(self, monkeypatch):
        monkeypatch.setattr(settings, "gemini_api_key", "")
        monkeypatch.setattr(settings, "model_name", "gemini-1.5-flash-latest")
        with pytest.raises(AIServiceError, match="not configured"):
            asyncio.run(ai_chat([{"role": "user", "content": "hi"}]))

    def test_json_mode_sets_mime_type(self, monkeypatch):
        monkeypatch.setattr(settings, "gemini_api_key", "g-key")
        monkeypatch.setattr(settings, "model_name", "gemini-1.5-flash-latest")
        seen = {}

        def handler(request):
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"candidates": [{"content": {"parts": [{"text": "{}"}]}}]})

        async def go():
            async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http_client:
                return await ai_chat([{"role": "user", "content": "grade"}], json_mode=True, http_client=http_client)

        assert asyncio.run(go()) == "{}"
        assert seen["body"]["generationConfig"]["responseMimeType"] == "application/json"


CHAT = [
    {"role": "system", "content": "Be kind."},
    {"role": "user", "content": "hi"},
    {"role": "assistant", "content": "hello"},
    {"role": "user", "content": "what is 2+2?"},
]


class TestOpenAIClient:

    def _client(self, create):
        client = MagicMock()
        client.chat.completions.create = create
        return client

    def test_request_and_response(self, monkeypatch):
        monkeypatch.setattr(settings, "model_name", "gpt-4o-mini")
        monkeypatch.setattr(settings, "ai_provider", "openai")
        monkeypatch.setattr(settings, "api_key", "sk-test")
        reply = SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content="Four"))])
        create = AsyncMock(return_value=reply)

        with patch("openai.AsyncOpenAI", return_value=self._client(create)) as ctor:
            text = asyncio.run(ai_chat(CHAT, temperature=0.2, max_tokens=256, json_mode=True))

        assert text == "Four"
        assert ctor.call_args.kwargs["api_key"] == "sk-test"
        kwargs = create.call_args.kwargs
        assert kwargs["model"] == "gpt-4o-mini"
        # OpenAI takes the system turn inline, in order
        assert [m["role"] for m in kwargs["messages"]] == ["system", "user", "assistant", "user"]
        assert kwargs["temperature"] == 0.2
        assert kwargs["max_tokens"] == 256
        assert kwargs["response_format"] == {"type": "json_object"}

    def test_sdk_error_wrapped(self, monkeypatch):
        from openai import OpenAIError

        monkeypatch.setattr(settings, "model_name", "gpt-4o-mini")
        monkeypatch.setattr(settings, "ai_provider", "openai")
        monkeypatch.setattr(settings, "api_key", "sk-test")
        create = AsyncMock(side_effect=OpenAIError("rate limited"))

        with patch("openai.AsyncOpenAI", return_value=self._client(create)):
            with pytest.raises(AIServiceError, match="rate limited"):
                asyncio.run(ai_chat(CHAT))

    def test_missing_key(self, monkeypatch):
        monkeypatch.setattr(settings, "model_name", "gpt-4o-mini")
        monkeypatch.setattr(settings, "ai_provider", "openai")
        monkeypatch.setattr(settings, "api_key", "")
        with pytest.raises(AIServiceError, match="API_KEY is not configured"):
            asyncio.run(ai_chat(CHAT))


class TestAnthropicClient:

    def _client(self, create):
        client = MagicMock()
        client.messages.create = create
        return client

    def test_system_prompt_pulled_out(self, monkeypatch):
        monkeypatch.setattr(settings, "model_name", "claude-3-5-haiku-latest")
        monkeypatch.setattr(settings, "anthropic_api_key", "ak-test")
        reply = SimpleNamespace(content=[SimpleNamespace(text="Four")])
        create = AsyncMock(return_value=reply)

        with patch("anthropic.AsyncAnthropic", return_value=self._client(create)):
            text = asyncio.run(ai_chat(CHAT, temperature=0.7, max_tokens=512))

        assert text == "Four"
        kwargs = create.call_args.kwargs
        assert kwargs["model"] == "claude-3-5-haiku-latest"
        assert kwargs["system"] == "Be kind."
        assert [m["role"] for m in kwargs["messages"]] == ["user", "assistant", "user"]
        assert kwargs["max_tokens"] == 512

    def test_json_mode_appends_instruction(self, monkeypatch):
        monkeypatch.setattr(settings, "model_name", "claude-3-5-haiku-latest")
        monkeypatch.setattr(settings, "anthropic_api_key", "ak-test")
        create = AsyncMock(return_value=SimpleNamespace(content=[]))

        with patch("anthropic.AsyncAnthropic", return_value=self._client(create)):
            text = asyncio.run(ai_chat([{"role": "user", "content": "grade"}], json_mode=True))

        assert text == ""
        assert create.call_args.kwargs["system"] == JSON_ONLY_INSTRUCTION

    def test_sdk_error_wrapped(self, monkeypatch):
        import anthropic

        monkeypatch.setattr(settings, "model_name", "claude-3-5-haiku-latest")
        monkeypatch.setattr(settings, "anthropic_api_key", "ak-test")
        create = AsyncMock(side_effect=anthropic.AnthropicError("overloaded"))

        with patch("anthropic.AsyncAnthropic", return_value=self._client(create)):
            with pytest.raises(AIServiceError, match="overloaded"):
                asyncio.run(ai_chat(CHAT))


# ── AI grading ──────────────────────────────────────────────────────

class TestGrading:

    def test_parse_json_reply(self):
        assert parse_grade('{"score": 1, "feedback": "Well done"}') == {"score": 1, "feedback": "Well done"}

    def test_parse_unparsable_reply(self):
        raw = "The answer looks mostly right."
        assert parse_grade(raw) == {"score": None, "feedback": raw}
        assert parse_grade("") == {"score": None, "feedback": ""}
        assert parse_grade("[1, 2]") == {"score": None, "feedback": "[1, 2]"}

    def test_prompt_per_type(self):
        mcq = build_grading_prompt("2+2?", "4", "mcq")
        assert "multiple choice answer" in mcq
        assert '"score": 0 or 1' in mcq
        open_ended = build_grading_prompt("Why is the sky blue?", "Scattering", "open")
        assert "open-ended answer" in open_ended
        assert '"score": 0-100' in open_ended

    def test_endpoint_unparsable(self, client, make_user):
        h = make_user("student")["headers"]
        mock = AsyncMock(return_value="Looks good to me!")
        with patch("learnsmart.services.grading.ai_chat", new=mock):
            res = client.post("/functions/ai-assessment", headers=h, json={
                "question": "2+2?", "answer": "4", "type": "mcq",
            })
        assert res.status_code == 200
        assert res.json() == {"score": None, "feedback": "Looks good to me!"}
        assert mock.call_args.kwargs["temperature"] == 0.2
        assert mock.call_args.kwargs["max_tokens"] == 256
        assert mock.call_args.kwargs["json_mode"] is True

    def test_endpoint_missing_answer(self, client, make_user):
        h = make_user("student")["headers"]
        res = client.post("/functions/ai-assessment", headers=h, json={"question": "2+2?", "answer": ""})
        assert res.status_code == 400


# ── Save assessment ─────────────────────────────────────────────────

class TestSaveAssessment:

    def _body(self, student_id, **overrides):
        body = {
            "student_id": student_id,
            "question_id": "q-1",
            "score": 80,
            "feedback": "Nice work",
            "current_topic": "Fractions",
            "progress": {"fractions": 0.5},
        }
        body.update(overrides)
        return body

    def test_saves_and_upserts_path(self, client, make_user, run_db):
        student = make_user("student")
        h = student["headers"]
        assert client.post("/functions/save-assessment", headers=h, json=self._body(student["id"])).json() == {
            "success": True,
        }
        res = client.post("/functions/save-assessment", headers=h, json=self._body(
            student["id"], score=None, feedback=None, current_topic="Decimals",
        ))
        assert res.status_code == 200

        rows = run_db(lambda db: learning_db.get_assessments_by_student(db, student["id"]))
        assert len(rows) == 2
        assert rows[1]["score"] is None
        path = run_db(lambda db: learning_db.get_learning_path(db, student["id"]))
        assert path["current_topic"] == "Decimals"

    def test_missing_key_is_400(self, client, make_user):
        student = make_user("student")
        body = self._body(student["id"])
        del body["feedback"]
        res = client.post("/functions/save-assessment", headers=student["headers"], json=body)
        assert res.status_code == 400
        assert "error" in res.json()

    def test_parent_can_save_for_child_only(self, client, make_user, run_db):
        parent = make_user("parent")
        child = make_user("student")
        stranger = make_user("student")
        run_db(lambda db: accounts_db.add_child(db, parent["id"], child["id"]))

        ok = client.post("/functions/save-assessment", headers=parent["headers"], json=self._body(child["id"]))
        assert ok.status_code == 200
        denied = client.post("/functions/save-assessment", headers=parent["headers"], json=self._body(stranger["id"]))
        assert denied.status_code == 403


# ── Lemon Squeezy webhook ───────────────────────────────────────────

def _event(name, parent_id, status="active", sub_id="sub_1", in_meta=False):
    custom = {"parent_id": parent_id}
    return {
        "meta": {"event_name": name, **({"custom_data": custom} if in_meta else {})},
        "data": {
            "id": sub_id,
            "attributes": {
                "status": status,
                "variant_name": "Monthly",
                "total": 999,
                "customer_id": 42,
                **({} if in_meta else {"custom_data": custom}),
            },
        },
    }


class TestWebhook:

    def test_created_then_cancelled(self, client, make_user, run_db):
        parent = make_user("parent")
        res = client.post("/functions/lemon-squeezy-webhook", json=_event("subscription_created", parent["id"]))
        assert res.status_code == 200
        assert res.json() == {"received": True}

        record = run_db(lambda db: accounts_db.get_parent(db, parent["id"]))
        assert record["subscription_status"] == "paid"
        assert record["customer_id"] == "42"
        sub = run_db(lambda db: accounts_db.get_subscription(db, "sub_1"))
        assert sub["active"] == 1
        assert sub["plan_type"] == "Monthly"
        assert sub["price"] == 999

        client.post("/functions/lemon-squeezy-webhook", json=_event("subscription_cancelled", parent["id"]))
        record = run_db(lambda db: accounts_db.get_parent(db, parent["id"]))
        assert record["subscription_status"] == "free"
        assert run_db(lambda db: accounts_db.get_subscription(db, "sub_1"))["active"] == 0

    def test_inactive_update_and_meta_custom_data(self, client, make_user, run_db):
        parent = make_user("parent")
        client.post("/functions/lemon-squeezy-webhook",
                    json=_event("subscription_updated", parent["id"], status="past_due", in_meta=True))
        record = run_db(lambda db: accounts_db.get_parent(db, parent["id"]))
        assert record["subscription_status"] == "free"

    def test_redelivery_is_idempotent(self, client, make_user, run_db):
        parent = make_user("parent")
        for _ in range(3):
            client.post("/functions/lemon-squeezy-webhook", json=_event("subscription_updated", parent["id"]))

        async def count(db):
            cursor = await db.execute("SELECT COUNT(*) AS n FROM subscriptions")
            return (await cursor.fetchone())["n"]

        assert run_db(count) == 1
        assert run_db(lambda db: accounts_db.get_parent(db, parent["id"]))["subscription_status"] == "paid"

    def test_missing_parent_or_event(self, client):
        res = client.post("/functions/lemon-squeezy-webhook", json={"meta": {"event_name": "subscription_created"}})
        assert res.status_code == 400
        assert res.json() == {"error": "Missing parentId or eventType"}
        res = client.post("/functions/lemon-squeezy-webhook", json={"data": {"attributes": {"custom_data": {"parent_id": "p"}}}})
        assert res.status_code == 400

    def test_malformed_envelope(self, client):
        for body in (
            {"meta": "x"},
            {"meta": {"event_name": "subscription_created"}, "data": []},
            {"meta": {"event_name": "subscription_created", "custom_data": "p1"}},
            {"meta": {"event_name": "subscription_created"}, "data": {"attributes": 5}},
            ["not", "an", "object"],
        ):
            res = client.post("/functions/lemon-squeezy-webhook", json=body)
            assert res.status_code == 400, body
            assert "error" in res.json()

    def test_unknown_event_acknowledged(self, client, make_user, run_db):
        parent = make_user("parent")
        res = client.post("/functions/lemon-squeezy-webhook", json=_event("order_created", parent["id"]))
        assert res.json() == {"received": True}
        assert run_db(lambda db: accounts_db.get_parent(db, parent["id"]))["subscription_status"] == "free"

    def test_signature_checked_when_secret_set(self, client, make_user, monkeypatch):
        parent = make_user("parent")
        monkeypatch.setattr(settings, "lemon_squeezy_webhook_secret", "whsec")
        raw = json.dumps(_event("subscription_created", parent["id"])).encode()

        res = client.post("/functions/lemon-squeezy-webhook", content=raw,
                          headers={"Content-Type": "application/json", "X-Signature": "bad"})
        assert res.status_code == 401

        signature = hmac.new(b"whsec", raw, hashlib.sha256).hexdigest()
        res = client.post("/functions/lemon-squeezy-webhook", content=raw,
                          headers={"Content-Type": "application/json", "X-Signature": signature})
        assert res.status_code == 200

    def test_wrong_method(self, client):
        res = client.get("/functions/lemon-squeezy-webhook")
        assert res.status_code == 405
        assert "error" in res.json()


# ── Customer portal ─────────────────────────────────────────────────

class TestCustomerPortal:

    def test_portal_url_verbatim(self, monkeypatch):
        monkeypatch.setattr(settings, "lemon_squeezy_api_key", "ls-key")
        seen = {}

        def handler(request):
            seen["auth"] = request.headers["Authorization"]
            seen["body"] = json.loads(request.content)
            seen["path"] = request.url.path
            return httpx.Response(200, json={"data": {"attributes": {"url": "https://portal.example/abc?x=1"}}})

        async def go():
            async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http_client:
                return await billing.create_portal_url("42", http_client=http_client)

        assert asyncio.run(go()) == "https://portal.example/abc?x=1"
        assert seen["auth"] == "Bearer ls-key"
        assert seen["body"] == {"customer_id": "42"}
        assert seen["path"] == "/v1/customer_portal"

    def test_provider_error(self, monkeypatch):
        monkeypatch.setattr(settings, "lemon_squeezy_api_key", "ls-key")

        def handler(request):
            return httpx.Response(404, json={"errors": [{"detail": "Customer not found"}]})

        async def go():
            async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http_client:
                return await billing.create_portal_url("42", http_client=http_client)

        with pytest.raises(billing.BillingError, match="Customer not found"):
            asyncio.run(go())

    def test_endpoint(self, client, make_user, run_db):
        parent = make_user("parent")
        run_db(lambda db: accounts_db.set_subscription_status(db, parent["id"], "paid", "42"))
        with patch("learnsmart.routes.functions.billing.create_portal_url",
                   new=AsyncMock(return_value="https://portal.example/abc")):
            ok = client.post("/functions/lemon-squeezy-customer-portal", headers=parent["headers"],
                             json={"customerId": "42"})
            other = client.post("/functions/lemon-squeezy-customer-portal", headers=parent["headers"],
                                json={"customerId": "99"})
        assert ok.json() == {"url": "https://portal.example/abc"}
        assert other.status_code == 403

    def test_not_configured(self, client, make_user, run_db, monkeypatch):
        monkeypatch.setattr(settings, "lemon_squeezy_api_key", "")
        parent = make_user("parent")
        run_db(lambda db: accounts_db.set_subscription_status(db, parent["id"], "paid", "42"))
        res = client.post("/functions/lemon-squeezy-customer-portal", headers=parent["headers"],
                          json={"customerId": "42"})
        assert res.status_code == 500
        assert "not configured" in res.json()["error"]


class TestCors:

    def test_preflight(self, client):
        res = client.options("/functions/ai-tutor", headers={
            "Origin": "https://app.example",
            "Access-Control-Request-Method": "POST",
            "Access-Control-Request-Headers": "Authorization, Content-Type",
        })
        assert res.status_code == 200
        assert res.headers["access-control-allow-origin"] == "*"
