"""Tests for per-category node handlers."""

import asyncio
import pytest

from ai.chatbot.capabilities import AICapability
from ai.chatbot.models import NodeProcessingResult, ResponseType
from ai.chatbot.node_processor import NodeProcessor, interpolate
from conftest import make_node


@pytest.fixture
def processor():
    return NodeProcessor()


class TestDispatch:
    """Test registry lookup and graceful degradation."""

    @pytest.mark.asyncio
    async def test_unknown_category_returns_empty_result(self, processor):
        node = make_node("x", category="quantum", node_type="teleport")
        result = await processor.process(node, {"a": 1}, "hi")
        assert result.responses == []
        assert result.context_delta == {}
        assert result.error is None
        assert not result.should_stop

    @pytest.mark.asyncio
    async def test_unknown_type_in_known_category_returns_empty_result(self, processor):
        node = make_node("x", category="response", node_type="hologram")
        result = await processor.process(node, {}, "hi")
        assert result.responses == []
        assert result.context_delta == {}

    @pytest.mark.asyncio
    async def test_handler_exception_becomes_error(self, processor):
        async def broken(node, context, user_input):
            raise RuntimeError("boom")

        processor.register("action", "broken", broken)
        result = await processor.process(make_node("x", "action", "broken"), {}, "")
        assert result.error == "boom"

    @pytest.mark.asyncio
    async def test_custom_handler_registration(self, processor):
        async def handler(node, context, user_input):
            return NodeProcessingResult(context_delta={"custom": user_input})

        processor.register("integration", "crm_lookup", handler)
        result = await processor.process(make_node("x", "integration", "crm_lookup"), {}, "abc")
        assert result.context_delta == {"custom": "abc"}

    @pytest.mark.asyncio
    async def test_handler_cannot_mutate_caller_context(self, processor):
        async def mutating(node, context, user_input):
            context["leaked"] = True
            return NodeProcessingResult()

        processor.register("action", "mutating", mutating)
        context = {}
        await processor.process(make_node("x", "action", "mutating"), context, "")
        assert context == {}


class TestTriggerNodes:

    @pytest.mark.asyncio
    async def test_message_received(self, processor):
        result = await processor.process(make_node("t", "trigger", "message_received"), {}, "hi")
        assert result.context_delta["triggeredBy"] == "message_received"
        assert "triggeredAt" in result.context_delta
        assert not result.should_stop

    @pytest.mark.asyncio
    async def test_keyword_trigger(self, processor):
        node = make_node("t", "trigger", "keyword_trigger", config={"keywords": ["Order", "refund", "cancel"]})
        result = await processor.process(node, {}, "I want a REFUND for my order")
        assert result.context_delta["keywordMatched"] is True
        assert result.context_delta["matchedKeywords"] == ["Order", "refund"]

    @pytest.mark.asyncio
    async def test_keyword_trigger_with_bad_config(self, processor):
        node = make_node("t", "trigger", "keyword_trigger", config={"keywords": "not-a-list"})
        result = await processor.process(node, {}, "anything")
        assert result.context_delta["keywordMatched"] is False
        assert result.error is None

    @pytest.mark.asyncio
    async def test_pattern_trigger(self, processor):
        node = make_node("t", "trigger", "pattern_trigger", config={"pattern": r"order\s+#?(\d+)"})
        result = await processor.process(node, {}, "Status of ORDER #42?")
        assert result.context_delta["patternMatched"] is True
        assert result.context_delta["patternMatches"] == ["ORDER #42", "42"]

    @pytest.mark.asyncio
    async def test_pattern_trigger_invalid_regex(self, processor):
        node = make_node("t", "trigger", "pattern_trigger", config={"pattern": "(["})
        result = await processor.process(node, {}, "text")
        assert result.context_delta["patternMatched"] is False
        assert result.error is None

    @pytest.mark.asyncio
    async def test_intent_trigger(self, processor):
        node = make_node("t", "trigger", "intent_trigger",
                         config={"intentKeywords": ["invoice", "bill"], "intentName": "billing"})
        result = await processor.process(node, {}, "Question about my bill")
        assert result.context_delta == {"intentMatched": True, "detectedIntent": "billing"}

        result = await processor.process(node, {}, "hello")
        assert result.context_delta == {"intentMatched": False, "detectedIntent": None}


class TestConditionNodes:

    @pytest.mark.asyncio
    async def test_text_condition(self, processor):
        node = make_node("c", "condition", "text_condition", config={"condition": "contains", "value": "Yes"})
        result = await processor.process(node, {}, "yes please")
        assert result.context_delta == {"conditionResult": True, "lastCondition": "text_condition"}

    @pytest.mark.asyncio
    @pytest.mark.parametrize("operator,actual,expected,outcome", [
        ("equals", "gold", "gold", True),
        ("not_equals", "gold", "silver", True),
        ("contains", "premium-plan", "plan", True),
        ("greater_than", "10", 5, True),
        ("less_than", 3, "2", False),
        ("greater_than", "abc", 1, False),
    ])
    async def test_variable_condition(self, processor, operator, actual, expected, outcome):
        node = make_node("c", "condition", "variable_condition",
                         config={"variableName": "tier", "operator": operator, "value": expected})
        result = await processor.process(node, {"tier": actual}, "")
        assert result.context_delta["conditionResult"] is outcome
        assert result.context_delta["lastCondition"] == "variable_condition"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("value", ["one", "on", "N", "None"])
    async def test_variable_condition_contains_on_missing_variable(self, processor, value):
        node = make_node("c", "condition", "variable_condition",
                         config={"variableName": "plan", "operator": "contains", "value": value})
        result = await processor.process(node, {}, "")
        assert result.context_delta["conditionResult"] is False

    @pytest.mark.asyncio
    @pytest.mark.parametrize("check,user_input,outcome", [
        ("not_empty", "  ", False),
        ("is_number", "42.5", True),
        ("is_number", "forty", False),
        ("is_email", "a@b.co", True),
        ("min_length", "ab", False),
        ("max_length", "ab", True),
    ])
    async def test_user_input_condition(self, processor, check, user_input, outcome):
        node = make_node("c", "condition", "user_input_condition",
                         config={"condition": check, "minLength": 3, "maxLength": 5})
        result = await processor.process(node, {}, user_input)
        assert result.context_delta["conditionResult"] is outcome


class TestActionNodes:

    @pytest.mark.asyncio
    async def test_set_variable_literal(self, processor):
        node = make_node("a", "action", "set_variable", config={"variableName": "plan", "value": "gold"})
        result = await processor.process(node, {}, "ignored")
        assert result.context_delta == {"plan": "gold"}

    @pytest.mark.asyncio
    async def test_set_variable_from_input(self, processor):
        node = make_node("a", "action", "set_variable", config={"variableName": "name"})
        result = await processor.process(node, {}, "Ana")
        assert result.context_delta == {"name": "Ana"}

    @pytest.mark.asyncio
    async def test_save_user_data_accumulates(self, processor):
        node = make_node("a", "action", "save_user_data", config={"dataKey": "email"})
        result = await processor.process(node, {"userData": {"name": "Ana"}}, "ana@example.com")
        assert result.context_delta == {"userData": {"name": "Ana", "email": "ana@example.com"}}

    @pytest.mark.asyncio
    async def test_http_request_only_records_intent(self, processor):
        node = make_node("a", "action", "http_request", config={"url": "https://api.example.com", "method": "post"})
        result = await processor.process(node, {}, "")
        request = result.context_delta["lastHttpRequest"]
        assert request["url"] == "https://api.example.com"
        assert request["method"] == "POST"


class TestResponseNodes:

    def test_interpolation(self):
        context = {"name": "Ana", "count": 0, "missing": None}
        text = "Hi ${name}, {{name}}! ${count} ${unknown} {{missing}}"
        assert interpolate(text, context) == "Hi Ana, Ana! 0 ${unknown} {{missing}}"

    @pytest.mark.asyncio
    async def test_text_response(self, processor):
        node = make_node("r", config={"message": "Hello {{name}}"})
        result = await processor.process(node, {"name": "Ana"}, "")
        assert len(result.responses) == 1
        assert result.responses[0].type == ResponseType.TEXT
        assert result.responses[0].content == "Hello Ana"

    @pytest.mark.asyncio
    async def test_text_response_default_message(self, processor):
        result = await processor.process(make_node("r"), {}, "")
        assert result.responses[0].content == "Hello!"

    @pytest.mark.asyncio
    async def test_quick_reply(self, processor):
        node = make_node("r", node_type="quick_reply", config={
            "message": "Pick one, ${name}",
            "options": [{"text": "Yes"}, {"text": "No", "value": "n"}],
        })
        result = await processor.process(node, {"name": "Ana"}, "")
        response = result.responses[0]
        assert response.type == ResponseType.FORM
        assert response.content == {
            "type": "quick_reply",
            "text": "Pick one, Ana",
            "options": [{"text": "Yes", "value": "Yes"}, {"text": "No", "value": "n"}],
        }

    @pytest.mark.asyncio
    async def test_media_response(self, processor):
        node = make_node("r", node_type="media_response",
                         config={"mediaUrl": "https://cdn/x.png", "caption": "For ${name}"})
        result = await processor.process(node, {"name": "Ana"}, "")
        assert result.responses[0].type == ResponseType.MEDIA
        assert result.responses[0].content == {"type": "image", "url": "https://cdn/x.png", "caption": "For Ana"}

    @pytest.mark.asyncio
    async def test_form_response(self, processor):
        node = make_node("r", node_type="form_response", config={
            "title": "Contact",
            "fields": [{"name": "email", "label": "Email", "type": "email", "required": True}, "junk"],
        })
        result = await processor.process(node, {}, "")
        content = result.responses[0].content
        assert content["type"] == "form"
        assert content["fields"] == [
            {"name": "email", "label": "Email", "type": "email", "required": True, "options": []}
        ]


class TestAiAndIntegrationNodes:

    @pytest.mark.asyncio
    async def test_integration_stub_handles_any_type(self, processor):
        result = await processor.process(make_node("i", "integration", "zendesk"), {}, "")
        assert result.context_delta == {"integrationProcessed": True, "integrationType": "zendesk"}

    @pytest.mark.asyncio
    @pytest.mark.parametrize("text,sentiment", [
        ("This is GREAT", "positive"),
        ("awful service", "negative"),
        ("where is it", "neutral"),
    ])
    async def test_sentiment_analysis(self, processor, text, sentiment):
        result = await processor.process(make_node("s", "ai", "sentiment_analysis"), {}, text)
        assert result.context_delta == {"sentiment": sentiment, "sentimentAnalyzed": True}

    @pytest.mark.asyncio
    async def test_gpt_chat_uses_capability(self):
        class EchoCapability(AICapability):
            async def generate(self, prompt, user_input, context):
                return f"{prompt}|{user_input}"

        processor = NodeProcessor(ai_capability=EchoCapability())
        node = make_node("g", "ai", "gpt_chat", config={"prompt": "Help ${name}"})
        result = await processor.process(node, {"name": "Ana"}, "hi")
        assert result.responses[0].content == "Help Ana|hi"
        assert result.context_delta == {"aiProcessed": True, "aiPrompt": "Help Ana"}

    @pytest.mark.asyncio
    async def test_gpt_chat_placeholder(self, processor):
        result = await processor.process(make_node("g", "ai", "gpt_chat"), {}, "where is my order")
        assert result.responses[0].content == 'AI would respond here based on: "where is my order"'
        assert result.context_delta["aiPrompt"] == "You are a helpful assistant."

    @pytest.mark.asyncio
    async def test_gpt_chat_times_out(self):
        class SlowCapability(AICapability):
            async def generate(self, prompt, user_input, context):
                await asyncio.sleep(5)
                return "late"

        processor = NodeProcessor(ai_capability=SlowCapability(), ai_timeout=0.05)
        result = await processor.process(make_node("g", "ai", "gpt_chat"), {}, "hi")
        assert result.error is not None
        assert "timed out" in result.error
        assert result.responses == []


class TestFlowControlNodes:

    @pytest.mark.asyncio
    async def test_delay_does_not_block(self, processor):
        node = make_node("d", "flow_control", "delay", config={"seconds": 600})
        result = await asyncio.wait_for(processor.process(node, {}, ""), timeout=1)
        assert result.context_delta == {"delayApplied": 600}
        assert not result.should_stop

    @pytest.mark.asyncio
    async def test_jump_to_flow(self, processor):
        node = make_node("j", "flow_control", "jump_to_flow", config={"flowId": "billing"})
        result = await processor.process(node, {}, "")
        assert result.context_delta == {"jumpToFlow": "billing"}
        assert result.should_stop is True

    @pytest.mark.asyncio
    async def test_end_conversation(self, processor):
        result = await processor.process(make_node("e", "flow_control", "end_conversation"), {}, "")
        assert result.responses[0].content == "Goodbye!"
        assert result.should_stop is True


class TestValidationNodes:

    @pytest.mark.asyncio
    async def test_email_validation(self, processor):
        node = make_node("v", "validation", "email_validation", config={"errorMessage": "Bad email"})
        ok = await processor.process(node, {}, "ana@example.com")
        assert ok.responses == []
        assert ok.context_delta == {"emailValidation": True, "validatedEmail": "ana@example.com"}

        bad = await processor.process(node, {}, "not-an-email")
        assert [r.content for r in bad.responses] == ["Bad email"]
        assert bad.context_delta == {"emailValidation": False, "validatedEmail": None}
        assert not bad.should_stop

    @pytest.mark.asyncio
    @pytest.mark.parametrize("phone,valid", [
        ("+1 (555) 123-4567", True),
        ("555-1234", False),
        ("call me", False),
    ])
    async def test_phone_validation(self, processor, phone, valid):
        result = await processor.process(make_node("v", "validation", "phone_validation"), {}, phone)
        assert result.context_delta["phoneValidation"] is valid
        assert len(result.responses) == (0 if valid else 1)

    @pytest.mark.asyncio
    async def test_required_field(self, processor):
        node = make_node("v", "validation", "required_field")
        result = await processor.process(node, {}, "   ")
        assert result.responses[0].content == "This field is required."
        assert result.context_delta == {"requiredFieldValidation": False}


class TestAdvancedNodes:

    @pytest.mark.asyncio
    @pytest.mark.parametrize("context", [{}, {"fallbackToHuman": False, "sentiment": "positive"}])
    async def test_fallback_to_human(self, processor, context):
        result = await processor.process(make_node("f", "advanced", "fallback_to_human"), context, "")
        assert len(result.responses) == 1
        assert result.responses[0].type == ResponseType.TEXT
        assert result.fallback_to_human is True
        assert result.should_stop is True

    @pytest.mark.asyncio
    async def test_analytics_tracking(self, processor):
        node = make_node("a", "advanced", "analytics_tracking",
                         config={"eventName": "handoff", "properties": {"channel": "web"}})
        result = await processor.process(node, {}, "")
        assert result.context_delta == {
            "analyticsTracked": {"eventName": "handoff", "properties": {"channel": "web"}}
        }

    @pytest.mark.asyncio
    async def test_custom_code_is_not_executed(self, processor):
        node = make_node("c", "advanced", "custom_code", config={"code": "raise SystemExit"})
        result = await processor.process(node, {}, "")
        assert result.context_delta == {"customCodeExecuted": True}
