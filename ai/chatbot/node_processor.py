"""
Node processor for chatbot flows.

Handlers are looked up by (category, type). Each handler receives the node,
a snapshot of the running context and the raw user input, and returns a
NodeProcessingResult carrying responses and a context delta. Nodes with an
unregistered category or type produce an empty result so that malformed
flows degrade gracefully instead of breaking the conversation.
"""

import logging
import re
from typing import Dict, List, Optional, Any, Callable, Awaitable, Tuple

from .capabilities import AICapability, PlaceholderAICapability, call_with_timeout
from .exceptions import CapabilityError
from .models import (
    FlowNode,
    NodeCategory,
    NodeProcessingResult,
    NodeResponse,
    ResponseType,
    utc_now_iso,
)

logger = logging.getLogger(__name__)

NodeHandler = Callable[[FlowNode, Dict[str, Any], str], Awaitable[NodeProcessingResult]]

ANY_TYPE = "*"

DOLLAR_VARIABLE = re.compile(r"\$\{(\w+)\}")
BRACE_VARIABLE = re.compile(r"\{\{(\w+)\}\}")
EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
PHONE_PATTERN = re.compile(r"^\+?[\d\s\-\(\)]+$")

POSITIVE_WORDS = ('good', 'great', 'excellent')
NEGATIVE_WORDS = ('bad', 'terrible', 'awful')


def interpolate(text: str, context: Dict[str, Any]) -> str:
    """Replace ${name} and {{name}} placeholders; unknown names stay verbatim."""
    if not text:
        return ""

    def substitute(match: re.Match) -> str:
        value = context.get(match.group(1))
        return match.group(0) if value is None else str(value)

    text = DOLLAR_VARIABLE.sub(substitute, text)
    return BRACE_VARIABLE.sub(substitute, text)


def _str(config: Dict[str, Any], key: str, default: str = "") -> str:
    value = config.get(key)
    if value is None or isinstance(value, (dict, list)):
        return default
    return str(value)


def _list(config: Dict[str, Any], key: str) -> List[Any]:
    value = config.get(key)
    return value if isinstance(value, list) else []


def _dict(config: Dict[str, Any], key: str) -> Dict[str, Any]:
    value = config.get(key)
    return value if isinstance(value, dict) else {}


def _number(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _text(content: str) -> NodeResponse:
    return NodeResponse(type=ResponseType.TEXT, content=content)


class NodeProcessor:
    """Dispatches nodes to handlers registered by category and type."""

    def __init__(self, ai_capability: Optional[AICapability] = None, ai_timeout: Optional[float] = None):
        self.ai_capability = ai_capability or PlaceholderAICapability()
        self.ai_timeout = ai_timeout
        self.handlers: Dict[Tuple[str, str], NodeHandler] = {}
        self._register_builtin_handlers()

    def _register_builtin_handlers(self):
        """Register built-in node handlers."""
        builtin = {
            NodeCategory.TRIGGER: {
                'message_received': self._trigger_message_received,
                'keyword_trigger': self._trigger_keyword,
                'pattern_trigger': self._trigger_pattern,
                'intent_trigger': self._trigger_intent,
            },
            NodeCategory.CONDITION: {
                'text_condition': self._condition_text,
                'variable_condition': self._condition_variable,
                'user_input_condition': self._condition_user_input,
            },
            NodeCategory.ACTION: {
                'set_variable': self._action_set_variable,
                'save_user_data': self._action_save_user_data,
                'http_request': self._action_http_request,
            },
            NodeCategory.RESPONSE: {
                'text_response': self._response_text,
                'quick_reply': self._response_quick_reply,
                'media_response': self._response_media,
                'form_response': self._response_form,
            },
            NodeCategory.INTEGRATION: {
                ANY_TYPE: self._integration_stub,
            },
            NodeCategory.AI: {
                'gpt_chat': self._ai_chat,
                'sentiment_analysis': self._ai_sentiment,
            },
            NodeCategory.FLOW_CONTROL: {
                'delay': self._flow_delay,
                'jump_to_flow': self._flow_jump,
                'end_conversation': self._flow_end_conversation,
            },
            NodeCategory.VALIDATION: {
                'email_validation': self._validate_email,
                'phone_validation': self._validate_phone,
                'required_field': self._validate_required,
            },
            NodeCategory.ADVANCED: {
                'fallback_to_human': self._advanced_fallback_to_human,
                'analytics_tracking': self._advanced_analytics,
                'custom_code': self._advanced_custom_code,
            },
        }
        for category, handlers in builtin.items():
            for node_type, handler in handlers.items():
                self.register(category.value, node_type, handler)

    def register(self, category: str, node_type: str, handler: NodeHandler):
        """Register or replace the handler for a (category, type) pair.

        Use ``"*"`` as the type to handle every type of a category.
        """
        self.handlers[(str(category), node_type)] = handler

    def get_handler(self, category: str, node_type: str) -> Optional[NodeHandler]:
        return self.handlers.get((category, node_type)) or self.handlers.get((category, ANY_TYPE))

    async def process(self, node: FlowNode, context: Dict[str, Any], user_input: str) -> NodeProcessingResult:
        """Process a single node."""
        handler = self.get_handler(node.category, node.type)
        if handler is None:
            logger.debug(f"No handler for node {node.id} ({node.category}/{node.type}), skipping")
            return NodeProcessingResult()

        try:
            return await handler(node, dict(context), user_input or "")
        except Exception as e:
            logger.error(f"Error processing node {node.id}: {e}")
            return NodeProcessingResult(error=str(e) or "Node processing failed")

    # Trigger handlers
    async def _trigger_message_received(self, node: FlowNode, context: Dict[str, Any], user_input: str) -> NodeProcessingResult:
        return NodeProcessingResult(context_delta={
            'triggeredBy': 'message_received',
            'triggeredAt': utc_now_iso(),
        })

    async def _trigger_keyword(self, node: FlowNode, context: Dict[str, Any], user_input: str) -> NodeProcessingResult:
        text = user_input.lower()
        keywords = [str(k) for k in _list(node.config, 'keywords')]
        matched = [k for k in keywords if k.lower() in text]
        return NodeProcessingResult(context_delta={
            'keywordMatched': bool(matched),
            'matchedKeywords': matched,
        })

    async def _trigger_pattern(self, node: FlowNode, context: Dict[str, Any], user_input: str) -> NodeProcessingResult:
        pattern = _str(node.config, 'pattern')
        matches: List[str] = []
        if pattern:
            try:
                match = re.search(pattern, user_input, re.IGNORECASE)
                if match:
                    matches = [match.group(0)] + [g or "" for g in match.groups()]
            except re.error:
                logger.warning(f"Invalid regex pattern on node {node.id}: {pattern}")
        return NodeProcessingResult(context_delta={
            'patternMatched': bool(matches),
            'patternMatches': matches,
        })

    async def _trigger_intent(self, node: FlowNode, context: Dict[str, Any], user_input: str) -> NodeProcessingResult:
        text = user_input.lower()
        keywords = [str(k) for k in _list(node.config, 'intentKeywords')]
        matched = any(k.lower() in text for k in keywords)
        return NodeProcessingResult(context_delta={
            'intentMatched': matched,
            'detectedIntent': node.config.get('intentName') if matched else None,
        })

    # Condition handlers
    async def _condition_text(self, node: FlowNode, context: Dict[str, Any], user_input: str) -> NodeProcessingResult:
        condition = _str(node.config, 'condition')
        value = _str(node.config, 'value').lower()
        result = True
        if 'contains' in condition:
            result = value in user_input.lower()
        elif 'equals' in condition:
            result = user_input.lower() == value
        return NodeProcessingResult(context_delta={
            'conditionResult': result,
            'lastCondition': 'text_condition',
        })

    async def _condition_variable(self, node: FlowNode, context: Dict[str, Any], user_input: str) -> NodeProcessingResult:
        operator = _str(node.config, 'operator', 'equals')
        expected = node.config.get('value')
        actual = context.get(_str(node.config, 'variableName'))

        result = False
        if operator == 'equals':
            result = actual == expected
        elif operator == 'not_equals':
            result = actual != expected
        elif operator == 'contains':
            # Unset values compare as empty text
            haystack = "" if actual is None else str(actual)
            result = expected is not None and str(expected) in haystack
        elif operator in ('greater_than', 'less_than'):
            left, right = _number(actual), _number(expected)
            if left is not None and right is not None:
                result = left > right if operator == 'greater_than' else left < right

        return NodeProcessingResult(context_delta={
            'conditionResult': result,
            'lastCondition': 'variable_condition',
        })

    async def _condition_user_input(self, node: FlowNode, context: Dict[str, Any], user_input: str) -> NodeProcessingResult:
        check = _str(node.config, 'condition', 'not_empty')
        result = False
        if check == 'not_empty':
            result = len(user_input.strip()) > 0
        elif check == 'is_number':
            result = bool(user_input.strip()) and _number(user_input.strip()) is not None
        elif check == 'is_email':
            result = EMAIL_PATTERN.match(user_input) is not None
        elif check == 'min_length':
            minimum = _number(node.config.get('minLength'))
            result = len(user_input) >= (minimum if minimum is not None else 1)
        elif check == 'max_length':
            maximum = _number(node.config.get('maxLength'))
            result = len(user_input) <= (maximum if maximum is not None else 1000)

        return NodeProcessingResult(context_delta={
            'conditionResult': result,
            'lastCondition': 'user_input_condition',
        })

    # Action handlers
    async def _action_set_variable(self, node: FlowNode, context: Dict[str, Any], user_input: str) -> NodeProcessingResult:
        name = _str(node.config, 'variableName')
        if not name:
            logger.warning(f"set_variable node {node.id} has no variableName")
            return NodeProcessingResult()
        value = node.config.get('value')
        if value is None or value == "":
            value = user_input
        return NodeProcessingResult(context_delta={name: value})

    async def _action_save_user_data(self, node: FlowNode, context: Dict[str, Any], user_input: str) -> NodeProcessingResult:
        key = _str(node.config, 'dataKey', 'user_input') or 'user_input'
        existing = context.get('userData')
        user_data = dict(existing) if isinstance(existing, dict) else {}
        user_data[key] = user_input
        return NodeProcessingResult(context_delta={'userData': user_data})

    async def _action_http_request(self, node: FlowNode, context: Dict[str, Any], user_input: str) -> NodeProcessingResult:
        url = _str(node.config, 'url')
        method = _str(node.config, 'method', 'GET').upper()
        # Requests are delegated to an integration service; only intent is recorded here
        logger.info(f"HTTP {method} request to {url} recorded for node {node.id}")
        return NodeProcessingResult(context_delta={
            'lastHttpRequest': {'url': url, 'method': method, 'timestamp': utc_now_iso()},
        })

    # Response handlers
    async def _response_text(self, node: FlowNode, context: Dict[str, Any], user_input: str) -> NodeProcessingResult:
        message = _str(node.config, 'message') or 'Hello!'
        return NodeProcessingResult(responses=[_text(interpolate(message, context))])

    async def _response_quick_reply(self, node: FlowNode, context: Dict[str, Any], user_input: str) -> NodeProcessingResult:
        options = []
        for option in _list(node.config, 'options'):
            if isinstance(option, dict):
                text = _str(option, 'text')
                options.append({'text': text, 'value': option.get('value') or text})
            else:
                options.append({'text': str(option), 'value': str(option)})

        return NodeProcessingResult(responses=[NodeResponse(
            type=ResponseType.FORM,
            content={
                'type': 'quick_reply',
                'text': interpolate(_str(node.config, 'message'), context),
                'options': options,
            }
        )])

    async def _response_media(self, node: FlowNode, context: Dict[str, Any], user_input: str) -> NodeProcessingResult:
        return NodeProcessingResult(responses=[NodeResponse(
            type=ResponseType.MEDIA,
            content={
                'type': _str(node.config, 'mediaType', 'image'),
                'url': _str(node.config, 'mediaUrl'),
                'caption': interpolate(_str(node.config, 'caption'), context),
            }
        )])

    async def _response_form(self, node: FlowNode, context: Dict[str, Any], user_input: str) -> NodeProcessingResult:
        fields = []
        for item in _list(node.config, 'fields'):
            if not isinstance(item, dict):
                continue
            fields.append({
                'name': _str(item, 'name'),
                'label': _str(item, 'label'),
                'type': _str(item, 'type', 'text'),
                'required': bool(item.get('required', False)),
                'options': _list(item, 'options'),
            })

        return NodeProcessingResult(responses=[NodeResponse(
            type=ResponseType.FORM,
            content={
                'type': 'form',
                'title': interpolate(_str(node.config, 'title') or 'Please fill out this form', context),
                'fields': fields,
            }
        )])

    # Integration handlers
    async def _integration_stub(self, node: FlowNode, context: Dict[str, Any], user_input: str) -> NodeProcessingResult:
        return NodeProcessingResult(context_delta={
            'integrationProcessed': True,
            'integrationType': node.type,
        })

    # AI handlers
    async def _ai_chat(self, node: FlowNode, context: Dict[str, Any], user_input: str) -> NodeProcessingResult:
        prompt = interpolate(_str(node.config, 'prompt') or 'You are a helpful assistant.', context)
        try:
            reply = await call_with_timeout(
                self.ai_capability, prompt, user_input, context, timeout=self.ai_timeout
            )
        except CapabilityError as e:
            return NodeProcessingResult(
                context_delta={'aiProcessed': False, 'aiPrompt': prompt},
                error=str(e)
            )

        return NodeProcessingResult(
            responses=[_text(reply)] if reply else [],
            context_delta={'aiProcessed': True, 'aiPrompt': prompt}
        )

    async def _ai_sentiment(self, node: FlowNode, context: Dict[str, Any], user_input: str) -> NodeProcessingResult:
        text = user_input.lower()
        if any(word in text for word in POSITIVE_WORDS):
            sentiment = 'positive'
        elif any(word in text for word in NEGATIVE_WORDS):
            sentiment = 'negative'
        else:
            sentiment = 'neutral'
        return NodeProcessingResult(context_delta={
            'sentiment': sentiment,
            'sentimentAnalyzed': True,
        })

    # Flow control handlers
    async def _flow_delay(self, node: FlowNode, context: Dict[str, Any], user_input: str) -> NodeProcessingResult:
        seconds = _number(node.config.get('seconds'))
        return NodeProcessingResult(context_delta={
            'delayApplied': seconds if seconds is not None else 1,
        })

    async def _flow_jump(self, node: FlowNode, context: Dict[str, Any], user_input: str) -> NodeProcessingResult:
        return NodeProcessingResult(
            context_delta={'jumpToFlow': _str(node.config, 'flowId')},
            should_stop=True
        )

    async def _flow_end_conversation(self, node: FlowNode, context: Dict[str, Any], user_input: str) -> NodeProcessingResult:
        message = _str(node.config, 'message') or 'Goodbye!'
        return NodeProcessingResult(
            responses=[_text(interpolate(message, context))],
            should_stop=True
        )

    # Validation handlers
    async def _validate_email(self, node: FlowNode, context: Dict[str, Any], user_input: str) -> NodeProcessingResult:
        is_valid = EMAIL_PATTERN.match(user_input) is not None
        message = _str(node.config, 'errorMessage') or 'Please enter a valid email address.'
        return NodeProcessingResult(
            responses=[] if is_valid else [_text(message)],
            context_delta={
                'emailValidation': is_valid,
                'validatedEmail': user_input if is_valid else None,
            }
        )

    async def _validate_phone(self, node: FlowNode, context: Dict[str, Any], user_input: str) -> NodeProcessingResult:
        digits = re.sub(r"\D", "", user_input)
        is_valid = PHONE_PATTERN.match(user_input) is not None and len(digits) >= 10
        message = _str(node.config, 'errorMessage') or 'Please enter a valid phone number.'
        return NodeProcessingResult(
            responses=[] if is_valid else [_text(message)],
            context_delta={
                'phoneValidation': is_valid,
                'validatedPhone': user_input if is_valid else None,
            }
        )

    async def _validate_required(self, node: FlowNode, context: Dict[str, Any], user_input: str) -> NodeProcessingResult:
        is_valid = len(user_input.strip()) > 0
        message = _str(node.config, 'errorMessage') or 'This field is required.'
        return NodeProcessingResult(
            responses=[] if is_valid else [_text(message)],
            context_delta={'requiredFieldValidation': is_valid}
        )

    # Advanced handlers
    async def _advanced_fallback_to_human(self, node: FlowNode, context: Dict[str, Any], user_input: str) -> NodeProcessingResult:
        message = _str(node.config, 'message') or 'Let me connect you with a human agent.'
        return NodeProcessingResult(
            responses=[_text(message)],
            fallback_to_human=True,
            should_stop=True
        )

    async def _advanced_analytics(self, node: FlowNode, context: Dict[str, Any], user_input: str) -> NodeProcessingResult:
        event_name = _str(node.config, 'eventName') or 'chatbot_event'
        properties = _dict(node.config, 'properties')
        logger.info(f"Analytics event: {event_name} {properties}")
        return NodeProcessingResult(context_delta={
            'analyticsTracked': {'eventName': event_name, 'properties': properties},
        })

    async def _advanced_custom_code(self, node: FlowNode, context: Dict[str, Any], user_input: str) -> NodeProcessingResult:
        # Custom code is never executed in-process
        return NodeProcessingResult(context_delta={'customCodeExecuted': True})
