from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from pydantic import BaseModel, Field

from nodeflow.engine.models import NodeCategory, NodeType
from nodeflow.errors import UnknownTypeError

# (node_type, config, input) -> output; raises NodeflowError on failure
CategoryHandler = Callable[[str, Dict[str, Any], Any], Awaitable[Any]]


class NodeDefinition(BaseModel):
    """Static description of a node type"""
    type: NodeType
    label: str
    category: NodeCategory
    description: str = ""
    default_config: Dict[str, Any] = Field(default_factory=dict)
    template_fields: Tuple[str, ...] = ()


NODE_DEFINITIONS: Dict[str, NodeDefinition] = {
    definition.type.value: definition
    for definition in [
        NodeDefinition(
            type=NodeType.WEBHOOK,
            label="Webhook",
            category=NodeCategory.TRIGGER,
            description="Starts the workflow when a request arrives",
            default_config={"path": "/webhook", "method": "POST"},
        ),
        NodeDefinition(
            type=NodeType.SCHEDULE,
            label="Schedule",
            category=NodeCategory.TRIGGER,
            description="Starts the workflow on a fixed interval",
            default_config={"interval": "60", "unit": "minutes"},
        ),
        NodeDefinition(
            type=NodeType.AI_TEXT_GENERATOR,
            label="AI Text Generator",
            category=NodeCategory.AI,
            description="Generates text from a prompt",
            default_config={"prompt": "", "temperature": "0.7", "maxTokens": "500"},
            template_fields=("prompt",),
        ),
        NodeDefinition(
            type=NodeType.AI_ANALYZER,
            label="AI Analyzer",
            category=NodeCategory.AI,
            description="Sentiment, keyword or summary analysis",
            default_config={"text": "{{input}}", "analysisType": "sentiment"},
            template_fields=("text",),
        ),
        NodeDefinition(
            type=NodeType.AI_CHATBOT,
            label="AI Chatbot",
            category=NodeCategory.AI,
            description="Answers a message with a configurable persona",
            default_config={
                "systemPrompt": "You are a helpful assistant.",
                "userMessage": "{{input}}",
                "personality": "professional",
            },
            template_fields=("systemPrompt", "userMessage"),
        ),
        NodeDefinition(
            type=NodeType.AI_DATA_EXTRACTOR,
            label="AI Data Extractor",
            category=NodeCategory.AI,
            description="Extracts structured data following a schema",
            default_config={"text": "{{input}}", "schema": ""},
            template_fields=("text", "schema"),
        ),
        NodeDefinition(
            type=NodeType.HTTP_REQUEST,
            label="HTTP Request",
            category=NodeCategory.ACTION,
            description="Calls an external HTTP endpoint",
            default_config={"method": "GET", "url": "", "headers": "{}", "body": "{}"},
            template_fields=("url", "headers", "body"),
        ),
        NodeDefinition(
            type=NodeType.DATA_TRANSFORM,
            label="Data Transform",
            category=NodeCategory.ACTION,
            description="Reshapes the input with a small Python function body",
            default_config={"code": "return input"},
        ),
        NodeDefinition(
            type=NodeType.SEND_EMAIL,
            label="Send Email",
            category=NodeCategory.ACTION,
            description="Sends an email (simulated)",
            default_config={"to": "", "subject": "", "body": ""},
            template_fields=("to", "subject", "body"),
        ),
        NodeDefinition(
            type=NodeType.IF_ELSE,
            label="If / Else",
            category=NodeCategory.LOGIC,
            description="Evaluates a condition against the input",
            default_config={"condition": "", "operator": "expression"},
        ),
        NodeDefinition(
            type=NodeType.DELAY,
            label="Delay",
            category=NodeCategory.LOGIC,
            description="Waits before passing the input on",
            default_config={"duration": "1000", "unit": "milliseconds"},
        ),
    ]
}


def get_definition(node_type: str) -> Optional[NodeDefinition]:
    return NODE_DEFINITIONS.get(node_type)


class HandlerRegistry:
    """Registry of category handlers"""

    def __init__(self):
        self.handlers: Dict[NodeCategory, CategoryHandler] = {}

    def register(self, category: NodeCategory, handler: CategoryHandler) -> None:
        """Register the handler for a node category."""
        self.handlers[NodeCategory(category)] = handler

    def get(self, category: NodeCategory) -> CategoryHandler:
        """Retrieve the handler for a category."""
        handler = self.handlers.get(category)
        if handler is None:
            raise UnknownTypeError(f"Unsupported node category: {getattr(category, 'value', category)}")
        return handler

    def list_categories(self) -> List[str]:
        return [category.value for category in self.handlers]
