"""Built-in node executors.

Importing this package registers every built-in type with
:data:`nodeflow.runtime.registry.REGISTRY`; each module self-registers through
``@register_node``. Any new node module must be imported here so it is part of
the registry before the first graph is validated.
"""

from nodeflow.runtime.registry import REGISTRY, NodeExecutorRegistry

from .input import ImageInput, ImagePayload, TextInput
from .llm_chat import ImageTextLlm, LlmPrompt
from .output import MarkdownOutput, TextOutput
from .text_combiner import TextCombiner
from .conditional import Conditional
from .api_call import ApiCall
from .textstore import Textstore

BUILTIN_NODE_TYPES = (
    "TextInput",
    "ImageInput",
    "LlmPrompt",
    "TextOutput",
    "TextCombiner",
    "Conditional",
    "ApiCall",
    "MarkdownOutput",
    "ImageTextLlm",
    "Textstore",
)


def load_builtin_nodes() -> NodeExecutorRegistry:
    """Return the process registry, checked to hold every built-in type."""

    REGISTRY.check_complete(BUILTIN_NODE_TYPES)
    return REGISTRY


__all__ = [
    "TextInput",
    "ImageInput",
    "ImagePayload",
    "LlmPrompt",
    "ImageTextLlm",
    "TextOutput",
    "MarkdownOutput",
    "TextCombiner",
    "Conditional",
    "ApiCall",
    "Textstore",
    "BUILTIN_NODE_TYPES",
    "load_builtin_nodes",
]
