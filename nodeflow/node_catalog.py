from __future__ import annotations

from typing import Any, Dict

from nodeflow import config

CONDITIONAL_OPERATORS = [
    "equals",
    "not_equals",
    "contains",
    "not_contains",
    "starts_with",
    "ends_with",
    "gt",
    "gte",
    "lt",
    "lte",
    "is_empty",
    "is_not_empty",
    "regex",
]

HTTP_METHODS = ["GET", "POST", "PUT", "PATCH", "DELETE", "HEAD"]

_LLM_PARAMS: Dict[str, Any] = {
    "model": {"type": "string", "default": config.DEFAULT_MODEL},
    "system": {"type": "string", "default": "Answer concisely."},
    "temperature": {
        "type": "number",
        "minimum": 0,
        "maximum": 2,
        "default": 0.2,
    },
    "max_tokens": {"type": "integer", "minimum": 1, "maximum": 32_768},
}

# Parameter schemas per node type. Executors validate their config against
# these before a run and receive the result with defaults applied.
NODE_CATALOG: Dict[str, Any] = {
    "version": 2,
    "nodes": {
        "TextInput": {
            "schema": {
                "type": "object",
                "properties": {"text": {"type": "string", "default": ""}},
                "additionalProperties": False,
            }
        },
        "ImageInput": {
            "schema": {
                "type": "object",
                "properties": {
                    "path": {"type": "string"},
                    "base64": {"type": "string"},
                    "max_bytes": {
                        "type": "integer",
                        "minimum": 1,
                        "default": config.MAX_IMAGE_BYTES,
                    },
                },
                "additionalProperties": False,
            }
        },
        "LlmPrompt": {
            "schema": {
                "type": "object",
                "properties": {
                    **_LLM_PARAMS,
                    "prompt": {"type": "string"},
                    "stream": {"type": "boolean", "default": False},
                },
                "required": ["model"],
                "additionalProperties": False,
            }
        },
        "ImageTextLlm": {
            "schema": {
                "type": "object",
                "properties": {**_LLM_PARAMS, "prompt": {"type": "string"}},
                "required": ["model"],
                "additionalProperties": False,
            }
        },
        "TextOutput": {
            "schema": {
                "type": "object",
                "properties": {
                    "text": {"type": "string"},
                    "strip": {"type": "boolean", "default": True},
                },
                "additionalProperties": False,
            }
        },
        "MarkdownOutput": {
            "schema": {
                "type": "object",
                "properties": {
                    "text": {"type": "string"},
                    "title": {"type": "string"},
                    "code_language": {"type": "string"},
                },
                "additionalProperties": False,
            }
        },
        "TextCombiner": {
            "schema": {
                "type": "object",
                "properties": {
                    "separator": {"type": "string", "default": "\n"},
                    "template": {"type": "string"},
                    "skip_empty": {"type": "boolean", "default": False},
                },
                "additionalProperties": False,
            }
        },
        "Conditional": {
            "schema": {
                "type": "object",
                "properties": {
                    "operator": {
                        "type": "string",
                        "enum": CONDITIONAL_OPERATORS,
                        "default": "equals",
                    },
                    "target": {"type": "string"},
                    "case_sensitive": {"type": "boolean", "default": True},
                },
                "required": ["operator"],
                "additionalProperties": False,
            }
        },
        "ApiCall": {
            "schema": {
                "type": "object",
                "properties": {
                    "url": {"type": "string"},
                    "method": {"type": "string", "enum": HTTP_METHODS, "default": "GET"},
                    "headers": {"type": "object", "default": {}},
                },
                "required": ["method"],
                "additionalProperties": False,
            }
        },
        "Textstore": {
            "schema": {
                "type": "object",
                "properties": {
                    "mode": {"type": "string", "enum": ["store", "query"], "default": "query"},
                    "collection": {"type": "string"},
                    "k": {"type": "integer", "minimum": 1, "maximum": 50, "default": 5},
                    "chunk_size": {"type": "integer", "minimum": 1, "default": 1000},
                },
                "required": ["mode"],
                "additionalProperties": False,
            }
        },
    },
}


def schema_for(type_tag: str) -> Dict[str, Any]:
    """Return the parameter schema for ``type_tag`` or an empty open schema."""

    entry = NODE_CATALOG["nodes"].get(type_tag)
    if entry is None:
        return {"type": "object", "properties": {}}
    return entry["schema"]
