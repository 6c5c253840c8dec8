from __future__ import annotations

import asyncio
import base64
import binascii
import io
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Union

from PIL import Image, UnidentifiedImageError

from nodeflow import config
from nodeflow.errors import ExecutionError, ValidationError
from nodeflow.runtime.contracts import InputPort, NodeContext, NodeExecutor, OutputPort
from nodeflow.runtime.registry import register_node
from nodeflow.templating import check_template, render


@register_node
class TextInput(NodeExecutor):
    """Emit the configured text.

    ``{name}`` placeholders are filled from the node's initial inputs, so a
    caller can template a prompt without editing the graph. Literal braces
    are written ``{{`` and ``}}``; a lone brace fails validation.
    """

    type_tag = "TextInput"
    output_ports = (OutputPort("text", "Literal or rendered template text"),)

    def validate(self, config: Mapping[str, Any]) -> Dict[str, Any]:
        params = super().validate(config)
        check_template(params["text"])
        return params

    async def execute(self, ctx: NodeContext) -> Dict[str, Any]:
        text = ctx.params["text"]
        if not text and isinstance(ctx.inputs.get("text"), str):
            text = ctx.inputs["text"]
        return {"text": render(text, ctx.inputs)}


_MIME_TYPES = {
    "JPEG": "image/jpeg",
    "PNG": "image/png",
    "WEBP": "image/webp",
    "BMP": "image/bmp",
    "GIF": "image/gif",
}


@dataclass(frozen=True)
class ImagePayload:
    data: bytes
    format: str
    width: int
    height: int

    @property
    def mime_type(self) -> str:
        return _MIME_TYPES.get(self.format, "application/octet-stream")

    def to_data_url(self) -> str:
        encoded = base64.b64encode(self.data).decode()
        return f"data:{self.mime_type};base64,{encoded}"

    def __str__(self) -> str:
        return f"<image {self.format} {self.width}x{self.height} {len(self.data)}B>"


def decode_base64_image(value: str) -> bytes:
    if value.startswith("data:"):
        value = value.split(",", 1)[-1]
    try:
        return base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise ValidationError(str(exc), code="INVALID_IMAGE") from exc


def load_image(source: Union[str, bytes, Path], max_bytes: int) -> ImagePayload:
    if isinstance(source, bytes):
        image_bytes = source
    elif isinstance(source, str) and source.startswith("data:"):
        image_bytes = decode_base64_image(source)
    else:
        path = Path(source)
        if not path.is_file():
            raise ExecutionError(f"IMAGE_NOT_FOUND:{source}")
        if path.stat().st_size > max_bytes:
            raise ExecutionError(f"IMAGE_TOO_LARGE:{path.stat().st_size}")
        image_bytes = path.read_bytes()

    if len(image_bytes) > max_bytes:
        raise ExecutionError(f"IMAGE_TOO_LARGE:{len(image_bytes)}")
    try:
        with Image.open(io.BytesIO(image_bytes)) as image:
            image_format = image.format
            width, height = image.size
    except (UnidentifiedImageError, OSError) as exc:
        raise ExecutionError(f"INVALID_IMAGE:{exc}") from exc
    if image_format not in config.SUPPORTED_IMAGE_FORMATS:
        raise ExecutionError(f"UNSUPPORTED_IMAGE_FORMAT:{image_format}")
    return ImagePayload(data=image_bytes, format=image_format, width=width, height=height)


@register_node
class ImageInput(NodeExecutor):
    type_tag = "ImageInput"
    input_ports = (
        InputPort("image", config_keys=("path", "base64"),
                  description="Upstream image, path or data URL"),
    )
    output_ports = (OutputPort("image", "Decoded image payload"),)

    def validate(self, config: Mapping[str, Any]) -> Dict[str, Any]:
        params = super().validate(config)
        if params.get("path") and params.get("base64"):
            raise ValidationError("path and base64 are exclusive", code="AMBIGUOUS_IMAGE_SOURCE")
        if params.get("base64"):
            size = len(decode_base64_image(params["base64"]))
            if size > params["max_bytes"]:
                raise ValidationError(str(size), code="IMAGE_TOO_LARGE")
        return params

    async def execute(self, ctx: NodeContext) -> Dict[str, Any]:
        source: Optional[Any] = ctx.inputs.get("image")
        if isinstance(source, ImagePayload):
            return {"image": source}
        if source is None and ctx.params.get("base64"):
            source = decode_base64_image(ctx.params["base64"])
        if source is None:
            source = ctx.params.get("path")
        if source is None:
            raise ExecutionError("IMAGE_MISSING")

        image = await asyncio.to_thread(load_image, source, ctx.params["max_bytes"])
        ctx.logger(f"loaded {image}")
        return {"image": image}
