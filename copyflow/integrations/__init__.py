"""External integration adapters."""

from .clickup import ClickUpClient, CustomFieldHandle, TaskFieldIndex
from .content_generation import ContentGenerationClient, GeneratedContent
from .gateway import GatewayClient
from .shade import TranscriptClient

__all__ = [
    "ClickUpClient",
    "CustomFieldHandle",
    "TaskFieldIndex",
    "ContentGenerationClient",
    "GeneratedContent",
    "GatewayClient",
    "TranscriptClient",
]
