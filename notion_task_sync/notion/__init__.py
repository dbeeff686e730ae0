"""Notion 客户端模块"""

from .client import NotionClient
from .rate_gate import RateGate
from .schema_cache import SchemaCache

__all__ = ["NotionClient", "RateGate", "SchemaCache"]
