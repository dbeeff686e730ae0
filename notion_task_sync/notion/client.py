"""
Notion 客户端封装
"""
from typing import Dict, Any, Optional
from datetime import datetime

import requests
from loguru import logger

from ..core.exceptions import NotionAPIError
from ..core.types import RemotePage
from .properties import decode_properties, decode_schema
from .rate_gate import RateGate


class NotionClient:
    """Notion 客户端封装，所有请求都经过 RateGate"""

    def __init__(self, token: str, rate_gate: Optional[RateGate] = None,
                 base_url: str = "https://api.notion.com/v1",
                 api_version: str = "2022-06-28",
                 timeout: int = 30,
                 session: Optional[requests.Session] = None):
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout
        self.rate_gate = rate_gate or RateGate()
        self.session = session or requests.Session()
        self.session.headers.update({
            'Authorization': f'Bearer {token}',
            'Notion-Version': api_version,
            'Content-Type': 'application/json'
        })

    def _request(self, method: str, path: str,
                 payload: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """发送单次请求，非 2xx 转为 NotionAPIError"""
        url = f"{self.base_url}{path}"
        response = self.session.request(method, url, json=payload, timeout=self.timeout)

        if response.status_code >= 400:
            try:
                body = response.json()
            except ValueError:
                body = {}
            retry_after = response.headers.get('Retry-After')
            raise NotionAPIError(
                body.get('message') or f"HTTP {response.status_code} for {method} {path}",
                status=response.status_code,
                code=body.get('code'),
                retry_after=float(retry_after) if retry_after else None
            )

        return response.json()

    def _gated(self, method: str, path: str,
               payload: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        return self.rate_gate.call(self._request, method, path, payload)

    def fetch_page(self, page_id: str) -> RemotePage:
        """读取页面"""
        try:
            data = self._gated('GET', f"/pages/{page_id}")
        except Exception as e:
            logger.error(f"Failed to fetch page {page_id}: {e}")
            raise

        values, types = decode_properties(data.get('properties') or {})
        last_edited = data.get('last_edited_time')
        page = RemotePage(
            id=data.get('id', page_id),
            last_edited_time=datetime.fromisoformat(last_edited.replace('Z', '+00:00')) if last_edited else None,
            properties=values,
            property_types=types,
            url=data.get('url')
        )
        logger.debug(f"Fetched page {page_id} with {len(values)} properties")
        return page

    def write_properties(self, page_id: str, properties: Dict[str, Any]) -> None:
        """更新页面属性，properties 为已编码的 {属性ID: 属性值}"""
        try:
            self._gated('PATCH', f"/pages/{page_id}", {'properties': properties})
            logger.debug(f"Updated properties {list(properties)} on page {page_id}")
        except Exception as e:
            logger.error(f"Failed to write properties on page {page_id}: {e}")
            raise

    def get_database(self, database_id: str) -> Dict[str, Dict[str, Any]]:
        """获取数据库属性 schema"""
        try:
            data = self._gated('GET', f"/databases/{database_id}")
        except Exception as e:
            logger.error(f"Failed to get database {database_id}: {e}")
            raise
        return decode_schema(data)

    def test_connection(self) -> bool:
        """测试连接"""
        try:
            self._gated('GET', '/users/me')
            return True
        except Exception as e:
            logger.error(f"Connection test failed: {e}")
            return False
