"""
字段映射器
"""
import re
from typing import Dict, Any, List, Optional
from datetime import datetime, date, timezone
from decimal import Decimal, InvalidOperation
from loguru import logger

from .types import FieldType, as_utc


# 本地任务可写字段及其类型
LOCAL_FIELD_TYPES: Dict[str, FieldType] = {
    'title': FieldType.STRING,
    'description': FieldType.STRING,
    'status': FieldType.SELECT,
    'priority': FieldType.SELECT,
    'due_date': FieldType.DATE,
    'category': FieldType.SELECT,
    'tags': FieldType.MULTI_SELECT,
    'assignee': FieldType.PEOPLE,
    'duration': FieldType.NUMBER,
}

# 本地字段可对应的 Notion 属性类型
TYPE_COMPATIBILITY: Dict[str, List[str]] = {
    'title': ['title', 'rich_text'],
    'description': ['rich_text'],
    'status': ['select', 'status'],
    'priority': ['select', 'number'],
    'due_date': ['date'],
    'category': ['select', 'multi_select'],
    'tags': ['multi_select'],
    'assignee': ['people'],
    'duration': ['number'],
}

REQUIRED_FIELDS = ('title', 'status', 'priority')

PRIORITY_LEVELS = {1: 'low', 2: 'medium', 3: 'high'}


class FieldMapper:
    """字段映射器，处理本地任务和 Notion 属性之间的字段转换与比较"""

    def __init__(self, default_mappings: Optional[Dict[str, Dict[str, str]]] = None):
        """
        default_mappings格式:
        {
            "notion_database_id": {
                "本地字段": "Notion属性ID",
                ...
            }
        }
        """
        self.default_mappings = default_mappings or {}

    @staticmethod
    def is_local_field(field_name: str) -> bool:
        return field_name in LOCAL_FIELD_TYPES

    @staticmethod
    def field_type(field_name: str) -> FieldType:
        return LOCAL_FIELD_TYPES.get(field_name, FieldType.STRING)

    def remote_to_local(self, field_name: str, prop_type: Optional[str], value: Any) -> Any:
        """Notion 属性值转换为本地字段取值"""
        if value is None:
            return None

        if field_name == 'priority' and prop_type == 'number':
            try:
                level = int(value)
            except (TypeError, ValueError):
                return None
            if level <= 1:
                return 'low'
            if level >= 3:
                return 'high'
            return 'medium'

        # 多选属性映射到单值字段时取第一个
        if isinstance(value, list) and self.field_type(field_name) != FieldType.MULTI_SELECT:
            return value[0] if value else None

        return value

    def local_to_remote(self, field_name: str, prop_type: Optional[str], value: Any) -> Any:
        """本地字段取值转换为 Notion 属性值（编码前）"""
        if field_name == 'priority' and prop_type == 'number':
            labels = {v: k for k, v in PRIORITY_LEVELS.items()}
            if value is None:
                return None
            return labels.get(str(value).strip().lower(), 2)

        if prop_type == 'multi_select':
            if value is None or value == '':
                return []
            if isinstance(value, str):
                return [item.strip() for item in value.split(',') if item.strip()]
            return list(value)

        return value

    def normalize(self, field_name: str, value: Any) -> Any:
        """按字段类型归一化取值，用于比较"""
        field_type = self.field_type(field_name)

        if field_type == FieldType.STRING:
            return '' if value is None else str(value)

        if field_type == FieldType.NUMBER:
            return self._normalize_number(value)

        if field_type == FieldType.SELECT:
            if isinstance(value, dict):
                value = value.get('name')
            if value is None:
                return None
            value = str(value).strip()
            return value or None

        if field_type == FieldType.MULTI_SELECT:
            if value is None:
                return frozenset()
            if isinstance(value, str):
                items = value.split(',')
            else:
                items = [item.get('name') if isinstance(item, dict) else item for item in value]
            return frozenset(str(item).strip() for item in items if item is not None and str(item).strip())

        if field_type == FieldType.DATE:
            return self._normalize_date(value)

        if field_type == FieldType.PEOPLE:
            if isinstance(value, list):
                value = value[0] if value else None
            if isinstance(value, dict):
                value = value.get('id')
            return value or None

        return value

    def values_equal(self, field_name: str, local_value: Any, remote_value: Any) -> bool:
        """按字段类型比较两侧取值"""
        return self.normalize(field_name, local_value) == self.normalize(field_name, remote_value)

    def _normalize_number(self, value: Any) -> Any:
        if value is None or value == '':
            return None
        if isinstance(value, bool):
            value = int(value)
        try:
            return Decimal(str(value).strip())
        except InvalidOperation:
            return str(value)

    def _normalize_date(self, value: Any) -> Any:
        if value is None or value == '':
            return None

        if isinstance(value, datetime):
            return as_utc(value)

        if isinstance(value, date):
            return datetime(value.year, value.month, value.day, tzinfo=timezone.utc)

        if isinstance(value, str) and self._is_datetime_string(value):
            try:
                return as_utc(datetime.fromisoformat(value.strip().replace('Z', '+00:00')))
            except ValueError:
                return value

        return value

    def _is_datetime_string(self, value: str) -> bool:
        """检查是否是日期或日期时间字符串"""
        datetime_patterns = [
            r'\d{4}-\d{2}-\d{2}T\d{2}:\d{2}',  # ISO格式
            r'\d{4}-\d{2}-\d{2} \d{2}:\d{2}',  # 常规格式
            r'\d{4}-\d{2}-\d{2}$',  # 日期
        ]

        for pattern in datetime_patterns:
            if re.match(pattern, value.strip()):
                return True
        return False

    def validate_mapping(self, mapping: Dict[str, str],
                         schema: Optional[Dict[str, Dict[str, Any]]] = None) -> List[str]:
        """验证字段映射配置

        schema 为 Notion 数据库属性 {属性ID: {"name": ..., "type": ...}}，
        未提供时只校验本地字段。
        """
        errors = []

        for local_field in mapping.keys():
            if not self.is_local_field(local_field):
                errors.append(f"Unknown local field: {local_field}")

        if schema is None:
            return errors

        for field_name in REQUIRED_FIELDS:
            if not mapping.get(field_name):
                errors.append(f"Missing required field: {field_name}")

        for local_field, property_id in mapping.items():
            if not self.is_local_field(local_field):
                continue

            prop = schema.get(property_id)
            if prop is None:
                errors.append(f"Invalid property ID for {local_field}: {property_id}")
                continue

            compatible = TYPE_COMPATIBILITY[local_field]
            if prop.get('type') not in compatible:
                errors.append(
                    f"Invalid property type for {local_field}: "
                    f"expected {' or '.join(compatible)}, got {prop.get('type')}"
                )

        return errors

    def generate_default_mapping(self, schema: Dict[str, Dict[str, Any]]) -> Dict[str, str]:
        """根据属性名称和类型生成默认映射"""
        mapping: Dict[str, str] = {}
        properties = list(schema.items())

        def normalized(name: str) -> str:
            return re.sub(r'[^a-z0-9]', '', (name or '').lower())

        # 第一轮：名称完全匹配
        for property_id, prop in properties:
            name = normalized(prop.get('name'))
            for local_field, compatible in TYPE_COMPATIBILITY.items():
                if local_field in mapping:
                    continue
                if name == local_field.replace('_', '') and prop.get('type') in compatible:
                    mapping[local_field] = property_id
                    break

        # 第二轮：名称包含匹配
        for local_field, compatible in TYPE_COMPATIBILITY.items():
            if local_field in mapping:
                continue
            for property_id, prop in properties:
                if property_id in mapping.values():
                    continue
                if (local_field.replace('_', '') in normalized(prop.get('name'))
                        and prop.get('type') in compatible):
                    mapping[local_field] = property_id
                    break

        # 第三轮：必填字段按类型匹配
        for local_field in REQUIRED_FIELDS:
            if local_field in mapping:
                continue
            for property_id, prop in properties:
                if property_id in mapping.values():
                    continue
                if prop.get('type') in TYPE_COMPATIBILITY[local_field]:
                    mapping[local_field] = property_id
                    break

        logger.debug(f"Generated default mapping with {len(mapping)} fields")
        return mapping

    def mapping_for(self, database_id: str, schema: Dict[str, Dict[str, Any]]) -> Dict[str, str]:
        """获取数据库的初始映射：优先使用配置，否则自动生成"""
        if database_id in self.default_mappings:
            return dict(self.default_mappings[database_id])
        return self.generate_default_mapping(schema)
