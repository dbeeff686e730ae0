"""
Notion 属性编解码
"""
from typing import Dict, Any, Optional, Tuple
from datetime import datetime, date
from decimal import Decimal


TEXT_TYPES = ('title', 'rich_text')
PLAIN_TYPES = ('checkbox', 'url', 'email', 'phone_number')


def _parse_date(value: Optional[str]) -> Any:
    if not value:
        return None
    try:
        if len(value) == 10:
            return date.fromisoformat(value)
        return datetime.fromisoformat(value.replace('Z', '+00:00'))
    except ValueError:
        return value


def decode_property(prop: Dict[str, Any]) -> Tuple[Optional[str], Any]:
    """将 Notion 页面属性解码为 (类型, 普通取值)"""
    prop_type = prop.get('type')

    if prop_type in TEXT_TYPES:
        parts = prop.get(prop_type) or []
        text = ''.join(
            part.get('plain_text') or (part.get('text') or {}).get('content', '')
            for part in parts
        )
        return prop_type, text

    if prop_type in ('select', 'status'):
        option = prop.get(prop_type)
        return prop_type, option.get('name') if option else None

    if prop_type == 'multi_select':
        return prop_type, [option['name'] for option in prop.get('multi_select') or []]

    if prop_type == 'number':
        return prop_type, prop.get('number')

    if prop_type == 'date':
        value = prop.get('date') or {}
        return prop_type, _parse_date(value.get('start'))

    if prop_type == 'people':
        return prop_type, [person['id'] for person in prop.get('people') or [] if person.get('id')]

    if prop_type in PLAIN_TYPES:
        return prop_type, prop.get(prop_type)

    # formula / rollup 等只读类型不参与同步
    return prop_type, None


def decode_properties(properties: Dict[str, Dict[str, Any]]) -> Tuple[Dict[str, Any], Dict[str, str]]:
    """解码页面全部属性，按属性ID索引"""
    values: Dict[str, Any] = {}
    types: Dict[str, str] = {}

    for name, prop in properties.items():
        property_id = prop.get('id', name)
        prop_type, value = decode_property(prop)
        values[property_id] = value
        types[property_id] = prop_type

    return values, types


def encode_property(prop_type: str, value: Any) -> Dict[str, Any]:
    """将普通取值编码为 Notion 属性写入格式"""
    if prop_type in TEXT_TYPES:
        content = '' if value is None else str(value)
        return {prop_type: [{'text': {'content': content}}]}

    if prop_type in ('select', 'status'):
        return {prop_type: {'name': str(value)} if value else None}

    if prop_type == 'multi_select':
        names = value or []
        if isinstance(names, str):
            names = [item.strip() for item in names.split(',') if item.strip()]
        return {'multi_select': [{'name': str(name)} for name in names]}

    if prop_type == 'number':
        if isinstance(value, Decimal):
            value = float(value)
        return {'number': value}

    if prop_type == 'date':
        if isinstance(value, (datetime, date)):
            value = value.isoformat()
        return {'date': {'start': value} if value else None}

    if prop_type == 'people':
        people = value or []
        if not isinstance(people, list):
            people = [people]
        return {'people': [{'id': person} for person in people]}

    if prop_type in PLAIN_TYPES:
        if prop_type == 'checkbox':
            return {'checkbox': bool(value)}
        return {prop_type: value or None}

    raise ValueError(f"Unsupported property type for write: {prop_type}")


def decode_schema(database: Dict[str, Any]) -> Dict[str, Dict[str, Any]]:
    """提取数据库 schema: {属性ID: {"name", "type", "options"}}"""
    schema = {}
    for name, config in (database.get('properties') or {}).items():
        prop_type = config.get('type')
        options = (config.get(prop_type) or {}).get('options') if isinstance(config.get(prop_type), dict) else None
        schema[config.get('id', name)] = {
            'name': config.get('name', name),
            'type': prop_type,
            'options': [option.get('name') for option in options or []]
        }
    return schema
