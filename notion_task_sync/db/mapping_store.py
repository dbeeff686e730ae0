"""
字段映射存储
"""
import json
from typing import Dict, List, Any, Optional
from loguru import logger

from .database import Database
from ..core.exceptions import InvalidMapping, MappingNotFound
from ..core.field_mapper import FieldMapper
from ..core.types import FieldMapping, ResolutionStrategy


class MappingStore:
    """按 (用户, 数据库) 存取字段映射"""

    def __init__(self, database: Database, field_mapper: Optional[FieldMapper] = None):
        self.db = database
        self.mapper = field_mapper or FieldMapper()

    def save_mapping(self, user_id: str, database_id: str, fields: Dict[str, str],
                     default_strategy: str = ResolutionStrategy.REMOTE_WINS.value,
                     schema: Optional[Dict[str, Dict[str, Any]]] = None) -> FieldMapping:
        """创建或更新映射"""
        errors = self.mapper.validate_mapping(fields, schema)
        if errors:
            raise InvalidMapping(errors)

        strategy = ResolutionStrategy.parse(default_strategy)

        # TEXT 列保存，保持字段顺序
        self.db.upsert(
            'notion_schema_mapping',
            {
                'user_id': user_id,
                'database_id': database_id,
                'field_map': json.dumps(list(fields.items()), ensure_ascii=False),
                'default_strategy': strategy.value
            },
            ['user_id', 'database_id']
        )
        logger.info(f"Saved mapping for {user_id}/{database_id}: {len(fields)} fields")

        return FieldMapping(
            user_id=user_id,
            database_id=database_id,
            fields=dict(fields),
            default_strategy=strategy.value
        )

    def get_mapping(self, user_id: str, database_id: str) -> Optional[FieldMapping]:
        """读取映射"""
        row = self.db.query_one(
            "SELECT * FROM notion_schema_mapping WHERE user_id = %s AND database_id = %s",
            (user_id, database_id)
        )
        return self._row_to_mapping(row) if row else None

    def mapping_exists(self, user_id: str, database_id: str) -> bool:
        """检查映射是否存在"""
        row = self.db.query_one(
            "SELECT COUNT(*) as count FROM notion_schema_mapping WHERE user_id = %s AND database_id = %s",
            (user_id, database_id)
        )
        return bool(row and row['count'] > 0)

    def list_mappings(self, user_id: str) -> List[FieldMapping]:
        """列出用户全部映射，最近更新的在前"""
        rows = self.db.query(
            "SELECT * FROM notion_schema_mapping WHERE user_id = %s ORDER BY updated_at DESC",
            (user_id,)
        )
        return [self._row_to_mapping(row) for row in rows]

    def list_all_mappings(self) -> List[FieldMapping]:
        """列出全部映射（定时同步使用）"""
        rows = self.db.query("SELECT * FROM notion_schema_mapping ORDER BY id ASC")
        return [self._row_to_mapping(row) for row in rows]

    def delete_mapping(self, user_id: str, database_id: str) -> None:
        """删除映射"""
        deleted = self.db.delete(
            'notion_schema_mapping',
            {'user_id': user_id, 'database_id': database_id}
        )
        if not deleted:
            raise MappingNotFound(user_id, database_id)
        logger.info(f"Deleted mapping for {user_id}/{database_id}")

    @staticmethod
    def _row_to_mapping(row: Dict[str, Any]) -> FieldMapping:
        pairs = json.loads(row['field_map']) if row.get('field_map') else []
        fields = dict(pairs) if isinstance(pairs, list) else dict(pairs.items())
        return FieldMapping(
            user_id=row['user_id'],
            database_id=row['database_id'],
            fields=fields,
            default_strategy=row.get('default_strategy') or ResolutionStrategy.REMOTE_WINS.value,
            updated_at=row.get('updated_at')
        )
