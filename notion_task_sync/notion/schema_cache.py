"""
Notion 数据库 schema 缓存
"""
import json
import time
from typing import Dict, Any, Optional, Tuple

import redis
from loguru import logger


class SchemaCache:
    """数据库 schema 缓存，Redis 可用时存 Redis，否则存内存"""

    def __init__(self, redis_client: Optional[redis.Redis] = None, ttl: int = 3600):
        self.redis = redis_client
        self.use_redis = redis_client is not None
        self.ttl = ttl

        # 内存缓存（当Redis不可用时使用）: {key: (过期时间, schema)}
        self.memory_cache: Dict[str, Tuple[float, Dict[str, Any]]] = {}

    def _get_key(self, database_id: str) -> str:
        """获取缓存键名"""
        return f"notion_schema:{database_id}"

    def get(self, database_id: str) -> Optional[Dict[str, Dict[str, Any]]]:
        """读取缓存"""
        key = self._get_key(database_id)

        if self.use_redis:
            try:
                data = self.redis.get(key)
            except redis.RedisError as e:
                logger.warning(f"Redis read failed for {key}: {e}")
                return None
            return json.loads(data) if data else None

        entry = self.memory_cache.get(key)
        if not entry:
            return None
        expires_at, schema = entry
        if expires_at < time.time():
            self.memory_cache.pop(key, None)
            return None
        return schema

    def set(self, database_id: str, schema: Dict[str, Dict[str, Any]]) -> None:
        """写入缓存"""
        key = self._get_key(database_id)

        if self.use_redis:
            try:
                self.redis.set(key, json.dumps(schema, ensure_ascii=False), ex=self.ttl)
            except redis.RedisError as e:
                logger.warning(f"Redis write failed for {key}: {e}")
        else:
            self.memory_cache[key] = (time.time() + self.ttl, schema)

    def invalidate(self, database_id: str) -> None:
        """删除缓存"""
        key = self._get_key(database_id)

        if self.use_redis:
            try:
                self.redis.delete(key)
            except redis.RedisError as e:
                logger.warning(f"Redis delete failed for {key}: {e}")
                return
        else:
            self.memory_cache.pop(key, None)

        logger.info(f"Invalidated schema cache for {database_id}")

    def get_or_load(self, database_id: str, loader) -> Dict[str, Dict[str, Any]]:
        """读取缓存，未命中时调用 loader 并写入"""
        schema = self.get(database_id)
        if schema is not None:
            return schema

        schema = loader(database_id)
        self.set(database_id, schema)
        return schema
