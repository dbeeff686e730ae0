"""
数据库操作封装
"""
from typing import Dict, List, Any, Optional, Tuple
from contextlib import contextmanager
import pymysql
from pymysql.constants import CLIENT
from pymysql.connections import Connection
from pymysql.cursors import DictCursor
from dbutils.pooled_db import PooledDB
from loguru import logger

from ..config.config import DatabaseConfig


class Database:
    """数据库操作类"""
    
    def __init__(self, config: DatabaseConfig):
        self.config = config
        self._pool = None
        self._init_pool()
    
    def _init_pool(self) -> None:
        """初始化连接池"""
        try:
            self._pool = PooledDB(
                creator=pymysql,
                maxconnections=self.config.pool_size,
                mincached=2,
                maxcached=5,
                blocking=True,
                setsession=["SET time_zone = '+00:00'"],
                host=self.config.host,
                port=self.config.port,
                user=self.config.user,
                password=self.config.password,
                database=self.config.database,
                charset=self.config.charset,
                cursorclass=DictCursor,
                client_flag=CLIENT.FOUND_ROWS
            )
            logger.info(f"Database connection pool initialized: {self.config.host}:{self.config.port}")
        except Exception as e:
            logger.error(f"Failed to initialize database pool: {e}")
            raise
    
    @contextmanager
    def get_connection(self) -> Connection:
        """获取数据库连接（上下文管理器）"""
        conn = None
        try:
            conn = self._pool.connection()
            yield conn
        except Exception as e:
            if conn:
                conn.rollback()
            logger.error(f"Database operation error: {e}")
            raise
        finally:
            if conn:
                conn.close()
    
    def execute(self, sql: str, params: Optional[Tuple] = None) -> int:
        """执行SQL语句，返回影响行数"""
        with self.get_connection() as conn:
            cursor = conn.cursor()
            try:
                result = cursor.execute(sql, params)
                conn.commit()
                return result
            finally:
                cursor.close()
    
    def query(self, sql: str, params: Optional[Tuple] = None) -> List[Dict[str, Any]]:
        """查询数据"""
        with self.get_connection() as conn:
            cursor = conn.cursor()
            try:
                cursor.execute(sql, params)
                return list(cursor.fetchall())
            finally:
                cursor.close()
    
    def query_one(self, sql: str, params: Optional[Tuple] = None) -> Optional[Dict[str, Any]]:
        """查询单条数据"""
        with self.get_connection() as conn:
            cursor = conn.cursor()
            try:
                cursor.execute(sql, params)
                return cursor.fetchone()
            finally:
                cursor.close()
    
    def update(self, table: str, data: Dict[str, Any], 
               where: Dict[str, Any]) -> int:
        """更新数据"""
        set_clause = ', '.join([f"{k} = %s" for k in data.keys()])
        where_clause = ' AND '.join([f"{k} = %s" for k in where.keys()])
        
        sql = f"UPDATE {table} SET {set_clause} WHERE {where_clause}"
        params = list(data.values()) + list(where.values())
        
        return self.execute(sql, params)
    
    def upsert(self, table: str, data: Dict[str, Any], 
               unique_keys: List[str]) -> int:
        """插入或更新数据"""
        columns = list(data.keys())
        values = list(data.values())
        placeholders = ', '.join(['%s'] * len(columns))
        
        update_clause = ', '.join([
            f"{col} = VALUES({col})" 
            for col in columns 
            if col not in unique_keys
        ])
        
        sql = f"""
            INSERT INTO {table} ({', '.join(columns)}) 
            VALUES ({placeholders})
            ON DUPLICATE KEY UPDATE {update_clause}
        """
        
        return self.execute(sql, values)
    
    def delete(self, table: str, where: Dict[str, Any]) -> int:
        """删除数据"""
        where_clause = ' AND '.join([f"{k} = %s" for k in where.keys()])
        sql = f"DELETE FROM {table} WHERE {where_clause}"
        
        return self.execute(sql, list(where.values()))
    
    def create_sync_tables(self) -> None:
        """创建任务表和同步相关的表"""
        # 本地任务表
        self.execute("""
            CREATE TABLE IF NOT EXISTS tasks (
                id VARCHAR(64) PRIMARY KEY,
                user_id VARCHAR(64) NOT NULL,
                title VARCHAR(500) NOT NULL DEFAULT '',
                description TEXT,
                status VARCHAR(50) DEFAULT 'pending',
                priority VARCHAR(20) DEFAULT 'medium',
                due_date DATETIME NULL,
                category VARCHAR(100),
                tags TEXT,
                assignee VARCHAR(100),
                duration INT NULL,
                notion_id VARCHAR(64),
                notion_database_id VARCHAR(64),
                notion_url VARCHAR(500),
                last_synced_at DATETIME(6) NULL,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                updated_at TIMESTAMP(6) DEFAULT CURRENT_TIMESTAMP(6) ON UPDATE CURRENT_TIMESTAMP(6),
                UNIQUE KEY uk_notion_id (notion_id),
                INDEX idx_user_notion_db (user_id, notion_database_id)
            ) ENGINE=InnoDB DEFAULT CHARSET=utf8mb4
        """)
        
        # 字段映射表
        self.execute("""
            CREATE TABLE IF NOT EXISTS notion_schema_mapping (
                id BIGINT AUTO_INCREMENT PRIMARY KEY,
                user_id VARCHAR(64) NOT NULL,
                database_id VARCHAR(64) NOT NULL,
                field_map TEXT NOT NULL,
                default_strategy VARCHAR(20) NOT NULL DEFAULT 'remote-wins',
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP ON UPDATE CURRENT_TIMESTAMP,
                UNIQUE KEY uk_user_database (user_id, database_id),
                INDEX idx_updated_at (updated_at)
            ) ENGINE=InnoDB DEFAULT CHARSET=utf8mb4
        """)
        
        # 同步状态表，每个 (用户, 数据库) 一行
        self.execute("""
            CREATE TABLE IF NOT EXISTS notion_sync_status (
                id BIGINT AUTO_INCREMENT PRIMARY KEY,
                user_id VARCHAR(64) NOT NULL,
                database_id VARCHAR(64) NOT NULL,
                status VARCHAR(20) NOT NULL DEFAULT 'idle',
                cycle_token VARCHAR(32) NULL,
                error TEXT,
                last_synced_at DATETIME NULL,
                updated_at TIMESTAMP(6) DEFAULT CURRENT_TIMESTAMP(6) ON UPDATE CURRENT_TIMESTAMP(6),
                UNIQUE KEY uk_user_database (user_id, database_id)
            ) ENGINE=InnoDB DEFAULT CHARSET=utf8mb4
        """)
        
        logger.info("Sync tables created/verified")
    
    def test_connection(self) -> bool:
        """测试数据库连接"""
        try:
            self.query_one("SELECT 1 as test")
            return True
        except Exception as e:
            logger.error(f"Database connection test failed: {e}")
            return False
