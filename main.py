#!/usr/bin/env python3
"""
Notion 数据库与本地任务双向同步服务
主程序入口
"""
import sys
import json
import signal
import time
import argparse
from pathlib import Path
from loguru import logger

# 添加项目路径到系统路径
sys.path.insert(0, str(Path(__file__).parent))

from notion_task_sync.config.config import Config
from notion_task_sync.core.exceptions import SyncError
from notion_task_sync.core.sync_service import SyncService
from notion_task_sync.monitor.logger import setup_logger


class SyncApplication:
    """同步应用主类"""

    def __init__(self, config_path: str = None):
        self.config_path = config_path
        self.sync_service = None
        self.running = False

        # 注册信号处理
        signal.signal(signal.SIGINT, self._signal_handler)
        signal.signal(signal.SIGTERM, self._signal_handler)

    def _signal_handler(self, signum, frame):
        """信号处理器"""
        logger.info(f"Received signal {signum}, shutting down...")
        self.stop()

    def initialize(self):
        """初始化应用"""
        try:
            # 加载配置
            config = Config(self.config_path)

            # 设置日志
            setup_logger(config.monitor)

            logger.info("=" * 60)
            logger.info("Notion Task Sync Service")
            logger.info("=" * 60)
            logger.info(f"Config file: {config.config_path}")
            logger.info(f"Log level: {config.monitor.log_level}")
            logger.info(f"Poll interval: {config.sync.poll_interval}s")
            logger.info(f"Default strategy: {config.sync.default_strategy}")

            # 创建同步服务
            self.sync_service = SyncService(config)

            logger.info("Application initialized successfully")

        except Exception as e:
            logger.error(f"Failed to initialize application: {e}")
            raise

    def start(self):
        """启动应用"""
        if not self.sync_service:
            raise RuntimeError("Application not initialized")

        try:
            self.running = True

            # 启动同步服务
            self.sync_service.start()

            logger.info("Application started, press Ctrl+C to stop")

            # 主循环
            while self.running:
                try:
                    # 定期输出状态
                    time.sleep(60)
                    if self.running:
                        self._print_status()
                except KeyboardInterrupt:
                    break

        except Exception as e:
            logger.error(f"Application error: {e}")
            raise
        finally:
            self.stop()

    def stop(self):
        """停止应用"""
        if not self.running:
            return

        self.running = False

        if self.sync_service:
            self.sync_service.stop()

        logger.info("Application stopped")

    def _print_status(self):
        """打印状态信息"""
        if not self.sync_service:
            return

        status = self.sync_service.get_status()

        logger.info("-" * 50)
        logger.info("Sync Service Status")
        logger.info("-" * 50)
        logger.info(f"Running: {status['running']}")
        logger.info(f"Uptime: {status['uptime_seconds']:.0f} seconds")

        sync_stats = status['sync_stats']
        logger.info(f"Cycles: {sync_stats['cycles_applied']} applied, "
                    f"{sync_stats['cycles_manual_pending']} manual pending, "
                    f"{sync_stats['cycles_failed']} failed, "
                    f"{sync_stats['cycles_rejected']} rejected")

        rate_stats = status['rate_limit_stats']
        logger.info(f"Notion requests: {rate_stats['total_requests']} total, "
                    f"{rate_stats['total_retries']} retries, "
                    f"{rate_stats['total_errors']} errors")
        logger.info("-" * 50)


def _print_json(data):
    print(json.dumps(data, indent=2, ensure_ascii=False, default=str))


def main():
    """主函数"""
    parser = argparse.ArgumentParser(
        description='Notion Task Bidirectional Sync Service'
    )
    parser.add_argument(
        '-c', '--config',
        help='Path to configuration file',
        default=None
    )
    parser.add_argument(
        '--init',
        action='store_true',
        help='Initialize configuration file'
    )
    parser.add_argument(
        '--test',
        action='store_true',
        help='Test connections and exit'
    )
    parser.add_argument(
        '--sync',
        nargs=2,
        metavar=('USER_ID', 'DATABASE_ID'),
        help='Run one sync cycle for a user and Notion database'
    )
    parser.add_argument(
        '--strategy',
        help='Conflict resolution strategy for --sync '
             '(remote-wins, local-wins, latest-wins, manual)'
    )
    parser.add_argument(
        '--status',
        nargs=2,
        metavar=('USER_ID', 'DATABASE_ID'),
        help='Show sync status for a user and Notion database'
    )
    parser.add_argument(
        '--list-mappings',
        metavar='USER_ID',
        help='List field mappings of a user'
    )
    parser.add_argument(
        '--rate-limit-stats',
        action='store_true',
        help='Show Notion rate limit statistics'
    )

    args = parser.parse_args()

    # 初始化配置文件
    if args.init:
        config = Config(args.config)
        config.save()
        print(f"Configuration file created: {config.config_path}")
        print("Please edit the configuration file and run the service again")
        return

    # 创建应用实例
    app = SyncApplication(args.config)
    app.initialize()
    service = app.sync_service

    # 测试连接
    if args.test:
        logger.info("Testing connections...")
        if not service.test_connections():
            sys.exit(1)
        logger.info("Connection test completed")
        return

    # 单次同步
    if args.sync:
        user_id, database_id = args.sync
        try:
            result = service.run_sync_cycle(user_id, database_id, args.strategy)
        except SyncError as e:
            logger.error(f"Sync failed: {e}")
            sys.exit(1)
        _print_json(result.to_dict())
        if result.error:
            sys.exit(2)
        return

    # 显示状态
    if args.status:
        record = service.get_sync_status(*args.status)
        if record is None:
            logger.warning(f"No sync status for {args.status[0]}/{args.status[1]}")
            return
        _print_json(record.to_dict())
        return

    # 列出映射
    if args.list_mappings:
        _print_json([
            {
                'database_id': m.database_id,
                'fields': m.fields,
                'default_strategy': m.default_strategy,
                'updated_at': m.updated_at
            }
            for m in service.list_mappings(args.list_mappings)
        ])
        return

    # 限流统计（仅本进程）
    if args.rate_limit_stats:
        _print_json(service.get_rate_limit_stats())
        return

    # 启动服务
    try:
        app.start()
    except Exception as e:
        logger.error(f"Service failed: {e}")
        sys.exit(1)


if __name__ == '__main__':
    main()
