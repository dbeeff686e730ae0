"""基本使用示例"""

import os

from notion_task_sync import Config, SyncService
from notion_task_sync.core.exceptions import ConcurrentCycleRejected, InvalidMapping


def main():
    """主函数"""
    # 从环境变量获取用户和 Notion 数据库
    user_id = os.getenv("SYNC_USER_ID")
    database_id = os.getenv("NOTION_DATABASE_ID")

    if not user_id or not database_id:
        print("请设置环境变量 SYNC_USER_ID 和 NOTION_DATABASE_ID")
        return

    # 初始化同步服务
    print("初始化同步服务...")
    service = SyncService(Config(os.getenv("SYNC_CONFIG")))

    # 按数据库 schema 生成并保存字段映射
    print(f"\n保存映射: {database_id}")
    try:
        mapping = service.save_mapping(user_id, database_id, default_strategy="latest-wins")
    except InvalidMapping as e:
        print(f"映射无效: {e.errors}")
        return
    for local_field, property_id in mapping.items():
        print(f"  {local_field} -> {property_id}")

    # 执行一次同步
    print("\n执行同步...")
    try:
        result = service.run_sync_cycle(user_id, database_id)
    except ConcurrentCycleRejected:
        print("同步已在运行中")
        return

    print(f"结果: {result.outcome.value}, 写入 {result.applied_count} 个字段, "
          f"首次同步 {result.seeded_count} 个任务")

    for conflict in result.manual_conflicts:
        print(f"  待处理冲突 {conflict.task_id}.{conflict.field}: "
              f"本地={conflict.local_value!r} Notion={conflict.remote_value!r}")

    for failure in result.failures:
        print(f"  失败 {failure.task_id}.{failure.field} ({failure.stage}): {failure.error}")

    # 查看同步状态
    status = service.get_sync_status(user_id, database_id)
    print(f"\n同步状态: {status.to_dict()}")

    print(f"限流统计: {service.get_rate_limit_stats()}")


if __name__ == "__main__":
    main()
