"""
监控指标收集器
"""
import json
import threading
from typing import Dict, Any, Optional
from datetime import datetime
from collections import defaultdict, deque
from loguru import logger
import requests

from ..config.config import MonitorConfig


class MetricsCollector:
    """监控指标收集器"""
    
    def __init__(self, config: MonitorConfig):
        self.config = config
        self._lock = threading.Lock()
        
        # 周期计数器 {outcome: count}
        self.cycle_counters = defaultdict(int)
        
        # 字段写入计数器 {stage: {status: count}}
        self.field_counters = defaultdict(lambda: defaultdict(int))
        
        # 错误记录
        self.errors = deque(maxlen=1000)
        
        # 周期耗时
        self.cycle_durations = deque(maxlen=1000)
        
        # 限流统计
        self.rate_gate_stats: Dict[str, Any] = {}
        
        # 启动时间
        self.start_time = datetime.now()
    
    def record_cycle(self, outcome: str, duration_seconds: Optional[float] = None) -> None:
        """记录同步周期"""
        with self._lock:
            self.cycle_counters[outcome] += 1
            self.cycle_counters['total'] += 1
            if duration_seconds is not None:
                self.cycle_durations.append({
                    'outcome': outcome,
                    'duration': duration_seconds,
                    'timestamp': datetime.now()
                })
    
    def record_fields(self, report) -> None:
        """记录一次写入报告中的字段结果"""
        with self._lock:
            self.field_counters['applied']['success'] += report.applied_count
            self.field_counters['manual']['skipped'] += len(report.skipped_manual)
            for failure in report.failures:
                self.field_counters[failure.stage]['failed'] += 1
    
    def record_error(self, error_type: str, error_message: str) -> None:
        """记录错误"""
        with self._lock:
            self.errors.append({
                'type': error_type,
                'message': error_message,
                'timestamp': datetime.now()
            })
    
    def update_rate_gate_stats(self, stats: Dict[str, Any]) -> None:
        """更新限流统计"""
        with self._lock:
            self.rate_gate_stats = stats
    
    def get_metrics(self) -> Dict[str, Any]:
        """获取所有指标"""
        with self._lock:
            uptime = (datetime.now() - self.start_time).total_seconds()
            
            # 计算成功率（被拒绝的周期不计入）
            finished = sum(
                count for outcome, count in self.cycle_counters.items()
                if outcome not in ('total', 'rejected')
            )
            failed = self.cycle_counters.get('failed', 0)
            success_rate = round((finished - failed) / finished * 100, 2) if finished else 100.0
            
            # 计算平均周期耗时
            recent = list(self.cycle_durations)[-100:]
            avg_duration = round(
                sum(d['duration'] for d in recent) / len(recent), 3
            ) if recent else None
            
            return {
                'uptime_seconds': uptime,
                'cycle_counters': dict(self.cycle_counters),
                'field_counters': {k: dict(v) for k, v in self.field_counters.items()},
                'success_rate': success_rate,
                'average_cycle_duration': avg_duration,
                'rate_gate': dict(self.rate_gate_stats),
                'recent_errors': list(self.errors)[-10:],
                'timestamp': datetime.now().isoformat()
            }
    
    def get_health_status(self) -> Dict[str, Any]:
        """获取健康状态"""
        metrics = self.get_metrics()
        
        health_status = "healthy"
        issues = []
        
        # 检查成功率
        rate = metrics['success_rate']
        if rate < 90:
            health_status = "degraded"
            issues.append(f"Low sync success rate: {rate}%")
        
        # 检查限流重试
        retries = self.rate_gate_stats.get('total_retries', 0)
        requests_total = self.rate_gate_stats.get('total_requests', 0)
        if requests_total and retries / requests_total > 0.2:
            if health_status == "healthy":
                health_status = "degraded"
            issues.append(f"Frequent rate limiting: {retries} retries in {requests_total} requests")
        
        # 检查错误数
        recent_errors = len(list(self.errors)[-100:])
        if recent_errors > 50:
            health_status = "unhealthy"
            issues.append(f"High error rate: {recent_errors} errors recorded")
        
        return {
            'status': health_status,
            'issues': issues,
            'metrics_summary': {
                'uptime_hours': round(metrics['uptime_seconds'] / 3600, 2),
                'success_rate': rate,
                'recent_errors': recent_errors
            }
        }
    
    def send_alert(self, alert_type: str, message: str, details: Optional[Dict] = None) -> None:
        """发送告警"""
        if not self.config.alert_webhook:
            return
        
        payload = {
            'type': alert_type,
            'message': message,
            'details': details or {},
            'timestamp': datetime.now().isoformat(),
            'service': 'notion_task_sync'
        }
        
        try:
            response = requests.post(
                self.config.alert_webhook,
                data=json.dumps(payload, ensure_ascii=False, default=str),
                headers={'Content-Type': 'application/json'},
                timeout=5
            )
            
            if response.status_code != 200:
                logger.error(f"Failed to send alert: {response.text}")
                
        except requests.RequestException as e:
            logger.error(f"Error sending alert: {e}")
    
    def check_and_alert(self) -> None:
        """检查指标并发送告警"""
        health = self.get_health_status()
        
        if health['status'] == 'unhealthy':
            self.send_alert('CRITICAL', 'Sync service is unhealthy', health)
        elif health['status'] == 'degraded':
            self.send_alert('WARNING', 'Sync service is degraded', health)
    
    def export_metrics(self, format: str = 'json') -> str:
        """导出指标"""
        metrics = self.get_metrics()
        
        if format == 'json':
            return json.dumps(metrics, ensure_ascii=False, indent=2, default=str)
        elif format == 'prometheus':
            lines = []
            
            lines.append('# HELP sync_uptime_seconds Sync service uptime in seconds')
            lines.append('# TYPE sync_uptime_seconds gauge')
            lines.append(f'sync_uptime_seconds {metrics["uptime_seconds"]}')
            
            for outcome, count in metrics['cycle_counters'].items():
                lines.append(f'sync_cycles_total{{outcome="{outcome}"}} {count}')
            
            for stage, counters in metrics['field_counters'].items():
                for status, count in counters.items():
                    lines.append(f'sync_fields_total{{stage="{stage}",status="{status}"}} {count}')
            
            lines.append(f'sync_success_rate {metrics["success_rate"]}')
            
            for key in ('total_requests', 'total_errors', 'total_retries'):
                if key in metrics['rate_gate']:
                    lines.append(f'notion_{key} {metrics["rate_gate"][key]}')
            
            return '\n'.join(lines)
        else:
            raise ValueError(f"Unsupported format: {format}")
