"""配置管理 - 调度服务配置"""
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
load_dotenv()


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    return float(value) if value else default


@dataclass(frozen=True)
class Settings:
    """服务配置"""

    # 服务配置
    host: str = "0.0.0.0"
    port: int = 3000
    debug: bool = False
    log_level: str = "INFO"

    # 数据目录
    data_dir: Path = field(default_factory=lambda: Path("./data"))
    lock_dir: Optional[Path] = None

    # 调度配置
    timezone: str = "Asia/Shanghai"
    max_retries: int = 3
    retry_base_seconds: float = 1.0
    max_retry_delay_seconds: float = 30.0
    tick_interval_seconds: float = 60.0
    lease_heartbeat_seconds: float = 10.0

    # 执行日志
    max_logs: int = 1000

    # 推送
    bark_server: str = "https://api.day.app"
    push_timeout_seconds: float = 10.0

    @property
    def lease_path(self) -> Path:
        """实例锁文件路径"""
        lock_dir = self.lock_dir or (self.data_dir / "locks")
        return lock_dir / "memocue-scheduler.lock"

    @classmethod
    def from_env(cls) -> "Settings":
        """从环境变量加载配置"""
        lock_dir = os.getenv("LOCK_FILE_DIR")

        return cls(
            # 服务
            host=os.getenv("HOST", "0.0.0.0"),
            port=int(os.getenv("PORT", "3000")),
            debug=os.getenv("DEBUG", "").lower() in ("1", "true"),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),

            # 路径
            data_dir=Path(os.getenv("DATA_DIR", "./data")),
            lock_dir=Path(lock_dir) if lock_dir else None,

            # 调度
            timezone=os.getenv("SCHEDULER_TIMEZONE") or os.getenv("TZ") or "Asia/Shanghai",
            max_retries=int(os.getenv("MAX_RETRIES", "3")),
            retry_base_seconds=_env_float("RETRY_BASE_SECONDS", 1.0),
            max_retry_delay_seconds=_env_float("MAX_RETRY_DELAY_SECONDS", 30.0),
            tick_interval_seconds=_env_float("TICK_INTERVAL_SECONDS", 60.0),
            lease_heartbeat_seconds=_env_float("LEASE_HEARTBEAT_SECONDS", 10.0),

            # 日志
            max_logs=int(os.getenv("MAX_LOGS", "1000")),

            # 推送
            bark_server=os.getenv("BARK_SERVER", "https://api.day.app"),
            push_timeout_seconds=_env_float("PUSH_TIMEOUT_SECONDS", 10.0),
        )


# 全局配置实例
settings = Settings.from_env()
