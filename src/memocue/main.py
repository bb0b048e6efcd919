"""FastAPI 主入口"""
import sys
from contextlib import asynccontextmanager
from typing import Any, Optional

from fastapi import FastAPI, HTTPException, Request
from pydantic import BaseModel
from loguru import logger

from . import __version__
from .config import Settings, settings
from .providers import ProviderFactory
from .scheduler import InstanceLease, SchedulerEvent, SchedulerService
from .scheduler.service import (
    DeviceDirectory,
    EventEmitter,
    ExecutionLogStore,
    JsonFileStore,
    TaskStore,
)


# ============== 日志 ==============

def setup_logging(config: Settings) -> None:
    """配置 loguru：控制台 + 滚动文件"""
    log_dir = config.data_dir / "logs"
    log_dir.mkdir(parents=True, exist_ok=True)

    logger.remove()
    logger.add(sys.stderr, level=config.log_level)
    logger.add(
        log_dir / "app.log",
        level=config.log_level,
        rotation="10 MB",
        retention=5,
        encoding="utf-8",
    )
    logger.add(
        log_dir / "error.log",
        level="ERROR",
        rotation="10 MB",
        retention=5,
        encoding="utf-8",
    )


# ============== 组装 ==============

def build_scheduler(config: Settings) -> SchedulerService:
    """按配置组装调度器及其依赖"""
    events = EventEmitter()
    files = JsonFileStore(config.data_dir)
    provider_factory = ProviderFactory.default(config)

    return SchedulerService(
        task_store=TaskStore(files, events=events),
        device_directory=DeviceDirectory(files, provider_factory),
        provider_factory=provider_factory,
        log_store=ExecutionLogStore(files, max_logs=config.max_logs, events=events),
        settings=config,
        events=events,
        lease=InstanceLease(config.lease_path, heartbeat_seconds=config.lease_heartbeat_seconds),
    )


def _log_event(event: SchedulerEvent) -> None:
    logger.debug(f"Event {event.type} task={event.task_id or '-'}")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """应用生命周期管理"""
    logger.info("=" * 50)
    logger.info("  MemoCue Scheduler")
    logger.info(f"  Data dir: {settings.data_dir}")
    logger.info(f"  Timezone: {settings.timezone}")
    logger.info("=" * 50)

    scheduler = build_scheduler(settings)
    scheduler.on_event(_log_event)
    app.state.scheduler = scheduler

    # 未拿到实例锁时仍提供 API 和手动执行，只是不跑定时循环
    try:
        if not await scheduler.start():
            logger.warning("Scheduler lease held by another process, running without tick loop")
    except Exception as e:
        logger.error(f"Failed to start scheduler: {e}")

    logger.info(f"FastAPI docs: http://{settings.host}:{settings.port}/docs")

    yield

    # 清理
    logger.info("Shutting down...")
    await scheduler.stop()
    logger.info("Goodbye!")


app = FastAPI(
    title="MemoCue Scheduler",
    description="Reminder scheduling and push delivery",
    version=__version__,
    lifespan=lifespan,
)


# ============== Pydantic Models ==============

class HealthResponse(BaseModel):
    """健康检查响应"""
    status: str
    version: str
    running: bool
    lease_held: bool


class ReloadResponse(BaseModel):
    """重新加载响应"""
    status: str
    total_jobs: int


class RunResponse(BaseModel):
    """手动执行响应"""
    task_id: str
    success: bool
    skipped: bool
    success_count: int
    failure_count: int
    error: Optional[str] = None
    deliveries: list[dict[str, Any]] = []


# ============== REST API ==============

def _scheduler(request: Request) -> SchedulerService:
    scheduler = getattr(request.app.state, "scheduler", None)
    if scheduler is None:
        raise HTTPException(status_code=503, detail="Service not ready")
    return scheduler


@app.get("/api/health")
async def health(request: Request) -> HealthResponse:
    """健康检查"""
    scheduler = _scheduler(request)
    status = scheduler.get_status()
    return HealthResponse(
        status="ok",
        version=__version__,
        running=status.running,
        lease_held=status.lease_held,
    )


@app.get("/api/scheduler/status")
async def scheduler_status(request: Request) -> dict[str, Any]:
    """调度器状态"""
    return _scheduler(request).get_status().to_dict()


@app.post("/api/scheduler/reload")
async def reload_scheduler(request: Request) -> ReloadResponse:
    """从任务存储重新加载所有任务"""
    scheduler = _scheduler(request)
    if not scheduler.running:
        raise HTTPException(status_code=409, detail="Scheduler is not running in this process")
    total = await scheduler.reload()
    return ReloadResponse(status="reloaded", total_jobs=total)


@app.post("/api/scheduler/tasks/{task_id}/run")
async def run_task(task_id: str, request: Request) -> RunResponse:
    """立即执行任务"""
    scheduler = _scheduler(request)
    if await scheduler.task_store.get_task(task_id) is None:
        raise HTTPException(status_code=404, detail="Task not found")

    result = await scheduler.execute_now(task_id)

    return RunResponse(
        task_id=result.task_id,
        success=result.success,
        skipped=result.skipped,
        success_count=result.success_count,
        failure_count=result.failure_count,
        error=result.error,
        deliveries=[d.to_dict() for d in result.deliveries],
    )


@app.get("/api/logs")
async def list_logs(
    request: Request,
    task_id: Optional[str] = None,
    device_id: Optional[str] = None,
    status: Optional[str] = None,
    limit: int = 100,
) -> dict[str, Any]:
    """查询执行日志"""
    log_store = _scheduler(request).deps.log_store
    logs = await log_store.filter_logs(
        task_id=task_id,
        device_id=device_id,
        status=status,
        limit=limit,
    )
    return {"logs": logs, "total": len(logs)}


# ============== 启动入口 ==============

def main():
    """启动 FastAPI 服务"""
    import uvicorn

    setup_logging(settings)
    uvicorn.run(
        "memocue.main:app",
        host=settings.host,
        port=settings.port,
        reload=False,
    )


if __name__ == "__main__":
    main()
