"""
Cache warming for the CMS cache layer.

Proactively loads frequently accessed data (post listings, analytics
summaries, ...) into a cache tier so the first request after startup or
after an invalidation is already a hit.
"""

import asyncio
import time
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Callable, Awaitable
from dataclasses import dataclass
from enum import Enum

from ..logging_config import get_logger
from .cache_manager import AdvancedCacheManager


class WarmingStrategy(str, Enum):
    """Cache warming strategy enumeration."""
    IMMEDIATE = "immediate"
    SCHEDULED = "scheduled"
    ON_DEMAND = "on_demand"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class WarmingJob:
    """Cache warming job configuration."""
    name: str
    cache_type: str
    strategy: WarmingStrategy
    data_loader: Callable[[], Awaitable[Dict[str, Any]]]
    ttl: Optional[int] = None
    schedule_interval: Optional[int] = None  # seconds
    priority: int = 1  # 1 = highest, 10 = lowest
    enabled: bool = True
    last_run: Optional[datetime] = None
    next_run: Optional[datetime] = None
    run_count: int = 0
    success_count: int = 0
    error_count: int = 0
    avg_duration: float = 0.0


class CacheWarmer:
    """Runs warming jobs against one cache manager."""

    def __init__(self, cache_manager: AdvancedCacheManager, poll_interval: float = 30):
        self.cache_manager = cache_manager
        self.poll_interval = poll_interval
        self.logger = get_logger(__name__, 'cache_warmer')

        self.jobs: Dict[str, WarmingJob] = {}
        self.running = False
        self.worker_task: Optional[asyncio.Task] = None

        self.stats = {
            'jobs_registered': 0,
            'jobs_executed': 0,
            'jobs_succeeded': 0,
            'jobs_failed': 0,
            'total_items_warmed': 0,
            'total_warming_time': 0.0
        }

    def register_job(self, job: WarmingJob) -> None:
        """Register a cache warming job; the target tier must exist."""
        self.cache_manager.get_tier(job.cache_type)
        self.jobs[job.name] = job
        self.stats['jobs_registered'] += 1

        if job.strategy == WarmingStrategy.SCHEDULED and job.schedule_interval:
            job.next_run = _utcnow() + timedelta(seconds=job.schedule_interval)

        self.logger.info(f"Registered cache warming job: {job.name}", operation="register_job")

    def unregister_job(self, job_name: str) -> bool:
        """Unregister a cache warming job."""
        if job_name in self.jobs:
            del self.jobs[job_name]
            self.logger.info(f"Unregistered cache warming job: {job_name}", operation="unregister_job")
            return True
        return False

    def get_job(self, job_name: str) -> Optional[WarmingJob]:
        return self.jobs.get(job_name)

    async def warm_job(self, job_name: str) -> bool:
        """Execute a specific warming job."""
        job = self.jobs.get(job_name)
        if not job or not job.enabled:
            self.logger.warning(f"Job {job_name} not found or disabled", operation="warm_job")
            return False

        start_time = time.time()

        try:
            data = await job.data_loader()

            if not data:
                self.logger.warning(f"No data returned from job {job_name}", operation="warm_job")
                success = True
            else:
                success = await self.cache_manager.batch_set([
                    {'cache_type': job.cache_type, 'key': key, 'data': value, 'ttl': job.ttl}
                    for key, value in data.items()
                ])
        except Exception as e:
            job.run_count += 1
            job.error_count += 1
            job.last_run = _utcnow()
            self.stats['jobs_failed'] += 1
            self.stats['jobs_executed'] += 1
            self.logger.error(f"Cache warming job {job_name} failed: {e}", operation="warm_job")
            self.cache_manager.metrics.get_counter('cache_warming_jobs_total').increment(job=job_name, status='error')
            self._schedule_next(job)
            return False

        duration = time.time() - start_time
        job.run_count += 1
        job.last_run = _utcnow()

        if success:
            job.success_count += 1
            self.stats['jobs_succeeded'] += 1
            self.stats['total_items_warmed'] += len(data or {})
            self.logger.info(
                f"Cache warming job {job_name} completed: {len(data or {})} items in {duration:.2f}s",
                operation="warm_job",
            )
        else:
            job.error_count += 1
            self.stats['jobs_failed'] += 1
            self.logger.error(f"Cache warming job {job_name} failed to set cache data", operation="warm_job")

        job.avg_duration = (job.avg_duration * (job.run_count - 1) + duration) / job.run_count
        self._schedule_next(job)

        self.stats['jobs_executed'] += 1
        self.stats['total_warming_time'] += duration
        self.cache_manager.metrics.get_counter('cache_warming_jobs_total').increment(
            job=job_name, status='success' if success else 'failed'
        )

        return success

    def _schedule_next(self, job: WarmingJob) -> None:
        if job.strategy == WarmingStrategy.SCHEDULED and job.schedule_interval:
            job.next_run = _utcnow() + timedelta(seconds=job.schedule_interval)

    async def warm_all_immediate(self) -> int:
        """Warm all immediate strategy jobs concurrently."""
        jobs = [job for job in self.jobs.values()
                if job.strategy == WarmingStrategy.IMMEDIATE and job.enabled]

        if not jobs:
            return 0

        results = await asyncio.gather(*(self.warm_job(job.name) for job in jobs), return_exceptions=True)

        success_count = sum(1 for result in results if result is True)
        self.logger.info(f"Completed immediate warming: {success_count}/{len(jobs)} successful",
                         operation="warm_all_immediate")
        return success_count

    async def run_due_jobs(self) -> int:
        """Run every scheduled job whose next run time has passed, by priority."""
        now = _utcnow()
        jobs_to_run = sorted(
            (job for job in self.jobs.values()
             if job.strategy == WarmingStrategy.SCHEDULED and job.enabled
             and job.next_run and now >= job.next_run),
            key=lambda j: j.priority,
        )

        ran = 0
        for job in jobs_to_run:
            await self.warm_job(job.name)
            ran += 1
        return ran

    async def start_scheduler(self) -> None:
        """Start the cache warming scheduler."""
        if self.running:
            self.logger.warning("Cache warming scheduler is already running", operation="start_scheduler")
            return

        self.running = True
        self.worker_task = asyncio.create_task(self._scheduler_worker())
        self.logger.info("Cache warming scheduler started", operation="start_scheduler")

    async def stop_scheduler(self) -> None:
        """Stop the cache warming scheduler."""
        if not self.running:
            return

        self.running = False

        if self.worker_task:
            self.worker_task.cancel()
            try:
                await self.worker_task
            except asyncio.CancelledError:
                pass
            self.worker_task = None

        self.logger.info("Cache warming scheduler stopped", operation="stop_scheduler")

    async def _scheduler_worker(self) -> None:
        while self.running:
            try:
                await self.run_due_jobs()
                await asyncio.sleep(self.poll_interval)
            except asyncio.CancelledError:
                break
            except Exception as e:
                self.logger.error(f"Error in cache warming scheduler: {e}", operation="scheduler")
                await asyncio.sleep(self.poll_interval * 2)

    def get_stats(self) -> Dict[str, Any]:
        """Get cache warming statistics."""
        job_stats = {}
        for name, job in self.jobs.items():
            job_stats[name] = {
                'strategy': job.strategy.value,
                'cache_type': job.cache_type,
                'enabled': job.enabled,
                'run_count': job.run_count,
                'success_count': job.success_count,
                'error_count': job.error_count,
                'success_rate': job.success_count / job.run_count if job.run_count > 0 else 0,
                'avg_duration': job.avg_duration,
                'last_run': job.last_run.isoformat() if job.last_run else None,
                'next_run': job.next_run.isoformat() if job.next_run else None
            }

        return {
            'overall': dict(self.stats),
            'jobs': job_stats,
            'scheduler_running': self.running
        }


def create_warming_jobs(
    posts_loader: Optional[Callable[[], Awaitable[Any]]] = None,
    analytics_loader: Optional[Callable[[], Awaitable[Any]]] = None,
) -> List[WarmingJob]:
    """Build the standard CMS warming jobs for whichever loaders are supplied."""
    jobs = []

    if posts_loader is not None:
        async def load_posts() -> Dict[str, Any]:
            return {'posts:GET:/api/posts': await posts_loader()}

        jobs.append(WarmingJob(
            name="posts",
            cache_type="standard",
            strategy=WarmingStrategy.IMMEDIATE,
            data_loader=load_posts,
            priority=1,
        ))

    if analytics_loader is not None:
        async def load_analytics() -> Dict[str, Any]:
            return {'GET:/api/analytics': await analytics_loader()}

        jobs.append(WarmingJob(
            name="analytics",
            cache_type="longterm",
            strategy=WarmingStrategy.SCHEDULED,
            data_loader=load_analytics,
            schedule_interval=900,  # 15 minutes
            priority=2,
        ))

    return jobs
