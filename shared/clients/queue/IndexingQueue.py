import asyncio
import time
from typing import Any

import redis.asyncio as redis

from shared.helper.HelperConfig import HelperConfig
from shared.models.indexing import BackoffOptions, JobOptions, QueueCounts, QueueJob


def now_ms() -> int:
    return int(time.time() * 1000)


class IndexingQueue:
    """
    Durable, retryable job queue on Redis.

    Key layout below ``queue:{name}``:
        :id          job id counter
        :job:{id}    JSON of the QueueJob
        :wait        list of ready job ids (LPUSH in, LMOVE out)
        :active      list of job ids reserved by a worker
        :leases      sorted set of active job ids scored by lease expiry epoch ms
        :delayed     sorted set of job ids scored by ready-at epoch ms
        :failed      sorted set of permanently failed job ids scored by fail time
        :completed   counter of acknowledged jobs (their job keys are deleted)
    """

    def __init__(self, helper_config: HelperConfig, client: redis.Redis | None = None):
        self.logging = helper_config.get_logger()
        self._helper_config = helper_config
        self.redis_url = helper_config.get_string_val("REDIS_URL", default="redis://localhost:6379/0")
        self.queue_name = helper_config.get_string_val("QUEUE_NAME", default="knowledge-indexing")
        self.poll_interval = helper_config.get_float_val("QUEUE_POLL_INTERVAL", default=0.5)
        self.lease_ms = helper_config.get_int_val("QUEUE_LEASE_MS", default=300_000, minimum=0)
        self.default_opts = JobOptions(
            attempts=helper_config.get_int_val("QUEUE_ATTEMPTS", default=3, minimum=1),
            backoff=BackoffOptions(
                type="exponential",
                delay=helper_config.get_int_val("QUEUE_BACKOFF_DELAY_MS", default=2000, minimum=0),
            ),
        )
        self._client: redis.Redis | None = client

    ##########################################
    ################ GETTER ##################
    ##########################################

    def _key(self, *parts: str) -> str:
        return ":".join(["queue", self.queue_name, *parts])

    def get_client(self) -> redis.Redis:
        if self._client is None:
            raise RuntimeError("Indexing queue not booted. Call boot() before using the queue.")
        return self._client

    ##########################################
    ############ CORE REQUESTS ###############
    ##########################################

    async def boot(self) -> None:
        if self._client is None:
            self._client = redis.from_url(self.redis_url, decode_responses=True)
        self.logging.info("Indexing queue '%s' ready.", self.queue_name)

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    ##########################################
    ############### PRODUCER #################
    ##########################################

    async def enqueue(self, name: str, data: dict[str, Any], opts: JobOptions | None = None) -> str:
        """
        Add a job to the wait list.

        Args:
            name (str): Job name, see JobName.
            data (dict): JSON-serialisable job payload.
            opts (JobOptions | None): Retry policy, defaults to QUEUE_ATTEMPTS / QUEUE_BACKOFF_DELAY_MS.

        Returns:
            str: The id of the new job.
        """
        ids = await self.enqueue_bulk([(name, data)], opts=opts)
        return ids[0]

    async def enqueue_bulk(self, jobs: list[tuple[str, dict[str, Any]]], opts: JobOptions | None = None) -> list[str]:
        """
        Add several jobs in one transaction. Either all jobs are queued or none.

        Returns:
            list[str]: The ids of the new jobs, in input order.
        """
        if not jobs:
            return []
        client = self.get_client()
        last_id = await client.incrby(self._key("id"), len(jobs))
        first_id = last_id - len(jobs) + 1
        enqueued_at = now_ms()
        ids: list[str] = []
        async with client.pipeline(transaction=True) as pipe:
            for offset, (name, data) in enumerate(jobs):
                job = QueueJob(
                    id=str(first_id + offset),
                    name=name,
                    data=data,
                    opts=opts or self.default_opts,
                    enqueued_at=enqueued_at,
                )
                pipe.set(self._key("job", job.id), job.model_dump_json())
                pipe.lpush(self._key("wait"), job.id)
                ids.append(job.id)
            await pipe.execute()
        self.logging.debug("Enqueued %d job(s) on '%s': %s", len(ids), self.queue_name, ids)
        return ids

    ##########################################
    ############### CONSUMER #################
    ##########################################

    async def _promote_delayed(self) -> int:
        """Move delayed jobs whose backoff has elapsed back onto the wait list."""
        client = self.get_client()
        due = await client.zrangebyscore(self._key("delayed"), "-inf", now_ms())
        promoted = 0
        for job_id in due:
            # only the consumer that removed the id re-queues it
            if await client.zrem(self._key("delayed"), job_id):
                await client.lpush(self._key("wait"), job_id)
                promoted += 1
        return promoted

    async def recover_stalled(self) -> int:
        """
        Move active jobs whose lease expired back onto the wait list.

        A lease expires when the worker holding the job died or hung without
        acking, nacking or reporting progress for QUEUE_LEASE_MS.

        Returns:
            int: Number of recovered jobs.
        """
        client = self.get_client()
        expired = await client.zrangebyscore(self._key("leases"), "-inf", now_ms())
        recovered = 0
        for job_id in expired:
            # only the consumer that removed the lease re-queues the job
            if not await client.zrem(self._key("leases"), job_id):
                continue
            async with client.pipeline(transaction=True) as pipe:
                pipe.lrem(self._key("active"), 0, job_id)
                pipe.rpush(self._key("wait"), job_id)
                await pipe.execute()
            recovered += 1
        if recovered:
            self.logging.warning("Recovered %d stalled job(s) on '%s': %s", recovered, self.queue_name, expired)
        return recovered

    async def reserve(self, block_for: float = 0) -> QueueJob | None:
        """
        Take the oldest ready job and mark it active.

        Args:
            block_for (float): Seconds to keep polling for a job. 0 checks once.

        Returns:
            QueueJob | None: The reserved job, or None if none became ready in time.
        """
        client = self.get_client()
        deadline = time.monotonic() + block_for
        while True:
            await self._promote_delayed()
            await self.recover_stalled()
            job_id = await client.lmove(self._key("wait"), self._key("active"), "RIGHT", "LEFT")
            if job_id is not None:
                await self._renew_lease(job_id)
                raw = await client.get(self._key("job", job_id))
                if raw is not None:
                    return QueueJob.model_validate_json(raw)
                # job data vanished, drop the dangling id
                await client.lrem(self._key("active"), 0, job_id)
                await client.zrem(self._key("leases"), job_id)
                continue
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return None
            await asyncio.sleep(min(self.poll_interval, remaining))

    async def _renew_lease(self, job_id: str) -> None:
        await self.get_client().zadd(self._key("leases"), {job_id: now_ms() + self.lease_ms})

    async def report_progress(self, job: QueueJob, progress: int) -> None:
        job.progress = max(0, min(100, progress))
        await self.get_client().set(self._key("job", job.id), job.model_dump_json())
        await self._renew_lease(job.id)
        self.logging.debug("Job %s (%s) progress %d%%", job.id, job.name, job.progress)

    async def ack(self, job: QueueJob) -> None:
        """Mark a job as completed and drop its data."""
        async with self.get_client().pipeline(transaction=True) as pipe:
            pipe.lrem(self._key("active"), 0, job.id)
            pipe.zrem(self._key("leases"), job.id)
            pipe.delete(self._key("job", job.id))
            pipe.incr(self._key("completed"))
            await pipe.execute()

    async def release(self, job: QueueJob) -> None:
        """Put an interrupted job back at the head of the wait list without counting an attempt."""
        async with self.get_client().pipeline(transaction=True) as pipe:
            pipe.lrem(self._key("active"), 0, job.id)
            pipe.zrem(self._key("leases"), job.id)
            pipe.rpush(self._key("wait"), job.id)
            await pipe.execute()
        self.logging.warning("Job %s (%s) was interrupted and returned to the wait list.", job.id, job.name)

    async def nack(self, job: QueueJob, error: BaseException | str, retryable: bool = True) -> bool:
        """
        Record a failed attempt and either schedule a retry or fail the job permanently.

        Args:
            job (QueueJob): The reserved job.
            error (BaseException | str): The failure cause, stored as failed_reason.
            retryable (bool): False fails the job immediately regardless of attempts left.

        Returns:
            bool: True if a retry was scheduled, False if the job is now permanently failed.
        """
        job.attempts_made += 1
        job.failed_reason = str(error)
        will_retry = retryable and job.attempts_made < job.opts.attempts
        async with self.get_client().pipeline(transaction=True) as pipe:
            pipe.set(self._key("job", job.id), job.model_dump_json())
            pipe.lrem(self._key("active"), 0, job.id)
            pipe.zrem(self._key("leases"), job.id)
            if will_retry:
                delay = job.opts.backoff.get_delay_ms(job.attempts_made)
                pipe.zadd(self._key("delayed"), {job.id: now_ms() + delay})
            else:
                pipe.zadd(self._key("failed"), {job.id: now_ms()})
            await pipe.execute()

        if will_retry:
            self.logging.warning(
                "Job %s (%s) failed attempt %d/%d, retrying in %d ms: %s",
                job.id, job.name, job.attempts_made, job.opts.attempts,
                job.opts.backoff.get_delay_ms(job.attempts_made), job.failed_reason,
            )
        else:
            self.logging.error(
                "Job %s (%s) permanently failed after %d attempt(s): %s",
                job.id, job.name, job.attempts_made, job.failed_reason,
            )
        return will_retry

    ##########################################
    ############### INSPECTION ###############
    ##########################################

    async def get_job(self, job_id: str) -> QueueJob | None:
        raw = await self.get_client().get(self._key("job", job_id))
        return QueueJob.model_validate_json(raw) if raw is not None else None

    async def get_failed_jobs(self, limit: int = 50) -> list[QueueJob]:
        """Most recently failed jobs, newest first."""
        ids = await self.get_client().zrevrange(self._key("failed"), 0, max(limit - 1, 0))
        jobs = []
        for job_id in ids:
            job = await self.get_job(job_id)
            if job is not None:
                jobs.append(job)
        return jobs

    async def get_counts(self) -> QueueCounts:
        client = self.get_client()
        completed = await client.get(self._key("completed"))
        return QueueCounts(
            waiting=await client.llen(self._key("wait")),
            active=await client.llen(self._key("active")),
            delayed=await client.zcard(self._key("delayed")),
            completed=int(completed or 0),
            failed=await client.zcard(self._key("failed")),
        )
