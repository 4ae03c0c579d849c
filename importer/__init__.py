"""
Design
======

The importer fills the game catalog from the RAWG metadata API and runs the
other long batch jobs which walk large collections under a strict upstream
rate limit.

General goals:

* All job state lives in one ImportProgress row per job, so progress is
  visible for reporting and a crashed worker never loses more than a few
  records of work
* Celery tasks are ephemeral. Each task processes one batch, re-reads the job
  row before doing anything and re-enqueues the next batch while the job is
  still in progress
* Re-running any batch is safe: a game whose slug already exists is skipped,
  and an unchanged session score is never rewritten

A job runs like this:

1. An operator starts a job (``manage.py batchjob start full_import``). The
   job row is created, the size of the collection is counted and the first
   batch task is queued.
2. The batch task builds the BatchSource for the job kind and hands it to
   the BatchEngine, which pages through the source from the stored cursor,
   processes one record at a time and checkpoints the counters every few
   records.
3. Every upstream request waits on the shared RateLimiter first. A 429 reply
   puts the client into a cooldown and the same request is retried.
4. A record which fails is counted and skipped. A failure to fetch a page or
   anything outside the per-record boundary marks the job as failed.
5. Between records the engine checks whether the job was paused. A pause
   stores the counters and the cursor, and the next batch is not queued until
   the operator resumes the job.
6. When the source is exhausted or every counted record has been examined the
   job is marked as completed.

Progress snapshots are broadcast to the ``import_progress`` channels group
after every batch.
"""
