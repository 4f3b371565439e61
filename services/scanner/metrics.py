from prometheus_client import Counter

heartbeat = Counter("scanner_worker_heartbeat_total", "Worker poll loop ticks")
jobs_claimed = Counter("scanner_jobs_claimed_total", "Jobs claimed")
jobs_succeeded = Counter("scanner_jobs_succeeded_total", "Jobs succeeded")
jobs_failed = Counter("scanner_jobs_failed_total", "Jobs failed terminally")
retries_total = Counter("scanner_retries_total", "Job retries scheduled with backoff")
claim_races_lost = Counter("scanner_claim_races_lost_total", "Claim attempts lost to another worker")
stale_locks_released = Counter("scanner_stale_locks_released_total", "Stale job locks released")
extraction_cost_usd = Counter("scanner_extraction_cost_usd_total", "Extraction spend in USD")
