from common.errors import ExtractionError, PayloadError
from common.logs import log_event
from common.timeouts import with_timeout_and_retry
from services.scanner import metrics, renderer
from services.scanner.models import ProcessingSummary, ScanJobPayload


class JobProcessor:
    """
    Runs one mapping_sheet_scan job end to end:

      payload -> download PDF -> pages/images -> extraction client -> scan row

    Anything that goes wrong is raised; the worker decides between retry
    and terminal failure.
    """

    def __init__(self, client, storage, scans, queue, settings):
        self.client = client
        self.storage = storage
        self.scans = scans
        self.queue = queue
        self.settings = settings

    def process(self, job) -> ProcessingSummary:
        payload = ScanJobPayload.from_job(job)
        provider = self.client.provider.value

        self.scans.mark_processing(payload.scan_id)
        self.queue.append_event(
            job.id,
            "mapping_sheet_scan_started",
            {"scanId": str(payload.scan_id), "attempt": job.attempts, "provider": provider},
        )

        pdf_bytes = self.storage.download(payload.file_url)
        page_count = renderer.count_pages(pdf_bytes)
        pages = renderer.resolve_pages(page_count, payload.selected_pages)

        if self.client.needs_images:
            document = renderer.render_pages(pdf_bytes, pages, dpi=self.settings.render_dpi)
        else:
            document = renderer.select_pages(pdf_bytes, pages)

        def on_retry(attempt, error):
            log_event(
                "extraction_retry",
                level="warning",
                job_id=job.id,
                attempt=attempt,
                max_retries=self.settings.claude_max_retries,
                error=str(error),
            )

        result = with_timeout_and_retry(
            lambda: self.client.extract(document, pages, page_count),
            self.settings.claude_timeout_ms,
            self.settings.claude_max_retries,
            f"{provider} extraction",
            on_retry=on_retry,
        )
        metrics.extraction_cost_usd.inc(result.cost_usd)

        if not result.success:
            raise ExtractionError(result.error or "Extraction failed", provider=provider, cost_usd=result.cost_usd)

        status = self.scans.save_result(
            payload.scan_id,
            result,
            has_project=payload.project_id is not None,
            page_count=len(pages),
        )
        self.queue.update_progress(job.id, len(pages), len(pages))
        self.queue.append_event(
            job.id,
            "mapping_sheet_scan_succeeded",
            {"scanId": str(payload.scan_id), "scanStatus": status.value, "costUsd": result.cost_usd},
        )

        return ProcessingSummary(
            scan_id=payload.scan_id,
            provider=provider,
            cost_usd=result.cost_usd,
            processing_time_ms=result.processing_time_ms,
            pages_processed=len(pages),
            input_tokens=result.input_tokens,
            output_tokens=result.output_tokens,
        )

    def on_terminal_failure(self, job, message: str):
        try:
            payload = ScanJobPayload.from_job(job)
        except PayloadError:
            return
        self.scans.mark_failed(payload.scan_id, message)
        self.queue.append_event(job.id, "mapping_sheet_scan_failed", {"scanId": str(payload.scan_id), "error": message})
