from psycopg2.extras import Json

from common.states import ScanStatus


class ScanRepository:
    """Writes extraction outcomes to mapping_sheet_scans."""

    def __init__(self, db):
        self.db = db

    def mark_processing(self, scan_id):
        with self.db.cursor() as cur:
            cur.execute(
                """
                UPDATE mapping_sheet_scans
                SET status = %s,
                    error_message = NULL,
                    extraction_attempted_at = NOW(),
                    updated_at = NOW()
                WHERE id = %s
                """,
                (ScanStatus.PROCESSING.value, scan_id),
            )
            if cur.rowcount == 0:
                raise LookupError(f"mapping sheet scan {scan_id} not found")

    def save_result(self, scan_id, result, has_project: bool, page_count: int):
        extraction = result.extracted_data
        status = ScanStatus.UNDER_REVIEW if has_project else ScanStatus.REVIEW_NEW_PROJECT
        with self.db.cursor() as cur:
            cur.execute(
                """
                UPDATE mapping_sheet_scans
                SET status = %s,
                    extracted_data = %s,
                    confidence_scores = %s,
                    ai_provider = %s,
                    extraction_cost_usd = %s,
                    page_count = %s,
                    error_message = NULL,
                    extraction_completed_at = NOW(),
                    updated_at = NOW()
                WHERE id = %s
                """,
                (
                    status.value,
                    Json(extraction.model_dump(mode="json")),
                    Json(extraction.confidence.model_dump(mode="json")),
                    result.provider,
                    round(result.cost_usd, 6),
                    page_count,
                    scan_id,
                ),
            )
        return status

    def mark_failed(self, scan_id, message: str):
        with self.db.cursor() as cur:
            cur.execute(
                """
                UPDATE mapping_sheet_scans
                SET status = %s,
                    error_message = %s,
                    updated_at = NOW()
                WHERE id = %s
                """,
                (ScanStatus.FAILED.value, message, scan_id),
            )
