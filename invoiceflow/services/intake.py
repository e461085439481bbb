"""Upload intake: store the document, ask for extraction, create the invoice."""
from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from invoiceflow.core.auth import CurrentUser
from invoiceflow.core.models import ApprovalStatus
from invoiceflow.core.permissions import Permission, require_permission
from invoiceflow.services.errors import ValidationError
from invoiceflow.services.extraction import ExtractionClient
from invoiceflow.services.invoice_lifecycle import InvoiceLifecycle
from invoiceflow.services.storage import MAX_UPLOAD_BYTES, LocalObjectStorage, classify_upload

logger = logging.getLogger(__name__)


class IntakeService:
    def __init__(
        self,
        db,
        storage: LocalObjectStorage,
        extraction: ExtractionClient,
        lifecycle: InvoiceLifecycle,
    ):
        self.db = db
        self.storage = storage
        self.extraction = extraction
        self.lifecycle = lifecycle

    async def upload(
        self,
        actor: CurrentUser,
        filename: str,
        content_type: Optional[str],
        data: bytes,
    ) -> Dict[str, Any]:
        require_permission(actor, Permission.EDIT_INVOICE)
        file_type, extension = classify_upload(content_type, filename)
        if not data:
            raise ValidationError("Uploaded file is empty")
        if len(data) > MAX_UPLOAD_BYTES:
            raise ValidationError(f"File exceeds the {MAX_UPLOAD_BYTES // (1024 * 1024)} MB limit")

        key = self.storage.build_key(actor.company_id, extension)
        file_url = self.storage.upload(key, data, content_type or "application/octet-stream")

        log = self.db.create_extraction_log({
            "company_id": actor.company_id,
            "file_path": key,
            "file_type": file_type,
            "extraction_status": "processing",
            "created_by": actor.user_id,
        })
        result = await self.extraction.extract(file_url, file_type, actor.company_id, actor.user_id)
        if result.succeeded:
            self.db.update_extraction_log(
                log["id"],
                extraction_status="completed",
                parsed_data=result.data,
                processing_time_ms=result.processing_time_ms,
            )
        else:
            self.db.update_extraction_log(
                log["id"],
                extraction_status="error",
                error_message=result.error or "no fields extracted",
                processing_time_ms=result.processing_time_ms,
            )

        decision = self.lifecycle.register_upload(
            actor,
            file_url=file_url,
            file_type=file_type,
            extracted=result.data,
            extraction_log_id=log["id"],
        )
        invoice = decision.invoice
        if invoice.approval_status == ApprovalStatus.AUTO_APPROVED.value:
            next_action = "completed"
        elif invoice.total_amount is not None:
            next_action = "pending_approval"
        else:
            next_action = "manual_entry"

        logger.info(f"Upload {key} -> invoice {invoice.id} ({next_action})")
        response = decision.to_dict()
        response.update({
            "file_url": file_url,
            "extraction": {
                "log_id": log["id"],
                "status": "completed" if result.succeeded else "error",
                "error": result.error,
            },
            "next_action": next_action,
        })
        return response
