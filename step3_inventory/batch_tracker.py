"""
Batch tracking - one BatchInfo per pipeline run, attached to every order line
"""

import logging
import time
import uuid
from dataclasses import replace
from datetime import datetime
from typing import Dict, List, Optional

from step1_extract.models import BatchInfo, ProductSummary

logger = logging.getLogger(__name__)


def new_batch_id() -> str:
    return f"batch_{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}"


class BatchTracker:
    """In-process registry of processing batches"""

    def __init__(self, user_id: str = 'system'):
        self.user_id = user_id
        self._batches: Dict[str, BatchInfo] = {}

    def create_batch(self, summaries: List[ProductSummary], file_name: str,
                     selected_date: Optional[str] = None, description: Optional[str] = None) -> Optional[BatchInfo]:
        """
        Create a batch for a non-empty run

        Returns:
            BatchInfo, or None when no order lines were extracted
        """
        if not summaries:
            logger.info("No order lines extracted, skipping batch creation")
            return None

        platforms = {summary.type for summary in summaries}
        now = datetime.now().isoformat()
        batch = BatchInfo(
            batch_id=new_batch_id(),
            platform=platforms.pop() if len(platforms) == 1 else 'mixed',
            file_name=file_name,
            order_count=len(summaries),
            uploaded_at=now,
            description=description,
            metadata={
                'userId': self.user_id,
                'selectedDate': selected_date or datetime.now().date().isoformat(),
                'processedAt': now,
            },
        )
        self._batches[batch.batch_id] = batch
        logger.info(f"Created batch {batch.batch_id} ({batch.platform}, {batch.order_count} orders)")
        return batch

    @staticmethod
    def attach(summaries: List[ProductSummary], batch: Optional[BatchInfo]) -> List[ProductSummary]:
        if batch is None:
            return list(summaries)
        return [replace(summary, batch_info=batch) for summary in summaries]

    def update_order_count(self, batch_id: str, order_count: int) -> BatchInfo:
        batch = self._batches.get(batch_id)
        if batch is None:
            raise KeyError(f"Unknown batch: {batch_id}")
        batch.order_count = order_count
        batch.metadata['processedAt'] = datetime.now().isoformat()
        return batch

    def get_batch(self, batch_id: str) -> Optional[BatchInfo]:
        return self._batches.get(batch_id)
