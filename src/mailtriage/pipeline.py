"""Triage pipeline and sequential batch driver."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Callable, Iterator, Sequence, Union

from mailtriage.completion import build_prompt
from mailtriage.errors import UpstreamError
from mailtriage.extractor import extract
from mailtriage.models import BatchItem, BatchProgress

if TYPE_CHECKING:
    from mailtriage.compactor import Compactor
    from mailtriage.completion import CompletionClient
    from mailtriage.models import Message, TriageResult
    from mailtriage.structured_logger import StructuredLogger

logger = logging.getLogger(__name__)

BatchEvent = Union[BatchProgress, BatchItem]
ProgressCallback = Callable[[BatchProgress], None]


def status_message(index: int, message: Message) -> str:
    """Human-readable status line for the message at ``index``."""
    messages = [
        f'Reading "{message.subject[:20]}..."',
        "Analyzing content...",
        "Drafting response...",
        "Categorizing...",
    ]
    return messages[index % len(messages)]


class TriagePipeline:
    """Runs messages through compaction, completion and result extraction."""

    def __init__(
        self,
        compactor: Compactor,
        completion: CompletionClient,
        api_key: str,
        compaction_api_key: str | None = None,
        max_body_chars: int = 5000,
        audit: StructuredLogger | None = None,
    ):
        """Initialize the pipeline.

        Args:
            compactor: Compaction client (failures are absorbed)
            completion: Completion client (failures propagate)
            api_key: Completion API key
            compaction_api_key: Compaction API key, defaults to ``api_key``
            max_body_chars: Body characters included in the prompt
            audit: Optional audit trail
        """
        self.compactor = compactor
        self.completion = completion
        self.api_key = api_key
        self.compaction_api_key = compaction_api_key or api_key
        self.max_body_chars = max_body_chars
        self.audit = audit

    def triage(self, message: Message) -> TriageResult:
        """Triage a single message.

        Raises:
            UpstreamError: If the completion call fails
        """
        prompt = build_prompt(message, self.max_body_chars)
        final_prompt = self.compactor.maybe_compact(
            prompt, self.compaction_api_key, label=message.id, content=message.body
        )
        compacted = final_prompt is not prompt

        try:
            content = self.completion.complete(final_prompt, self.api_key)
        except UpstreamError as e:
            if self.audit:
                self.audit.log_triage(message.id, compacted=compacted, error=str(e))
            raise

        extraction = extract(content, message.id)
        result = extraction.result

        logger.info(
            f"Message {message.id}: category={result.category.value}, "
            f"action={result.action.value}, parsed={extraction.ok}"
        )
        if self.audit:
            self.audit.log_triage(
                message.id,
                category=result.category.value,
                action=result.action.value,
                parsed=extraction.ok,
                compacted=compacted,
            )
        return result

    def iter_batch(
        self,
        messages: Sequence[Message],
        already_triaged: dict[str, TriageResult],
        limit: int | None = None,
    ) -> Iterator[BatchEvent]:
        """Triage messages one at a time, yielding progress and outcomes.

        A ``BatchProgress`` is yielded before each eligible message and a
        ``BatchItem`` after it. Messages already present in
        ``already_triaged`` are skipped; new results are stored into it.
        Closing the generator early stops the batch.
        """
        batch = list(messages if limit is None else messages[:limit])
        total = len(batch)
        triaged = skipped = failed = 0

        for index, message in enumerate(batch):
            if message.id in already_triaged:
                logger.debug(f"Message {message.id}: already triaged, skipping")
                skipped += 1
                continue

            yield BatchProgress(
                current=index + 1,
                total=total,
                message=status_message(index, message),
            )

            try:
                result = self.triage(message)
            except UpstreamError as e:
                logger.error(f"Failed to triage message {message.id}: {e}")
                failed += 1
                yield BatchItem(message_id=message.id, error=str(e))
                continue
            except Exception as e:
                logger.error(f"Error triaging message {message.id}: {e}", exc_info=True)
                if self.audit:
                    self.audit.log_triage(message.id, error=str(e))
                failed += 1
                yield BatchItem(message_id=message.id, error=str(e))
                continue

            already_triaged[message.id] = result
            triaged += 1
            yield BatchItem(message_id=message.id, result=result)

        logger.info(
            f"Batch finished: {triaged} triaged, {skipped} skipped, {failed} failed of {total}"
        )
        if self.audit:
            self.audit.log_batch(total=total, triaged=triaged, skipped=skipped, failed=failed)

    def triage_batch(
        self,
        messages: Sequence[Message],
        already_triaged: dict[str, TriageResult],
        on_progress: ProgressCallback | None = None,
        limit: int | None = None,
    ) -> dict[str, TriageResult]:
        """Triage a batch sequentially and return the augmented result map."""
        for event in self.iter_batch(messages, already_triaged, limit=limit):
            if isinstance(event, BatchProgress) and on_progress is not None:
                on_progress(event)
        return already_triaged
