"""Multi-recipient send: input normalization, submission, result tally."""

from __future__ import annotations

import logging
from collections import defaultdict, deque
from collections.abc import Iterable, Sequence

from smsgw.core.errors import ServerError, SmsgwError, UnauthorizedError, ValidationError
from smsgw.core.model import STRATEGIES, BatchSendReport, BatchSendRequest, BatchSendResult
from smsgw.core.notify import LogNotifier, Notifier
from smsgw.transports.base import Transport

LOGGER = logging.getLogger(__name__)


def normalize_recipients(value: str | Iterable[str]) -> list[str]:
    """Split on line breaks, trim each line and drop blanks.

    Accepts either the raw text blob or an already-split sequence, so the
    result can be fed back in unchanged.
    """
    chunks = [value] if isinstance(value, str) else list(value)
    recipients: list[str] = []
    for chunk in chunks:
        for line in chunk.splitlines():
            line = line.strip()
            if line:
                recipients.append(line)
    return recipients


def build_request(
    recipients: str | Iterable[str],
    content: str,
    *,
    device_id: str | None = None,
    strategy: str = "auto",
) -> BatchSendRequest:
    normalized = normalize_recipients(recipients)
    if not normalized:
        raise ValidationError("Enter at least one recipient", field="recipients")
    content = content.strip()
    if not content:
        raise ValidationError("Enter the message content", field="content")

    device_id = (device_id or "").strip() or None
    if device_id is not None:
        return BatchSendRequest(recipients=tuple(normalized), content=content, device_id=device_id)

    if strategy not in STRATEGIES:
        allowed = ", ".join(STRATEGIES)
        raise ValidationError(f"Unknown strategy '{strategy}'. Allowed: {allowed}", field="strategy")
    return BatchSendRequest(recipients=tuple(normalized), content=content, strategy=strategy)


def match_results(
    recipients: Sequence[str],
    results: Sequence[BatchSendResult],
) -> tuple[tuple[str, BatchSendResult | None], ...]:
    """Pair each submitted recipient with its result by value, not position."""
    by_recipient: dict[str, deque[BatchSendResult]] = defaultdict(deque)
    for result in results:
        by_recipient[result.recipient].append(result)

    rows: list[tuple[str, BatchSendResult | None]] = []
    for recipient in recipients:
        queue = by_recipient.get(recipient)
        rows.append((recipient, queue.popleft() if queue else None))
    return tuple(rows)


class BatchSendCoordinator:
    def __init__(self, transport: Transport, notifier: Notifier | None = None) -> None:
        self._transport = transport
        self.notifier = notifier or LogNotifier()
        self.last_report: BatchSendReport | None = None

    async def send(
        self,
        recipients: str | Iterable[str],
        content: str,
        *,
        device_id: str | None = None,
        strategy: str = "auto",
    ) -> BatchSendReport | None:
        """Validate, submit and tally one batch.

        Returns None when the batch was rejected locally or the request
        failed; the operator has been notified in both cases.
        """
        try:
            request = build_request(recipients, content, device_id=device_id, strategy=strategy)
        except ValidationError as exc:
            self.notifier.error(str(exc))
            return None

        try:
            payload = await self._transport.request("POST", "/sms/batch", json=request.to_json())
        except UnauthorizedError:
            return None
        except ServerError as exc:
            self.notifier.error(str(exc) or "Batch send failed")
            return None
        except SmsgwError as exc:
            LOGGER.warning("Batch send failed: %s", exc)
            self.notifier.error("Batch send failed")
            return None

        raw = payload.get("results") if isinstance(payload, dict) else None
        results = tuple(BatchSendResult.from_json(doc) for doc in raw or [] if isinstance(doc, dict))
        report = BatchSendReport(
            request=request,
            results=results,
            rows=match_results(request.recipients, results),
        )
        self.last_report = report

        if report.fail_count == 0:
            self.notifier.success(f"All messages sent ({report.success_count})")
        else:
            self.notifier.warning(
                f"Batch finished: {report.success_count} succeeded, {report.fail_count} failed"
            )
        return report
