# FILE: services/execution_gateway.py
"""
Execution Gateway

- The only component holding a handle to data sources
- Accepts ValidatedPlan values and nothing else
- Bounded by a per-request deadline; cancellation reaches the adapter
- Caps result size and masks sensitive fields before returning
"""

import asyncio
import logging
from asyncio import wait_for, TimeoutError
from typing import Mapping, Optional

from config import EXECUTION_RETRY_BACKOFF_S, EXECUTION_TIMEOUT_S, MAX_RESULT_ROWS
from core.errors import ExecutionError, ExecutionTimeout, TransientExecutionError
from executors.base import SourceAdapter, output_columns
from models.result import ExecutionResult
from services.plan_validator import ValidatedPlan

logger = logging.getLogger("execution_gateway")


class ExecutionGateway:
    def __init__(
        self,
        adapters: Mapping[str, SourceAdapter],
        *,
        timeout: float = EXECUTION_TIMEOUT_S,
        max_rows: int = MAX_RESULT_ROWS,
        retry_backoff: float = EXECUTION_RETRY_BACKOFF_S,
    ):
        # source id → adapter
        self._adapters = dict(adapters)
        self.timeout = timeout
        self.max_rows = max_rows
        self.retry_backoff = retry_backoff

    def adapter_for(self, source_id: str) -> Optional[SourceAdapter]:
        return self._adapters.get(source_id)

    async def execute(self, validated: ValidatedPlan) -> ExecutionResult:
        if not isinstance(validated, ValidatedPlan):
            raise TypeError("ExecutionGateway.execute() only accepts a ValidatedPlan")

        source_id = validated.source_id
        adapter = self._adapters.get(source_id)
        if adapter is None:
            raise ExecutionError(f"No adapter registered for source {source_id!r}", source_id=source_id)
        if adapter.family is not validated.snapshot.family:
            raise ExecutionError(
                f"Adapter family {adapter.family.value} does not match source family "
                f"{validated.snapshot.family.value}",
                source_id=source_id,
            )

        native = adapter.translate(validated)

        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.timeout
        attempt = 0

        # Fetch one row past the cap to detect truncation
        fetch_rows = self.max_rows + 1

        while True:
            attempt += 1
            remaining = deadline - loop.time()
            if remaining <= 0:
                raise ExecutionTimeout("Execution deadline exceeded", source_id=source_id)
            try:
                rows = await wait_for(adapter.run(native, max_rows=fetch_rows), timeout=remaining)
                break
            except TimeoutError:
                logger.warning("Execution timed out source=%s attempt=%d", source_id, attempt)
                raise ExecutionTimeout("Execution deadline exceeded", source_id=source_id) from None
            except TransientExecutionError as e:
                if attempt >= 2:
                    raise
                logger.warning("Transient failure source=%s, retrying once: %s", source_id, e)
                await asyncio.sleep(min(self.retry_backoff, max(deadline - loop.time(), 0)))
            except ExecutionError:
                raise
            except Exception as e:
                raise ExecutionError(f"Adapter failure: {e}", source_id=source_id) from e

        truncated = len(rows) > self.max_rows
        rows = rows[: self.max_rows]

        masked_rows, masked_fields = adapter.apply_masking(
            rows, validated.snapshot, validated.identity, validated
        )
        if masked_fields:
            logger.warning(
                "Masked fields after validation source=%s fields=%s", source_id, masked_fields
            )

        plan = validated.plan
        return ExecutionResult(
            source_id=source_id,
            resource_id=validated.resource.resource_id,
            schema_version=validated.schema_version,
            rows=masked_rows,
            columns=output_columns(validated),
            is_aggregate=plan.aggregation is not None,
            truncated=truncated,
            masked_fields=masked_fields,
            meta={"attempts": attempt, "row_cap": self.max_rows},
        )
