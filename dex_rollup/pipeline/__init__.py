"""Block-level orchestration of the rollup engine."""

from dex_rollup.pipeline.block_processor import (
    Block,
    BlockProcessor,
    BlockResult,
    RejectedEvent,
)

__all__ = ["Block", "BlockProcessor", "BlockResult", "RejectedEvent"]
