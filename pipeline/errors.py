"""Fatal pipeline errors. Per-wallet failures never surface as exceptions."""

from typing import Dict, List, Optional


class PipelineError(Exception):
    """Base class for run-level failures"""


class ResumeError(PipelineError):
    """Checkpoint claims progress the saved output cannot back up"""


class InvalidChunkError(PipelineError, ValueError):
    """Chunk index missing its contract (negative, non-numeric)"""


class WorkerFailedError(PipelineError):
    """One or more shard workers exited non-zero or left short output"""

    def __init__(self, failed: Dict[int, Optional[int]], message: str = ''):
        """
        Args:
            failed: {shard_index: exit_code}; None when the process ran but
                    its output was incomplete
        """
        self.failed = failed
        detail = ', '.join(
            f"worker {i} (exit {code})" if code is not None else f"worker {i} (incomplete output)"
            for i, code in sorted(failed.items())
        )
        super().__init__(message or f"Shard workers failed: {detail}")

    @property
    def failed_shards(self) -> List[int]:
        return sorted(self.failed)
