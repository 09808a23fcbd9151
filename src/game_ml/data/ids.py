from __future__ import annotations

import numpy as np

UNIQUE_SAMPLE_ID = "unique_sample_id"

# Row position occupies the low 33 bits; the partition index sits above it.
_PARTITION_SHIFT = 33
_MAX_ROWS_PER_PARTITION = 1 << _PARTITION_SHIFT
_MAX_PARTITIONS = 1 << (63 - _PARTITION_SHIFT)


class UniqueSampleIdGenerator:
    """
    Assigns sample ids as `(partition_index << 33) + row_position`.

    Ids increase monotonically within a partition and can never collide across
    partitions, so every partition can be labelled independently.
    """

    def __init__(self) -> None:
        self._next_partition = 0

    def ids_for_partition(self, partition_index: int, num_rows: int) -> np.ndarray:
        if not 0 <= partition_index < _MAX_PARTITIONS:
            raise ValueError(f"partition_index out of range: {partition_index}")
        if not 0 <= num_rows <= _MAX_ROWS_PER_PARTITION:
            raise ValueError(f"num_rows out of range for one partition: {num_rows}")
        base = np.int64(partition_index) << np.int64(_PARTITION_SHIFT)
        return base + np.arange(num_rows, dtype=np.int64)

    def next_partition_ids(self, num_rows: int) -> np.ndarray:
        """Ids for the next unused partition (one generator can label several sources)."""
        ids = self.ids_for_partition(self._next_partition, num_rows)
        self._next_partition += 1
        return ids
