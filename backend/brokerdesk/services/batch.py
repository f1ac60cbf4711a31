from dataclasses import dataclass, field
from typing import List, Optional

import pandas as pd


@dataclass
class BatchResult:
    """Outcome of a batch sync; failed rows are reported, not raised."""
    total: int = 0
    successful: int = 0
    failed: int = 0
    errors: List[dict] = field(default_factory=list)

    def ok(self):
        self.total += 1
        self.successful += 1

    def fail(self, row: int, policy_number: Optional[str], error: str):
        self.total += 1
        self.failed += 1
        self.errors.append({"row": row, "policy_number": policy_number, "error": error})

    def to_dict(self) -> dict:
        return {
            "total": self.total,
            "successful": self.successful,
            "failed": self.failed,
            "errors": list(self.errors),
        }

    def errors_csv(self) -> str:
        df = pd.DataFrame(self.errors, columns=["row", "policy_number", "error"])
        return df.to_csv(index=False)
