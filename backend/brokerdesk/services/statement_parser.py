"""Insurer settlement statement parsing.

Insurers send CSV or Excel statements with their own column headers. We
auto-detect the policy number, premium and commission columns and normalize
each line to:

{
    "row": int,                 # 1-based data row in the file
    "policy_number": str,
    "premium": Decimal | None,
    "commission": Decimal,
    "payment_date": date | None,
}
"""
import io
import logging
import re
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Dict, List, Optional

import pandas as pd

from brokerdesk.services.errors import StatementParseError

logger = logging.getLogger(__name__)

_CURRENCY_RE = re.compile(r"(₹|rs\.?|inr|\$|,|\s)", re.IGNORECASE)


# ── helpers ──────────────────────────────────────────────────────────

def _clean_currency(val) -> Optional[Decimal]:
    """Parse amounts like '₹2,677.00', 'Rs. 1,545', '-249.14', '(141.84)'."""
    if val is None or (isinstance(val, float) and pd.isna(val)):
        return None
    s = _CURRENCY_RE.sub("", str(val).strip())
    if not s or s.lower() == "nan":
        return None
    # Parenthesized negatives: (141.84) -> -141.84
    if s.startswith("(") and s.endswith(")"):
        s = "-" + s[1:-1]
    try:
        return Decimal(s)
    except InvalidOperation:
        logger.warning(f"Could not parse amount: '{val}'")
        return None


def _parse_date(val) -> Optional[date]:
    if val is None or (isinstance(val, float) and pd.isna(val)):
        return None
    if isinstance(val, datetime):
        return val.date()
    if isinstance(val, date):
        return val
    s = str(val).strip()
    for fmt in ("%d/%m/%Y", "%Y-%m-%d", "%d-%m-%Y", "%d-%b-%Y"):
        try:
            return datetime.strptime(s, fmt).date()
        except ValueError:
            continue
    ts = pd.to_datetime(s, errors="coerce", dayfirst=True)
    return None if pd.isna(ts) else ts.date()


def _detect_columns(columns) -> Dict[str, str]:
    col_map = {}
    for c in columns:
        cl = str(c).lower().strip()
        if "policy" in cl and ("no" in cl or "num" in cl or "#" in cl):
            col_map.setdefault("policy", c)
        elif "commission" in cl or cl.startswith("comm") or "brokerage" in cl or "payout" in cl:
            if "rate" not in cl and "%" not in cl:
                col_map.setdefault("commission", c)
        elif "premium" in cl:
            col_map.setdefault("premium", c)
        elif "date" in cl:
            col_map.setdefault("date", c)
    return col_map


@dataclass
class ParsedStatement:
    rows: List[dict] = field(default_factory=list)
    errors: List[dict] = field(default_factory=list)

    @property
    def total_commission(self) -> Decimal:
        return sum((r["commission"] for r in self.rows), Decimal("0"))

    @property
    def total_premium(self) -> Decimal:
        return sum((r["premium"] or Decimal("0") for r in self.rows), Decimal("0"))


def read_statement_frame(file_bytes: bytes, filename: str) -> pd.DataFrame:
    name = (filename or "").lower()
    try:
        if name.endswith(".xlsx"):
            return pd.read_excel(io.BytesIO(file_bytes))
        if name.endswith((".csv", ".txt")):
            return pd.read_csv(io.BytesIO(file_bytes))
    except Exception as e:
        raise StatementParseError(f"Could not read {filename}: {e}") from e
    raise StatementParseError(f"Unsupported statement format: {filename}. Use CSV or XLSX")


def parse_statement(file_bytes: bytes, filename: str) -> ParsedStatement:
    """Parse a statement; bad lines are collected in ``errors``, not raised."""
    df = read_statement_frame(file_bytes, filename)
    col_map = _detect_columns(df.columns)
    if "policy" not in col_map or "commission" not in col_map:
        raise StatementParseError(
            f"Could not find policy number and commission columns in: {list(df.columns)}"
        )
    logger.info(f"Statement {filename}: {len(df)} rows, columns: {col_map}")

    parsed = ParsedStatement()
    for idx, row in df.iterrows():
        line = int(idx) + 1
        policy = str(row.get(col_map["policy"], "") or "").strip()
        if not policy or policy.lower() == "nan":
            parsed.errors.append({"row": line, "policy_number": None, "error": "Missing policy number"})
            continue
        commission = _clean_currency(row.get(col_map["commission"]))
        if commission is None:
            parsed.errors.append({"row": line, "policy_number": policy, "error": "Invalid commission amount"})
            continue
        parsed.rows.append({
            "row": line,
            "policy_number": policy,
            "premium": _clean_currency(row.get(col_map["premium"])) if "premium" in col_map else None,
            "commission": commission,
            "payment_date": _parse_date(row.get(col_map["date"])) if "date" in col_map else None,
        })

    logger.info(f"Statement {filename}: parsed {len(parsed.rows)} rows, {len(parsed.errors)} errors")
    return parsed
