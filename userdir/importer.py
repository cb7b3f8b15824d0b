"""Bulk account import from an Excel sheet.

Rows are read with pandas, mapped onto account fields through a list of
header aliases (sheets come with English, Traditional or Simplified Chinese
headers), then inserted one at a time. Existing identities are skipped and
a failed insert never stops the batch.
"""

from __future__ import annotations

import io
import math
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence

import pandas as pd

from userdir.config import dlog
from userdir.directory import DirectoryClient
from userdir.errors import DirectoryError, ValidationError
from userdir.models import ROLE_USER
from userdir.passwords import MIN_PASSWORD_LENGTH, hash_password


ALLOWED_EXTENSIONS = {".xlsx": "openpyxl", ".xls": "xlrd"}

# Ordered: the first alias with a non-empty value wins.
FIELD_ALIASES: Dict[str, List[str]] = {
    "account": ["account", "Account", "username", "會員帳號", "会员账号", "帳號", "账号"],
    "display_name": ["display_name", "Display Name", "name", "Name", "會員姓名", "会员姓名", "姓名", "名称"],
    "password": ["password", "Password", "帳號密碼", "账号密码", "密碼", "密码"],
    "phone": ["phone", "Phone", "會員連絡電話", "会员连络电话", "連絡電話", "连络电话", "電話", "电话"],
    "address": ["address", "Address", "會員地址", "会员地址", "地址"],
}

REQUIRED_FIELDS = ("account", "display_name", "password")

ProgressCallback = Callable[[int, int], None]


@dataclass(frozen=True)
class ImportCandidate:
    row_number: int
    account: str
    display_name: str
    password: str
    phone: Optional[str] = None
    address: Optional[str] = None

    def to_record(self) -> Dict[str, Any]:
        return {
            "account": self.account,
            "display_name": self.display_name,
            "password_hash": hash_password(self.password),
            "phone": self.phone,
            "address": self.address,
            "role": ROLE_USER,
        }


@dataclass(frozen=True)
class DroppedRow:
    row_number: int
    reason: str


@dataclass
class ParseResult:
    candidates: List[ImportCandidate] = field(default_factory=list)
    dropped: List[DroppedRow] = field(default_factory=list)


@dataclass(frozen=True)
class ImportLogEntry:
    status: str  # success / skipped / error
    account: str
    message: str


@dataclass
class ImportReport:
    total: int = 0
    processed: int = 0
    success_count: int = 0
    error_count: int = 0
    skipped_count: int = 0
    log: List[ImportLogEntry] = field(default_factory=list)

    @property
    def progress(self) -> float:
        return self.processed / self.total if self.total else 1.0

    def summary(self) -> str:
        return (
            f"Import finished. Succeeded: {self.success_count}, "
            f"failed: {self.error_count}, skipped: {self.skipped_count}"
        )


def _cell_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, float):
        if math.isnan(value):
            return ""
        if value.is_integer():
            return str(int(value))
    return str(value).strip()


def read_workbook(data: bytes, filename: str) -> List[Dict[str, Any]]:
    """Rows of the first sheet as header -> value mappings."""
    name = (filename or "").lower()
    engine = next((eng for ext, eng in ALLOWED_EXTENSIONS.items() if name.endswith(ext)), None)
    if engine is None:
        raise ValidationError("Please choose an Excel file (.xlsx or .xls)", field="file")
    try:
        frame = pd.read_excel(io.BytesIO(data), sheet_name=0, dtype=str, keep_default_na=False, engine=engine)
    except Exception as e:
        raise ValidationError(f"Failed to read the Excel file: {e}", field="file") from e

    frame.columns = [str(c).strip() for c in frame.columns]
    rows = frame.to_dict(orient="records")
    if not rows:
        raise ValidationError("The Excel file contains no data", field="file")
    dlog("import_workbook_read", {"filename": filename, "rows": len(rows), "columns": list(frame.columns)})
    return rows


def resolve_field(row: Mapping[str, Any], field_name: str) -> str:
    for alias in FIELD_ALIASES[field_name]:
        value = _cell_text(row.get(alias))
        if value:
            return value
    return ""


def parse_rows(raw_rows: Sequence[Mapping[str, Any]]) -> ParseResult:
    result = ParseResult()
    for index, row in enumerate(raw_rows):
        # header is sheet row 1
        row_number = index + 2
        values = {name: resolve_field(row, name) for name in FIELD_ALIASES}

        missing = [name for name in REQUIRED_FIELDS if not values[name]]
        if missing:
            reason = f"missing {', '.join(missing)}"
        elif len(values["password"]) < MIN_PASSWORD_LENGTH:
            reason = "password too short"
        else:
            reason = None

        if reason:
            dlog("import_row_dropped", {"row": row_number, "reason": reason})
            result.dropped.append(DroppedRow(row_number=row_number, reason=reason))
            continue

        result.candidates.append(
            ImportCandidate(
                row_number=row_number,
                account=values["account"],
                display_name=values["display_name"],
                password=values["password"],
                phone=values["phone"] or None,
                address=values["address"] or None,
            )
        )
    return result


def preview_rows(candidates: Sequence[ImportCandidate]) -> List[Dict[str, str]]:
    return [
        {
            "row": str(c.row_number),
            "account": c.account,
            "display_name": c.display_name,
            "phone": c.phone or "",
            "address": c.address or "",
        }
        for c in candidates
    ]


def import_rows(
    directory: DirectoryClient,
    candidates: Sequence[ImportCandidate],
    progress: Optional[ProgressCallback] = None,
) -> ImportReport:
    """Insert candidates one by one, strictly in order."""
    report = ImportReport(total=len(candidates))
    for index, candidate in enumerate(candidates):
        try:
            if directory.find_by_account(candidate.account) is not None:
                report.skipped_count += 1
                report.log.append(
                    ImportLogEntry("skipped", candidate.account, f"Account '{candidate.account}' already exists, skipped")
                )
            else:
                directory.insert(candidate.to_record())
                report.success_count += 1
                report.log.append(
                    ImportLogEntry(
                        "success",
                        candidate.account,
                        f"Imported: {candidate.account} - {candidate.display_name}",
                    )
                )
        except DirectoryError as e:
            dlog("import_row_error", {"row": candidate.row_number, "account": candidate.account, "error": e.message})
            report.error_count += 1
            report.log.append(
                ImportLogEntry("error", candidate.account, f"Import failed: {candidate.account} - {e.message}")
            )

        report.processed = index + 1
        if progress:
            progress(index + 1, len(candidates))

    dlog(
        "import_finished",
        {"success": report.success_count, "error": report.error_count, "skipped": report.skipped_count},
    )
    return report
