"""CSV and XLSX export of a project's sessions and answers.

Two layouts are supported:

- ``"sessions"`` (default): one row per session.  Columns are the session id,
  the local start date, the agency, optionally the session details (alias,
  user, start, end, duration), then one column per visible question in
  ``sort_order``.
- ``"questions"``: one row per (session, question) pair, for long-format
  analysis tools.

Answers are flattened with
:func:`~field_observatory.core.response_formatter.format_response_for_csv`.
The exporter does not query the database; the route gathers sessions,
answers and questions and passes them in.
"""

from __future__ import annotations

import csv
import io
import uuid
from collections import defaultdict
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from datetime import datetime, timezone, tzinfo
from typing import Any, Optional

import openpyxl
import structlog
from openpyxl.styles import Font
from openpyxl.utils import get_column_letter

from field_observatory.core.models.questions import ObservationOption
from field_observatory.core.models.sessions import Observation, ObservationSession
from field_observatory.core.response_formatter import format_response_for_csv
from field_observatory.core.session_filters import NO_ALIAS, session_duration

logger = structlog.get_logger(__name__)

EXPORT_MODES = ("sessions", "questions")

_BASE_HEADERS = ["Session ID", "Date", "Agency"]
_DETAIL_HEADERS = ["Alias", "User", "Start", "End", "Duration"]
_QUESTION_ROW_HEADERS = ["Session ID", "Date", "Agency", "Question", "Type", "Response"]

DATE_FORMAT = "%d/%m/%Y"
DATETIME_FORMAT = "%d/%m/%Y %H:%M:%S"


def _localize(moment: datetime, tz: tzinfo) -> datetime:
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(tz)


def _user_label(user_id: uuid.UUID, emails: Mapping[uuid.UUID, str]) -> str:
    """Local part of the user's email, or ``"User <id prefix>"``."""
    email = emails.get(user_id)
    if email:
        return email.split("@", 1)[0]
    return f"User {str(user_id)[:8]}"


@dataclass
class ExportTable:
    headers: list[str]
    rows: list[list[str]]


class SessionExporter:
    """Build and serialize session exports.

    Args:
        tz: Timezone for the date and time columns.
    """

    def __init__(self, tz: tzinfo = timezone.utc) -> None:
        self.tz = tz

    # ------------------------------------------------------------------
    # Table building
    # ------------------------------------------------------------------

    def build_table(
        self,
        sessions: Sequence[ObservationSession],
        observations: Sequence[Observation],
        options: Sequence[ObservationOption],
        mode: str = "sessions",
        include_details: bool = False,
        user_emails: Optional[Mapping[uuid.UUID, str]] = None,
    ) -> ExportTable:
        """Lay out the export as a header row plus string rows.

        Only visible questions become columns, ordered by ``sort_order``.
        Answers to hidden questions are left out.

        Raises:
            ValueError: If *mode* is not one of :data:`EXPORT_MODES`.
        """
        if mode not in EXPORT_MODES:
            raise ValueError(f"Unknown export mode '{mode}'; expected one of {EXPORT_MODES}")

        questions = sorted((o for o in options if o.is_visible), key=lambda o: o.sort_order)
        answers: dict[uuid.UUID, dict[uuid.UUID, Optional[str]]] = defaultdict(dict)
        for observation in observations:
            answers[observation.session_id][observation.project_observation_option_id] = (
                observation.response
            )

        emails = user_emails or {}
        rows: list[list[str]] = []

        if mode == "questions":
            for session in sessions:
                prefix = self._session_prefix(session)
                for question in questions:
                    raw = answers[session.id].get(question.id)
                    rows.append(
                        prefix
                        + [
                            question.name,
                            question.question_type,
                            format_response_for_csv(raw, question.question_type),
                        ]
                    )
            return ExportTable(headers=list(_QUESTION_ROW_HEADERS), rows=rows)

        headers = list(_BASE_HEADERS)
        if include_details:
            headers += _DETAIL_HEADERS
        headers += [q.name for q in questions]

        for session in sessions:
            row = self._session_prefix(session)
            if include_details:
                row += self._session_details(session, emails)
            row += [
                format_response_for_csv(answers[session.id].get(q.id), q.question_type)
                for q in questions
            ]
            rows.append(row)
        return ExportTable(headers=headers, rows=rows)

    def _session_prefix(self, session: ObservationSession) -> list[str]:
        return [
            str(session.id),
            _localize(session.start_time, self.tz).strftime(DATE_FORMAT),
            session.agency or "",
        ]

    def _session_details(
        self, session: ObservationSession, emails: Mapping[uuid.UUID, str]
    ) -> list[str]:
        end = (
            _localize(session.end_time, self.tz).strftime(DATETIME_FORMAT)
            if session.end_time is not None
            else "Active session"
        )
        return [
            session.alias or NO_ALIAS,
            _user_label(session.user_id, emails),
            _localize(session.start_time, self.tz).strftime(DATETIME_FORMAT),
            end,
            session_duration(session),
        ]

    # ------------------------------------------------------------------
    # CSV
    # ------------------------------------------------------------------

    async def export_csv(self, table: ExportTable) -> bytes:
        """Serialize *table* as UTF-8 CSV with a BOM so Excel detects the encoding."""
        buf = io.StringIO()
        writer = csv.writer(buf, lineterminator="\r\n", quoting=csv.QUOTE_ALL)
        writer.writerow(table.headers)
        writer.writerows(table.rows)
        logger.debug("export.csv_built", rows=len(table.rows), columns=len(table.headers))
        return "\ufeff".encode("utf-8") + buf.getvalue().encode("utf-8")

    # ------------------------------------------------------------------
    # XLSX
    # ------------------------------------------------------------------

    async def export_xlsx(self, table: ExportTable, sheet_name: str = "Sessions") -> bytes:
        """Serialize *table* as an XLSX workbook.

        The header row is bold and frozen; columns are sized to the widest of
        the header and the first 100 values.
        """
        wb = openpyxl.Workbook()
        ws = wb.active
        ws.title = sheet_name[:31]

        ws.append(table.headers)
        for cell in ws[1]:
            cell.font = Font(bold=True)
        ws.freeze_panes = "A2"

        for row in table.rows:
            ws.append(row)

        for col_idx, header in enumerate(table.headers, start=1):
            max_len = len(header)
            for row_idx in range(2, min(102, ws.max_row + 1)):
                value: Any = ws.cell(row=row_idx, column=col_idx).value
                if value is not None:
                    max_len = max(max_len, len(str(value)))
            ws.column_dimensions[get_column_letter(col_idx)].width = min(max_len + 2, 80)

        buf = io.BytesIO()
        wb.save(buf)
        return buf.getvalue()
