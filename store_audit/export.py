# store_audit/export.py
import csv
import io
from datetime import date
from typing import Iterable, List, Optional

from store_audit.errors import AuditError
from store_audit.rubric import Rubric
from store_audit.session import FinalizedAuditRecord

STATIC_HEADERS = ["Folio", "Fecha", "Hora", "Tienda", "Gerente", "Auditor", "Puntaje Total", "Estatus"]

FILTERED_EXPORT_PREFIX = "Reporte_Filtrado_Berel"
GLOBAL_EXPORT_PREFIX = "Reporte_GLOBAL_Berel"


def csv_headers(rubric: Rubric) -> List[str]:
    return STATIC_HEADERS + [f"{q.id} ({q.category})" for _, q in rubric.iter_questions()]


def csv_row(record: FinalizedAuditRecord, rubric: Rubric) -> List[str]:
    row = [
        record.folio,
        record.audit_date.isoformat(),
        record.audit_time.strftime("%H:%M"),
        record.store_name,
        record.manager_name,
        record.auditor_name,
        str(record.total_score),
        record.status.value,
    ]
    for _, q in rubric.iter_questions():
        item = record.items.get(q.id)
        row.append(str(item.score) if item else "0")
    return row


def records_to_csv(records: Iterable[FinalizedAuditRecord], rubric: Rubric) -> str:
    """
    One quoted row per record, question columns in rubric order.
    Raises AuditError when there is nothing to export.
    """
    records = list(records)
    if not records:
        raise AuditError("No hay datos para exportar.")

    buf = io.StringIO()
    writer = csv.writer(buf, quoting=csv.QUOTE_ALL, lineterminator="\n")
    writer.writerow(csv_headers(rubric))
    for record in records:
        writer.writerow(csv_row(record, rubric))
    return buf.getvalue()


def export_filename(prefix: str, on: Optional[date] = None) -> str:
    return f"{prefix}_{(on or date.today()).isoformat()}.csv"
