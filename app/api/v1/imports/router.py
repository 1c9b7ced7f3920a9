"""Imports router: CSV import of students and fees, CSV templates and export."""

from fastapi import APIRouter, Depends, HTTPException, Response

from app.api.deps import get_importer, get_store
from app.auth.dependencies import ensure_access, get_current_user, scoped_grades
from app.auth.services import SessionUser
from app.core.exceptions import ServiceError
from app.core.local_store import LocalStore

from . import service
from .schemas import CsvImportRequest, CsvImportResponse
from .service import ImportMerger, ProcessedImport

router = APIRouter(prefix="/api/v1/imports", tags=["imports"])

CSV_MEDIA_TYPE = "text/csv; charset=utf-8"


def _csv_response(content: str, filename: str) -> Response:
    return Response(
        content=content.encode("utf-8"),
        media_type=CSV_MEDIA_TYPE,
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


async def _process(
    payload: CsvImportRequest,
    store: LocalStore,
    importer: ImportMerger,
    current_user: SessionUser,
) -> ProcessedImport:
    ensure_access(current_user, payload.school_id)
    rows = service.parse_csv(payload.content)
    settings = await store.get_settings(payload.school_id)
    existing = [s.student_number for s in await store.get_students(payload.school_id)]
    processed = importer.process_rows(rows, payload.school_id, settings, existing_numbers=existing)
    for student in processed.students:
        ensure_access(current_user, payload.school_id, student.grade)
    return processed


@router.post("/preview", response_model=ProcessedImport)
async def preview_import(
    payload: CsvImportRequest,
    store: LocalStore = Depends(get_store),
    importer: ImportMerger = Depends(get_importer),
    current_user: SessionUser = Depends(get_current_user),
) -> ProcessedImport:
    """Parse a CSV file and return the students and fees it would create, without saving."""
    try:
        return await _process(payload, store, importer, current_user)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.post("", response_model=CsvImportResponse)
async def import_csv(
    payload: CsvImportRequest,
    store: LocalStore = Depends(get_store),
    importer: ImportMerger = Depends(get_importer),
    current_user: SessionUser = Depends(get_current_user),
) -> CsvImportResponse:
    try:
        processed = await _process(payload, store, importer, current_user)
        result = await importer.persist(processed.students, processed.fees, payload.school_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    return CsvImportResponse(
        students_count=result.students_count,
        fees_count=result.fees_count,
        students_processed=len(processed.students),
        fees_processed=len(processed.fees),
    )


@router.get("/templates/students")
async def students_template(current_user: SessionUser = Depends(get_current_user)) -> Response:
    return _csv_response(service.student_template_csv(), "students_template.csv")


@router.get("/templates/fees")
async def fees_template(current_user: SessionUser = Depends(get_current_user)) -> Response:
    return _csv_response(service.fee_template_csv(), "fees_template.csv")


@router.get("/export/students")
async def export_students(
    school_id: str,
    store: LocalStore = Depends(get_store),
    current_user: SessionUser = Depends(get_current_user),
) -> Response:
    ensure_access(current_user, school_id)
    students = await store.get_students(school_id, scoped_grades(current_user, None))
    return _csv_response(service.export_students_csv(students), "students.csv")
