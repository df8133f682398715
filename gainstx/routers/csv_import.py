"""
gainstx/routers/csv_import.py

API endpoints for the file importer: template download and import.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, File, HTTPException, UploadFile
from fastapi.responses import PlainTextResponse
from sqlalchemy.orm import Session

from gainstx.database import get_db
from gainstx.errors import GainsTxError
from gainstx.schemas.csv_import import CSVImportResponse
from gainstx.services.csv_import import generate_template_csv, import_file


router = APIRouter()

# File size limit: 5MB
MAX_FILE_SIZE = 5 * 1024 * 1024


@router.get("/template", response_class=PlainTextResponse)
async def download_template():
    """
    Download a blank CSV template with headers and sample rows.
    """
    return PlainTextResponse(
        content=generate_template_csv(),
        media_type="text/csv",
        headers={
            "Content-Disposition": "attachment; filename=gainstx_import_template.csv"
        }
    )


@router.post("/file", response_model=CSVImportResponse)
async def import_csv_file(
    file: UploadFile = File(...),
    db: Session = Depends(get_db)
):
    """
    Validate and load one CSV file. Everything previously imported for the
    sources named in the file is replaced. Nothing is written if any row
    fails validation.
    """
    if not file.filename or not file.filename.lower().endswith(".csv"):
        raise HTTPException(
            status_code=400,
            detail="File must be a CSV file (.csv extension)"
        )

    content = await file.read()

    if len(content) > MAX_FILE_SIZE:
        raise HTTPException(
            status_code=400,
            detail=f"File too large. Maximum size is {MAX_FILE_SIZE // (1024 * 1024)}MB."
        )

    if len(content) == 0:
        raise HTTPException(
            status_code=400,
            detail="File is empty."
        )

    try:
        result = import_file(db, content)
    except GainsTxError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))

    return CSVImportResponse(
        success=True,
        sources=result.sources,
        imported_count=result.imported_count,
        fee_count=result.fee_count,
        deleted_count=result.deleted_count,
        warnings=result.warnings,
        message=f"Successfully imported {result.imported_count} transaction(s)."
    )
