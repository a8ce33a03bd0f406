# routers/certificates.py — Client certificate flow: upload, type/price assignment, listing
import os
import logging
from typing import Any, List, Optional

from fastapi import APIRouter, Depends, File, HTTPException, UploadFile
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from auth import get_current_user, CurrentUser
from certificate_lifecycle import certificates, CERTIFICATE_TYPES, ISO_STANDARDS
from database import get_db_session
from document_store import DocumentStore, get_document_store
from models import Certificate, Document, utcnow
from results import unwrap

router = APIRouter(prefix="/api/v1", tags=["Certificates"])
logger = logging.getLogger("certisphere.certificates")

MAX_UPLOAD_FILES = int(os.getenv("MAX_UPLOAD_FILES", "5"))


# --- Schemas ---

class GenerateCertificateRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    certificate_id: Optional[int] = Field(None, alias="certificateId")
    # numeric type id (preferred) or a type name
    certificate_type: Optional[Any] = Field(None, alias="certificateType")
    certificate_name: Optional[str] = Field(None, alias="certificateName", max_length=200)
    iso_standards: Optional[List[str]] = Field(None, alias="isoStandards")


def certificate_out(c: Certificate) -> dict:
    return {
        "id": c.id,
        "status": c.status.value if c.status else None,
        "created_at": c.created_at.isoformat() if c.created_at else None,
        "certificate_type": c.certificate_type,
        "certificate_name": c.certificate_name,
        "iso_standards": c.iso_standards,
        "price": c.price,
        "paid": c.paid,
        "paid_at": c.paid_at.isoformat() if c.paid_at else None,
        "certificate_reference": c.certificate_reference,
        "assigned_admin_id": c.assigned_admin_id,
    }


# ============================================================
# TYPES
# ============================================================

@router.get("/certificate-types")
async def certificate_types(user: CurrentUser = Depends(get_current_user)):
    return {
        "success": True,
        "data": {"certificate_types": CERTIFICATE_TYPES, "iso_standards": ISO_STANDARDS},
    }


# ============================================================
# UPLOAD
# ============================================================

@router.post("/upload-documents")
async def upload_documents(
    documents: List[UploadFile] = File(...),
    db: AsyncSession = Depends(get_db_session),
    store: DocumentStore = Depends(get_document_store),
    user: CurrentUser = Depends(get_current_user),
):
    """Creates a bare certificate (no status) and one document row per file"""
    files = [f for f in documents if f.filename]
    if not files:
        raise HTTPException(400, "No files provided")
    if len(files) > MAX_UPLOAD_FILES:
        raise HTTPException(400, f"At most {MAX_UPLOAD_FILES} files per upload")

    try:
        cert = await certificates.create_bare(db, user.id)
        for upload in files:
            path = await store.save(upload, cert.id, user.id)
            db.add(Document(
                certificate_id=cert.id,
                user_id=user.id,
                file_name=upload.filename,
                file_path=path,
                uploaded_at=utcnow(),
            ))
        await db.commit()
    except SQLAlchemyError as e:
        await db.rollback()
        logger.error(f"upload-documents failed for user={user.id}: {e}")
        raise HTTPException(500, "Server error")

    logger.info(f"Certificate {cert.id} created with {len(files)} document(s) for user={user.id}")
    return {"success": True, "message": "Documents uploaded successfully", "certificate_id": cert.id}


# ============================================================
# TYPE / PRICE ASSIGNMENT
# ============================================================

@router.post("/generate-certificate")
async def generate_certificate(
    data: GenerateCertificateRequest,
    db: AsyncSession = Depends(get_db_session),
    user: CurrentUser = Depends(get_current_user),
):
    cert = unwrap(await certificates.assign_type(
        db,
        data.certificate_id,
        user.id,
        data.certificate_type,
        certificate_name=data.certificate_name,
        iso_standards=data.iso_standards,
    ))
    return {
        "success": True,
        "message": "Certificate data saved. Awaiting payment.",
        "certificate": certificate_out(cert),
    }


# ============================================================
# LISTING
# ============================================================

@router.get("/my-certificates")
async def my_certificates(
    db: AsyncSession = Depends(get_db_session),
    user: CurrentUser = Depends(get_current_user),
):
    rows = await certificates.list_for_owner(db, user.id)
    return {"success": True, "certificates": [certificate_out(c) for c in rows]}


@router.get("/certificates/{certificate_id}")
async def get_certificate(
    certificate_id: int,
    db: AsyncSession = Depends(get_db_session),
    user: CurrentUser = Depends(get_current_user),
):
    cert = unwrap(await certificates.get_for_owner(db, certificate_id, user.id))
    return {"success": True, "certificate": certificate_out(cert)}


@router.get("/my-documents")
async def my_documents(
    db: AsyncSession = Depends(get_db_session),
    user: CurrentUser = Depends(get_current_user),
):
    return {"success": True, "documents": await certificates.documents_for_owner(db, user.id)}
