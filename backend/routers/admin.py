# routers/admin.py — Staff administration: users, dashboard, certificates, documents, payments
import logging
from collections import Counter
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query
from pydantic import BaseModel, StrictBool
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from auth import require_admin_role, CurrentUser
from certificate_lifecycle import certificates
from certificate_renderer import CertificateRenderer, RenderRequest, get_certificate_renderer
from database import get_db_session
from models import Certificate, CertificateStatus, User, UserRole
from results import unwrap
from routers.certificates import certificate_out
from side_effects import run_best_effort

router = APIRouter(prefix="/api/v1/admin", tags=["Admin"])
logger = logging.getLogger("certisphere.admin")


# --- Schemas ---

class CertificatePatch(BaseModel):
    status: Optional[str] = None
    assigned_admin_id: Optional[int] = None


class AssignAdmin(BaseModel):
    assigned_admin_id: Optional[int] = None


class DocumentPatch(BaseModel):
    is_correct: StrictBool


def user_out(u: User) -> dict:
    return {
        "id": u.id,
        "user_code": u.user_code,
        "role": u.role.value,
        "first_name": u.first_name,
        "last_name": u.last_name,
        "business_name": u.business_name,
        "business_type": u.business_type,
        "industry": u.industry,
        "contact_email": u.contact_email,
        "phone_number": u.phone_number,
        "created_at": u.created_at.isoformat() if u.created_at else None,
    }


def document_out(d) -> dict:
    return {
        "id": d.id,
        "certificate_id": d.certificate_id,
        "user_id": d.user_id,
        "file_name": d.file_name,
        "file_path": d.file_path,
        "is_correct": d.is_correct,
        "uploaded_at": d.uploaded_at.isoformat() if d.uploaded_at else None,
    }


# ============================================================
# USERS
# ============================================================

@router.get("/users")
async def list_clients(
    db: AsyncSession = Depends(get_db_session),
    admin: CurrentUser = Depends(require_admin_role),
):
    rows = (await db.execute(
        select(User, func.count(Certificate.id))
        .outerjoin(Certificate, Certificate.user_id == User.id)
        .where(User.role == UserRole.CLIENT)
        .group_by(User.id)
        .order_by(User.created_at.desc())
    )).all()
    return {
        "success": True,
        "users": [{**user_out(u), "certificate_count": count} for u, count in rows],
    }


@router.get("/users/{user_id}")
async def get_client(
    user_id: int,
    db: AsyncSession = Depends(get_db_session),
    admin: CurrentUser = Depends(require_admin_role),
):
    user = await db.get(User, user_id)
    if not user or user.role != UserRole.CLIENT:
        raise HTTPException(404, "User not found")
    certs = await certificates.list_for_owner(db, user_id)
    return {"success": True, "user": user_out(user), "certificates": [certificate_out(c) for c in certs]}


@router.get("/admins")
async def list_admins(
    db: AsyncSession = Depends(get_db_session),
    admin: CurrentUser = Depends(require_admin_role),
):
    result = await db.execute(select(User).where(User.role == UserRole.ADMIN).order_by(User.id))
    return {
        "success": True,
        "admins": [
            {"id": u.id, "user_code": u.user_code, "first_name": u.first_name,
             "last_name": u.last_name, "contact_email": u.contact_email}
            for u in result.scalars().all()
        ],
    }


# ============================================================
# DASHBOARD
# ============================================================

@router.get("/dashboard-stats")
async def dashboard_stats(
    db: AsyncSession = Depends(get_db_session),
    admin: CurrentUser = Depends(require_admin_role),
):
    async def count(stmt) -> int:
        return (await db.execute(stmt)).scalar() or 0

    totals = {
        "total_clients": await count(select(func.count(User.id)).where(User.role == UserRole.CLIENT)),
        "total_admins": await count(select(func.count(User.id)).where(User.role == UserRole.ADMIN)),
        "total_certificates": await count(select(func.count(Certificate.id))),
        "submitted_certificates": await count(
            select(func.count(Certificate.id)).where(Certificate.status == CertificateStatus.SUBMITTED)),
        "completed_certificates": await count(
            select(func.count(Certificate.id)).where(Certificate.status == CertificateStatus.COMPLETED)),
    }

    # Month buckets are computed here so the query stays portable across backends
    client_dates = (await db.execute(
        select(User.created_at).where(User.role == UserRole.CLIENT)
    )).scalars().all()
    certificate_dates = (await db.execute(select(Certificate.created_at))).scalars().all()
    client_months = Counter(dt.strftime("%Y-%m") for dt in client_dates if dt)
    certificate_months = Counter(dt.strftime("%Y-%m") for dt in certificate_dates if dt)
    monthly = [
        {"month": month, "new_clients": client_months.get(month, 0),
         "new_certificates": certificate_months.get(month, 0)}
        for month in sorted(set(client_months) | set(certificate_months))
    ]
    return {"success": True, "stats": totals, "monthly": monthly}


# ============================================================
# CERTIFICATES
# ============================================================

@router.get("/certificates")
async def list_certificates(
    db: AsyncSession = Depends(get_db_session),
    admin: CurrentUser = Depends(require_admin_role),
):
    return {"success": True, "certificates": await certificates.list_all(db)}


@router.get("/certificates/{certificate_id}")
async def get_certificate(
    certificate_id: int,
    db: AsyncSession = Depends(get_db_session),
    admin: CurrentUser = Depends(require_admin_role),
):
    return {"success": True, "certificate": unwrap(await certificates.get_admin_detail(db, certificate_id))}


@router.get("/certificates/{certificate_id}/documents")
async def certificate_documents(
    certificate_id: int,
    db: AsyncSession = Depends(get_db_session),
    admin: CurrentUser = Depends(require_admin_role),
):
    docs = await certificates.documents_for(db, certificate_id)
    return {"success": True, "documents": [document_out(d) for d in docs]}


@router.patch("/certificates/{certificate_id}")
async def update_certificate(
    certificate_id: int,
    data: CertificatePatch,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db_session),
    renderer: CertificateRenderer = Depends(get_certificate_renderer),
    admin: CurrentUser = Depends(require_admin_role),
):
    outcome = unwrap(await certificates.staff_update(
        db,
        certificate_id,
        status=data.status,
        assigned_admin_id=data.assigned_admin_id,
        update_assignment="assigned_admin_id" in data.model_fields_set,
    ))
    cert = outcome.certificate

    if outcome.entered_completed:
        owner = await db.get(User, cert.user_id)
        request = RenderRequest(
            certificate_id=cert.id,
            business_name=owner.business_name if owner else None,
            certificate_name=cert.certificate_name,
            certificate_type=cert.certificate_type,
            certificate_reference=cert.certificate_reference,
            iso_standards=cert.iso_standards,
        )
        background_tasks.add_task(run_best_effort, "certificate render", renderer.render, request)

    return {"success": True, "certificate": certificate_out(cert)}


@router.patch("/certificates/{certificate_id}/assign-admin")
async def assign_admin(
    certificate_id: int,
    data: AssignAdmin,
    db: AsyncSession = Depends(get_db_session),
    admin: CurrentUser = Depends(require_admin_role),
):
    cert = unwrap(await certificates.assign_admin(db, certificate_id, data.assigned_admin_id))
    return {"success": True, "certificate": certificate_out(cert)}


# ============================================================
# DOCUMENTS
# ============================================================

@router.patch("/documents/{document_id}")
async def review_document(
    document_id: int,
    data: DocumentPatch,
    db: AsyncSession = Depends(get_db_session),
    admin: CurrentUser = Depends(require_admin_role),
):
    doc = unwrap(await certificates.set_document_correctness(db, document_id, data.is_correct))
    return {"success": True, "document": document_out(doc)}


# ============================================================
# PAYMENTS
# ============================================================

@router.get("/payments")
async def list_payments(
    search: str = Query(default="", max_length=100),
    db: AsyncSession = Depends(get_db_session),
    admin: CurrentUser = Depends(require_admin_role),
):
    return {"success": True, "payments": await certificates.payments(db, search=search.strip())}
