# certificate_lifecycle.py — Certificate status state machine & price resolution
"""
States: (unset) -> Pending Payment -> Submitted -> Additional Documents Required
<-> Submitted -> Completed.

Guarded transitions (type assignment, payment confirmation, the move into
Completed) are single conditional UPDATEs ("... WHERE id = X AND status = Y")
so the precondition and the mutation cannot be separated by another writer.
Prices are integers in minor currency units (cents).
"""
import os
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from sqlalchemy import select, update, func, or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from models import Certificate, CertificateStatus, Document, User, UserRole, utcnow
from results import (
    ServiceResult, validation_error, authorization_error, not_found, conflict, server_error,
)

logger = logging.getLogger("certisphere.certificates")

CERTIFICATE_REFERENCE_PREFIX = os.getenv("CERTIFICATE_REFERENCE_PREFIX", "CS#")

CERTIFICATE_TYPES = [
    {
        "id": 1,
        "typeName": "Structural Engineering Certificate",
        "price": 150_00,
        "requiredDocs": ["Structural Plan", "Soil Analysis Report", "Calculation Sheets"],
    },
    {
        "id": 2,
        "typeName": "Geotechnical Engineering Certificate",
        "price": 200_00,
        "requiredDocs": ["Borehole Logs", "Geotechnical Evaluation", "Lab Test Results"],
    },
    {
        "id": 3,
        "typeName": "Transportation Engineering Certificate",
        "price": 100_00,
        "requiredDocs": ["Traffic Impact Study", "Highway Design Documents", "Safety Analysis"],
    },
]

ISO_STANDARDS = ["ISO 9001", "ISO 14001", "ISO 45001"]

# Fallback for free-text type names, matched case-insensitively on the prefix
PRICE_BY_TYPE_PREFIX = [
    ("structural", 150_00),
    ("geotechnical", 200_00),
    ("transportation", 100_00),
]


def derive_price(type_name: Optional[str]) -> Optional[int]:
    if not type_name:
        return None
    for entry in CERTIFICATE_TYPES:
        if entry["typeName"] == type_name:
            return entry["price"]
    lowered = type_name.lower()
    for prefix, price in PRICE_BY_TYPE_PREFIX:
        if lowered.startswith(prefix):
            return price
    return None


def resolve_price(type_name: Optional[str], explicit: Optional[int] = None) -> Optional[int]:
    """An explicit price wins; otherwise derive it from the type."""
    if explicit is not None:
        return explicit
    return derive_price(type_name)


def resolve_type(certificate_type: Any) -> tuple:
    """Accepts a numeric type id or a type name. Returns (type_name, price)."""
    if certificate_type is None or certificate_type == "":
        return None, None
    try:
        numeric_id = int(certificate_type)
    except (TypeError, ValueError):
        numeric_id = None
    if numeric_id is not None:
        for entry in CERTIFICATE_TYPES:
            if entry["id"] == numeric_id:
                return entry["typeName"], entry["price"]
    type_name = str(certificate_type)
    return type_name, derive_price(type_name)


def to_major_units(cents: Optional[int]) -> float:
    return (cents or 0) / 100


def escape_like(term: str) -> str:
    """Makes %, _ and the escape character match literally in a LIKE pattern."""
    return term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def build_reference(created_year: int, certificate_id: int) -> str:
    return f"{CERTIFICATE_REFERENCE_PREFIX}{created_year}00{certificate_id}"


@dataclass
class StaffUpdateOutcome:
    certificate: Certificate
    entered_completed: bool


class CertificateLifecycleManager:
    """Owns certificate state transitions."""

    async def _diagnose(self, db: AsyncSession, certificate_id: int, user_id: int) -> Optional[ServiceResult]:
        cert = await db.get(Certificate, certificate_id)
        if cert is None:
            return not_found("Certificate not found")
        if cert.user_id != user_id:
            return authorization_error("Certificate not found or not yours")
        return None

    # --------------------------------------------------------
    # Creation
    # --------------------------------------------------------

    async def create_bare(self, db: AsyncSession, owner_id: int) -> Certificate:
        """Bare row (no status) created on first document upload. Caller commits."""
        cert = Certificate(user_id=owner_id, paid=False)
        db.add(cert)
        await db.flush()
        return cert

    # --------------------------------------------------------
    # Price / type assignment
    # --------------------------------------------------------

    async def assign_type(
        self,
        db: AsyncSession,
        certificate_id: Optional[int],
        user_id: int,
        certificate_type: Any,
        certificate_name: Optional[str] = None,
        iso_standards: Optional[List[str]] = None,
    ) -> ServiceResult:
        if not certificate_id:
            return validation_error("Missing certificateId")

        problem = await self._diagnose(db, certificate_id, user_id)
        if problem:
            return problem

        type_name, explicit_price = resolve_type(certificate_type)
        price = resolve_price(type_name, explicit_price)

        try:
            result = await db.execute(
                update(Certificate)
                .where(
                    Certificate.id == certificate_id,
                    Certificate.user_id == user_id,
                    Certificate.paid.is_(False),
                    Certificate.payment_started_at.is_(None),
                    or_(Certificate.status.is_(None), Certificate.status == CertificateStatus.PENDING_PAYMENT),
                )
                .values(
                    status=CertificateStatus.PENDING_PAYMENT,
                    certificate_type=type_name,
                    certificate_name=certificate_name or None,
                    iso_standards=iso_standards or None,
                    price=price,
                    paid=False,
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                await db.rollback()
                return conflict("Certificate price is locked once payment has started")
            await db.commit()
        except SQLAlchemyError as e:
            await db.rollback()
            logger.error(f"Type assignment failed for certificate={certificate_id}: {e}")
            return server_error()

        cert = await db.get(Certificate, certificate_id, populate_existing=True)
        logger.info(f"Certificate {certificate_id} priced at {price} ({type_name}); awaiting payment")
        return ServiceResult.success(cert)

    # --------------------------------------------------------
    # Payment start / confirmation
    # --------------------------------------------------------

    async def record_payment_started(self, db: AsyncSession, certificate_id: int, user_id: int,
                                     amount: int, intent_id: str) -> ServiceResult:
        """Freezes type and price at the amount the issued intent charges.

        Fails with a conflict when the price moved after the amount was read,
        so an intent can never cover a different price than the one stored.
        """
        try:
            result = await db.execute(
                update(Certificate)
                .where(
                    Certificate.id == certificate_id,
                    Certificate.user_id == user_id,
                    Certificate.status == CertificateStatus.PENDING_PAYMENT,
                    or_(Certificate.price.is_(None), Certificate.price == amount),
                )
                .values(
                    price=amount,
                    payment_intent_id=intent_id,
                    payment_started_at=func.coalesce(Certificate.payment_started_at, utcnow()),
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                await db.rollback()
                return conflict("Certificate changed while the payment was being prepared")
            await db.commit()
        except SQLAlchemyError as e:
            await db.rollback()
            logger.error(f"Recording payment start failed for certificate={certificate_id}: {e}")
            return server_error()

        logger.info(f"Payment started for certificate={certificate_id} intent={intent_id} amount={amount}")
        return ServiceResult.success(amount)

    async def confirm_payment(self, db: AsyncSession, certificate_id: int, user_id: int) -> ServiceResult:
        try:
            result = await db.execute(
                update(Certificate)
                .where(
                    Certificate.id == certificate_id,
                    Certificate.user_id == user_id,
                    Certificate.status == CertificateStatus.PENDING_PAYMENT,
                )
                .values(status=CertificateStatus.SUBMITTED, paid=True, paid_at=utcnow())
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                await db.rollback()
                problem = await self._diagnose(db, certificate_id, user_id)
                return problem or conflict("Certificate not in pending payment state.")

            created_at = (await db.execute(
                select(Certificate.created_at).where(Certificate.id == certificate_id)
            )).scalar_one()
            reference = build_reference(created_at.year, certificate_id)
            # Assigned once; never overwritten
            await db.execute(
                update(Certificate)
                .where(Certificate.id == certificate_id, Certificate.certificate_reference.is_(None))
                .values(certificate_reference=reference)
                .execution_options(synchronize_session=False)
            )
            await db.commit()
        except SQLAlchemyError as e:
            await db.rollback()
            logger.error(f"Payment confirmation failed for certificate={certificate_id}: {e}")
            return server_error()

        cert = await db.get(Certificate, certificate_id, populate_existing=True)
        logger.info(f"Certificate {certificate_id} paid; reference {cert.certificate_reference}")
        return ServiceResult.success(cert)

    # --------------------------------------------------------
    # Staff edits
    # --------------------------------------------------------

    async def staff_update(
        self,
        db: AsyncSession,
        certificate_id: int,
        status: Optional[str] = None,
        assigned_admin_id: Optional[int] = None,
        update_assignment: bool = False,
    ) -> ServiceResult:
        new_status = None
        if status:
            try:
                new_status = CertificateStatus(status)
            except ValueError:
                allowed = ", ".join(s.value for s in CertificateStatus)
                return validation_error(f"Invalid status. Must be one of: {allowed}")
        if new_status is None and not update_assignment:
            return validation_error("No fields to update")

        cert = await db.get(Certificate, certificate_id)
        if cert is None:
            return not_found("Certificate not found")

        if update_assignment and assigned_admin_id is not None:
            problem = await self._check_admin(db, assigned_admin_id)
            if problem:
                return problem

        entered_completed = False
        try:
            if new_status == CertificateStatus.COMPLETED:
                result = await db.execute(
                    update(Certificate)
                    .where(
                        Certificate.id == certificate_id,
                        or_(Certificate.status.is_(None), Certificate.status != CertificateStatus.COMPLETED),
                    )
                    .values(status=CertificateStatus.COMPLETED)
                    .execution_options(synchronize_session=False)
                )
                entered_completed = result.rowcount == 1
            elif new_status is not None:
                await db.execute(
                    update(Certificate)
                    .where(Certificate.id == certificate_id)
                    .values(status=new_status)
                    .execution_options(synchronize_session=False)
                )
            if update_assignment:
                await db.execute(
                    update(Certificate)
                    .where(Certificate.id == certificate_id)
                    .values(assigned_admin_id=assigned_admin_id)
                    .execution_options(synchronize_session=False)
                )
            await db.commit()
        except SQLAlchemyError as e:
            await db.rollback()
            logger.error(f"Staff update failed for certificate={certificate_id}: {e}")
            return server_error()

        cert = await db.get(Certificate, certificate_id, populate_existing=True)
        if entered_completed:
            logger.info(f"Certificate {certificate_id} completed")
        return ServiceResult.success(StaffUpdateOutcome(cert, entered_completed))

    async def assign_admin(self, db: AsyncSession, certificate_id: int, admin_id: Optional[int]) -> ServiceResult:
        result = await self.staff_update(
            db, certificate_id, assigned_admin_id=admin_id, update_assignment=True,
        )
        if not result.ok:
            return result
        return ServiceResult.success(result.value.certificate)

    async def _check_admin(self, db: AsyncSession, admin_id: int) -> Optional[ServiceResult]:
        admin = await db.get(User, admin_id)
        if admin is None or admin.role != UserRole.ADMIN:
            return validation_error("assigned_admin_id must reference a staff user")
        return None

    async def force_additional_documents(self, db: AsyncSession, certificate_id: int) -> bool:
        """Unconditional move to Additional Documents Required. Caller commits."""
        result = await db.execute(
            update(Certificate)
            .where(Certificate.id == certificate_id)
            .values(status=CertificateStatus.ADDITIONAL_DOCUMENTS_REQUIRED)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount > 0

    # --------------------------------------------------------
    # Reads
    # --------------------------------------------------------

    async def list_for_owner(self, db: AsyncSession, user_id: int) -> List[Certificate]:
        result = await db.execute(
            select(Certificate).where(Certificate.user_id == user_id).order_by(Certificate.created_at.desc())
        )
        return list(result.scalars().all())

    async def get_for_owner(self, db: AsyncSession, certificate_id: int, user_id: int) -> ServiceResult:
        result = await db.execute(
            select(Certificate).where(Certificate.id == certificate_id, Certificate.user_id == user_id)
        )
        cert = result.scalar_one_or_none()
        if cert is None:
            return not_found("Certificate not found")
        return ServiceResult.success(cert)

    async def pending_for_owner(self, db: AsyncSession, user_id: int) -> List[Dict[str, Any]]:
        result = await db.execute(
            select(Certificate)
            .where(Certificate.user_id == user_id, Certificate.status == CertificateStatus.PENDING_PAYMENT)
            .order_by(Certificate.created_at.desc())
        )
        return [
            {
                "id": c.id,
                "status": c.status.value,
                "created_at": c.created_at.isoformat() if c.created_at else None,
                "certificate_type": c.certificate_type,
                "certificate_name": c.certificate_name,
                "price": resolve_price(c.certificate_type, c.price),
            }
            for c in result.scalars().all()
        ]

    async def payable_amount(self, db: AsyncSession, certificate_id: int, user_id: int) -> ServiceResult:
        result = await db.execute(
            select(Certificate).where(
                Certificate.id == certificate_id,
                Certificate.user_id == user_id,
                Certificate.status == CertificateStatus.PENDING_PAYMENT,
            )
        )
        cert = result.scalar_one_or_none()
        if cert is None:
            return validation_error("Certificate not found or not pending payment.")
        amount = resolve_price(cert.certificate_type, cert.price)
        if not amount:
            return validation_error("Cannot determine price for this certificate.")
        return ServiceResult.success(amount)

    async def payments(self, db: AsyncSession, user_id: Optional[int] = None,
                       search: str = "") -> List[Dict[str, Any]]:
        """Paid / submitted / completed certificates; amounts in major units."""
        stmt = (
            select(Certificate, User.user_code, User.business_name)
            .join(User, User.id == Certificate.user_id)
            .where(
                Certificate.status.is_not(None),
                Certificate.status != CertificateStatus.PENDING_PAYMENT,
            )
        )
        if user_id is not None:
            stmt = stmt.where(Certificate.user_id == user_id)
        if search:
            pattern = f"%{escape_like(search.lower())}%"
            stmt = stmt.where(or_(
                func.lower(Certificate.certificate_reference).like(pattern, escape="\\"),
                func.lower(User.user_code).like(pattern, escape="\\"),
                func.lower(User.business_name).like(pattern, escape="\\"),
            ))
        rows = (await db.execute(stmt)).all()

        payments = []
        for cert, client_code, business_name in rows:
            paid_at = cert.paid_at or cert.created_at
            payments.append({
                "certificate_id": cert.id,
                "certificate_reference": cert.certificate_reference,
                "certificate_name": cert.certificate_name,
                "client_code": client_code,
                "business_name": business_name,
                "amount_eur": to_major_units(resolve_price(cert.certificate_type, cert.price)),
                "paid_at": paid_at.isoformat() if paid_at else None,
            })
        payments.sort(key=lambda p: p["paid_at"] or "", reverse=True)
        return payments

    async def list_all(self, db: AsyncSession) -> List[Dict[str, Any]]:
        rows = (await db.execute(
            select(Certificate, User)
            .join(User, User.id == Certificate.user_id)
            .order_by(Certificate.created_at.desc())
        )).all()
        return [self._admin_row(cert, owner) for cert, owner in rows]

    async def get_admin_detail(self, db: AsyncSession, certificate_id: int) -> ServiceResult:
        row = (await db.execute(
            select(Certificate, User)
            .join(User, User.id == Certificate.user_id)
            .where(Certificate.id == certificate_id)
        )).first()
        if row is None:
            return not_found("Certificate not found")
        cert, owner = row
        detail = self._admin_row(cert, owner)
        detail["contact_email"] = owner.contact_email
        return ServiceResult.success(detail)

    async def documents_for(self, db: AsyncSession, certificate_id: int) -> List[Document]:
        result = await db.execute(
            select(Document).where(Document.certificate_id == certificate_id).order_by(Document.uploaded_at.desc())
        )
        return list(result.scalars().all())

    async def documents_for_owner(self, db: AsyncSession, user_id: int) -> List[Dict[str, Any]]:
        rows = (await db.execute(
            select(Document, Certificate)
            .join(Certificate, Certificate.id == Document.certificate_id)
            .where(Document.user_id == user_id)
            .order_by(Document.uploaded_at.desc())
        )).all()
        return [
            {
                "document_id": doc.id,
                "file_name": doc.file_name,
                "file_path": doc.file_path,
                "uploaded_at": doc.uploaded_at.isoformat() if doc.uploaded_at else None,
                "certificate_id": cert.id,
                "certificate_name": cert.certificate_name,
                "certificate_status": cert.status.value if cert.status else None,
                "price": cert.price,
                "paid": cert.paid,
            }
            for doc, cert in rows
        ]

    async def set_document_correctness(self, db: AsyncSession, document_id: int, is_correct: bool) -> ServiceResult:
        doc = await db.get(Document, document_id)
        if doc is None:
            return not_found("Document not found")
        doc.is_correct = is_correct
        await db.commit()
        return ServiceResult.success(doc)

    @staticmethod
    def _admin_row(cert: Certificate, owner: User) -> Dict[str, Any]:
        return {
            "certificate_id": cert.id,
            "certificate_name": cert.certificate_name,
            "certificate_type": cert.certificate_type,
            "certificate_reference": cert.certificate_reference,
            "user_id": cert.user_id,
            "status": cert.status.value if cert.status else None,
            "created_at": cert.created_at.isoformat() if cert.created_at else None,
            "assigned_admin_id": cert.assigned_admin_id,
            "client_code": owner.user_code,
            "first_name": owner.first_name,
            "last_name": owner.last_name,
            "business_name": owner.business_name,
        }


certificates = CertificateLifecycleManager()
