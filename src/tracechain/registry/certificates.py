"""Certificate registry — unique, ownable certificates bound to products.

Each product has one certificate slot per certificate type. A slot can be
minted again only once its current certificate has been invalidated or
has expired. Verification codes are globally unique within the registry
and resolve to a certificate through a direct index.

Validity is computed at read time from the is_valid flag and the expiry;
no background process expires certificates. Invalidation is one-way: a
certificate cannot be made valid again, only replaced by a new mint.
"""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timezone
from typing import Optional, Sequence, Union

from tracechain.access.control import AccessControl
from tracechain.engine.guard import AccessGuard, entry_point
from tracechain.engine.runtime import LedgerRuntime
from tracechain.errors import AuthorizationError, StateConflictError, ValidationError
from tracechain.models.access import Role
from tracechain.models.certificate import Certificate, CertificateType, VerificationResult
from tracechain.persistence.event_log import EventKind
from tracechain.registry.products import ProductRegistry

_CERTIFICATES = "certificates"
_SLOTS = "slots"
_HOLDINGS = "holdings"
_CERT_SEQ = "certificate"

REASON_VALID = "Certificate is valid"
REASON_MISSING = "Certificate does not exist"
REASON_INVALIDATED = "Certificate has been invalidated"
REASON_EXPIRED = "Certificate has expired"
REASON_UNKNOWN_CODE = "Verification code not found"


class CertificateRegistry:
    """Certificate issuance and verification for one product registry.

    Usage:
        certs = CertificateRegistry(runtime, access, owner="org_admin", products=registry)
        cert = certs.mint_certificate(
            "org_admin", "acme", 1, CertificateType.AUTHENTICITY,
            expiry_utc=next_year, issuer="Lab A", verification_code="V-1",
        )
        certs.verify_by_code("V-1").valid  # True
    """

    def __init__(
        self,
        runtime: LedgerRuntime,
        access: Optional[AccessControl],
        owner: str,
        products: ProductRegistry,
        namespace: str = "certificates",
    ) -> None:
        self._products = products
        self._store = runtime.open_store(namespace)
        with runtime.atomic():
            self.guard = AccessGuard(runtime, self._store, access, owner)

    @property
    def products(self) -> ProductRegistry:
        return self._products

    # ------------------------------------------------------------------
    # Issuance
    # ------------------------------------------------------------------

    @entry_point
    def mint_certificate(
        self,
        caller: str,
        to: str,
        product_id: int,
        certificate_type: Union[CertificateType, str],
        expiry_utc: datetime,
        issuer: str,
        verification_code: str,
        standards: Sequence[str] = (),
        metadata_uri: str = "",
        now: Optional[datetime] = None,
    ) -> Certificate:
        """Mint a certificate for a product slot and give it to `to`."""
        if now is None:
            now = datetime.now(timezone.utc)
        self.guard.require_owner_or_role(caller, Role.CERTIFIER)
        if not to or not to.strip():
            raise ValidationError("Invalid recipient address")
        try:
            cert_type = CertificateType(certificate_type)
        except ValueError as e:
            raise ValidationError("Certificate type required") from e
        if not issuer or not issuer.strip():
            raise ValidationError("Issuer required")
        if not verification_code or not verification_code.strip():
            raise ValidationError("Verification code required")
        product = self._products.get_product(product_id)
        if not product.is_active:
            raise StateConflictError("Product is inactive")
        if not isinstance(expiry_utc, datetime) or expiry_utc <= now:
            raise ValidationError("Invalid expiry date")
        if self._store.lookup_unique("verification_code", verification_code) is not None:
            raise StateConflictError("Verification code already used")
        current = self.get_certificate_by_product(product_id, cert_type)
        if current is not None and current.is_valid and not current.is_expired(now):
            raise StateConflictError(
                f"Product already has a valid {cert_type.value} certificate"
            )

        certificate = Certificate(
            certificate_id=self._store.next_id(_CERT_SEQ),
            product_id=product_id,
            certificate_type=cert_type,
            holder=to,
            issuer=issuer,
            standards=tuple(standards),
            metadata_uri=metadata_uri,
            verification_code=verification_code,
            issued_utc=now,
            expiry_utc=expiry_utc,
            minted_by=caller,
        )
        self._store.insert(_CERTIFICATES, certificate)
        self._store.put(_SLOTS, (product_id, cert_type), certificate.certificate_id)
        self._add_holding(to, certificate.certificate_id)
        self.guard.emit(EventKind.CERTIFICATE_MINTED, caller, {
            "certificate_id": certificate.certificate_id,
            "product_id": product_id,
            "certificate_type": cert_type,
            "owner": to,
        }, now)
        return certificate

    @entry_point
    def invalidate_certificate(
        self,
        caller: str,
        certificate_id: int,
        reason: str = "",
        now: Optional[datetime] = None,
    ) -> Certificate:
        if now is None:
            now = datetime.now(timezone.utc)
        certificate = self.get_certificate(certificate_id)
        if caller != certificate.holder and not self.guard.is_owner(caller):
            raise AuthorizationError("Not certificate owner or authorized")
        if not certificate.is_valid:
            raise StateConflictError("Certificate already invalidated")
        updated = replace(
            certificate,
            is_valid=False,
            invalidated_utc=now,
            invalidation_reason=reason,
        )
        self._store.put(_CERTIFICATES, certificate_id, updated)
        self.guard.emit(EventKind.CERTIFICATE_INVALIDATED, caller, {
            "certificate_id": certificate_id,
            "reason": reason,
        }, now)
        return updated

    @entry_point
    def transfer_certificate(
        self,
        caller: str,
        certificate_id: int,
        to: str,
        now: Optional[datetime] = None,
    ) -> Certificate:
        certificate = self.get_certificate(certificate_id)
        if caller != certificate.holder:
            raise AuthorizationError("Not certificate owner")
        if not to or not to.strip():
            raise ValidationError("Invalid recipient address")
        if to == certificate.holder:
            raise ValidationError("Recipient already holds the certificate")
        updated = replace(certificate, holder=to)
        self._store.put(_CERTIFICATES, certificate_id, updated)
        held = self._store.get(_HOLDINGS, caller, ())
        self._store.put(_HOLDINGS, caller, tuple(c for c in held if c != certificate_id))
        self._add_holding(to, certificate_id)
        self.guard.emit(EventKind.CERTIFICATE_TRANSFERRED, caller, {
            "certificate_id": certificate_id,
            "from": caller,
            "to": to,
        }, now)
        return updated

    @entry_point
    def update_certificate_metadata(
        self,
        caller: str,
        certificate_id: int,
        metadata_uri: str,
        now: Optional[datetime] = None,
    ) -> Certificate:
        self.guard.require_owner_or_role(caller, Role.CERTIFIER)
        certificate = self.get_certificate(certificate_id)
        if not certificate.is_valid:
            raise StateConflictError("Certificate has been invalidated")
        if not metadata_uri or not metadata_uri.strip():
            raise ValidationError("Metadata URI required")
        updated = replace(certificate, metadata_uri=metadata_uri)
        self._store.put(_CERTIFICATES, certificate_id, updated)
        self.guard.emit(EventKind.CERTIFICATE_METADATA_UPDATED, caller, {
            "certificate_id": certificate_id,
            "metadata_uri": metadata_uri,
        }, now)
        return updated

    @entry_point
    def transfer_ownership(
        self,
        caller: str,
        new_owner: str,
        now: Optional[datetime] = None,
    ) -> None:
        self.guard.transfer_ownership(caller, new_owner, now)

    # ------------------------------------------------------------------
    # Verification (pure reads)
    # ------------------------------------------------------------------

    def verify_certificate(
        self,
        certificate_id: int,
        now: Optional[datetime] = None,
    ) -> VerificationResult:
        if now is None:
            now = datetime.now(timezone.utc)
        certificate = self._store.get(_CERTIFICATES, certificate_id)
        if certificate is None:
            return VerificationResult(valid=False, reason=REASON_MISSING)
        if not certificate.is_valid:
            return VerificationResult(False, REASON_INVALIDATED, certificate_id)
        if certificate.is_expired(now):
            return VerificationResult(False, REASON_EXPIRED, certificate_id)
        return VerificationResult(True, REASON_VALID, certificate_id)

    def verify_by_code(
        self,
        verification_code: str,
        now: Optional[datetime] = None,
    ) -> VerificationResult:
        certificate_id = self._store.lookup_unique("verification_code", verification_code)
        if certificate_id is None:
            return VerificationResult(valid=False, reason=REASON_UNKNOWN_CODE)
        return self.verify_certificate(certificate_id, now)

    def is_valid_for_product(
        self,
        certificate_id: int,
        product_id: int,
        now: Optional[datetime] = None,
    ) -> bool:
        certificate = self._store.get(_CERTIFICATES, certificate_id)
        if certificate is None or certificate.product_id != product_id:
            return False
        return self.verify_certificate(certificate_id, now).valid

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_certificate(self, certificate_id: int) -> Certificate:
        return self._store.require(_CERTIFICATES, certificate_id, REASON_MISSING)

    def get_certificate_by_product(
        self,
        product_id: int,
        certificate_type: Union[CertificateType, str],
    ) -> Optional[Certificate]:
        certificate_id = self._store.get(_SLOTS, (product_id, CertificateType(certificate_type)))
        if certificate_id is None:
            return None
        return self._store.get(_CERTIFICATES, certificate_id)

    def certificates_of(self, account: str) -> list[Certificate]:
        return [self._store.get(_CERTIFICATES, c) for c in self._store.get(_HOLDINGS, account, ())]

    @property
    def total_supply(self) -> int:
        return self._store.current_id(_CERT_SEQ)

    def _add_holding(self, account: str, certificate_id: int) -> None:
        held = self._store.get(_HOLDINGS, account, ())
        self._store.put(_HOLDINGS, account, held + (certificate_id,))
