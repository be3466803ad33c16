"""Tests for tenant factories — proves fees, isolation and availability."""

import pytest
from datetime import datetime, timedelta, timezone
from decimal import Decimal

from tracechain.access.control import AccessControl
from tracechain.engine.runtime import LedgerRuntime
from tracechain.errors import (
    AuthorizationError,
    InsufficientFundsError,
    StateConflictError,
    ValidationError,
)
from tracechain.factories.certificate_factory import CertificateRegistryFactory
from tracechain.factories.compliance_factory import ComplianceFactory
from tracechain.factories.product_factory import ProductRegistryFactory
from tracechain.models.access import Role
from tracechain.models.certificate import CertificateType
from tracechain.models.tenancy import ComponentKind
from tracechain.token.settlement import StablecoinLedger

FEE = Decimal("0.1")


def _now() -> datetime:
    return datetime(2026, 2, 16, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def runtime() -> LedgerRuntime:
    return LedgerRuntime()


@pytest.fixture
def access(runtime: LedgerRuntime) -> AccessControl:
    return AccessControl(runtime, "admin", now=_now())


@pytest.fixture
def usd(runtime: LedgerRuntime, access: AccessControl) -> StablecoinLedger:
    ledger = StablecoinLedger(runtime, access, "admin")
    ledger.mint("admin", "acme", Decimal("10"), _now())
    return ledger


@pytest.fixture
def product_factory(
    runtime: LedgerRuntime, access: AccessControl, usd: StablecoinLedger,
) -> ProductRegistryFactory:
    return ProductRegistryFactory(runtime, access, "platform", usd)


@pytest.fixture
def certificate_factory(
    runtime: LedgerRuntime, access: AccessControl, usd: StablecoinLedger,
) -> CertificateRegistryFactory:
    return CertificateRegistryFactory(runtime, access, "platform", usd)


@pytest.fixture
def compliance_factory(
    runtime: LedgerRuntime, access: AccessControl, usd: StablecoinLedger,
) -> ComplianceFactory:
    return ComplianceFactory(runtime, access, "platform", usd)


def _register(registry, batch: str = "B-1"):
    return registry.register_product(
        "acme", "Vaccine", "pharmaceutical", batch,
        _now() - timedelta(days=1), _now() + timedelta(days=300), ["antigen"], now=_now(),
    )


class TestDeployment:
    def test_deploy_collects_fee_and_refunds_excess(
        self, product_factory: ProductRegistryFactory, usd: StablecoinLedger,
    ) -> None:
        instance = product_factory.deploy_product_registry(
            "acme", "acme-corp", Decimal("0.5"), organization="Acme", now=_now(),
        )
        assert instance.instance_id == 1
        assert instance.kind == ComponentKind.PRODUCT_REGISTRY
        assert instance.fee_paid == FEE
        assert instance.owner == "acme"
        assert usd.balance_of("acme") == Decimal("9.9")
        assert usd.balance_of(product_factory.account) == FEE
        stats = product_factory.get_factory_stats()
        assert (stats.total_instances, stats.active_instances) == (1, 1)
        assert stats.fees_collected == FEE

    def test_underpayment_rejected(
        self, product_factory: ProductRegistryFactory, usd: StablecoinLedger,
    ) -> None:
        with pytest.raises(InsufficientFundsError, match="deployment fee"):
            product_factory.deploy_product_registry("acme", "acme-corp", Decimal("0.05"),
                                                    now=_now())
        assert usd.balance_of("acme") == Decimal("10")
        assert product_factory.get_instance_by_key("acme-corp") is None

    def test_payment_beyond_balance_rejected(
        self, product_factory: ProductRegistryFactory,
    ) -> None:
        with pytest.raises(InsufficientFundsError, match="Insufficient balance"):
            product_factory.deploy_product_registry("acme", "acme-corp", Decimal("11"),
                                                    now=_now())

    def test_duplicate_tenant_key(self, product_factory: ProductRegistryFactory) -> None:
        product_factory.deploy_product_registry("acme", "acme-corp", FEE, now=_now())
        with pytest.raises(StateConflictError, match="already deployed"):
            product_factory.deploy_product_registry("acme", "acme-corp", FEE, now=_now())

    def test_tenant_key_required(self, product_factory: ProductRegistryFactory) -> None:
        with pytest.raises(ValidationError):
            product_factory.deploy_product_registry("acme", " ", FEE, now=_now())

    def test_instances_are_isolated(self, product_factory: ProductRegistryFactory,
                                    usd: StablecoinLedger) -> None:
        usd.mint("admin", "globex", Decimal("1"), _now())
        first = product_factory.deploy_product_registry("acme", "acme-corp", FEE, now=_now())
        second = product_factory.deploy_product_registry("globex", "globex", FEE, now=_now())
        assert first.namespace != second.namespace
        _register(product_factory.component(first.instance_id))
        other = product_factory.component(second.instance_id)
        assert other.product_count == 0
        assert other.get_product_by_batch_number("B-1") is None
        assert [i.tenant_key for i in product_factory.instances_of("acme")] == ["acme-corp"]


class TestAvailability:
    def test_deactivated_instance_rejects_writes_but_serves_reads(
        self, product_factory: ProductRegistryFactory,
    ) -> None:
        instance = product_factory.deploy_product_registry("acme", "acme-corp", FEE, now=_now())
        registry = product_factory.component(instance.instance_id)
        _register(registry)
        product_factory.deactivate_product_registry("acme", instance.instance_id, _now())
        with pytest.raises(StateConflictError, match="deactivated"):
            _register(registry, "B-2")
        assert registry.get_product(1).batch_number == "B-1"
        assert product_factory.get_factory_stats().active_instances == 0

    def test_reactivate_restores_writes(self, product_factory: ProductRegistryFactory) -> None:
        instance = product_factory.deploy_product_registry("acme", "acme-corp", FEE, now=_now())
        product_factory.deactivate("platform", instance.instance_id, _now())
        with pytest.raises(StateConflictError, match="reactivate"):
            product_factory.deploy_product_registry("acme", "acme-corp", FEE, now=_now())
        product_factory.reactivate_product_registry("acme", instance.instance_id, _now())
        _register(product_factory.component(instance.instance_id))
        assert product_factory.is_active(instance.instance_id)

    def test_stranger_cannot_deactivate(self, product_factory: ProductRegistryFactory) -> None:
        instance = product_factory.deploy_product_registry("acme", "acme-corp", FEE, now=_now())
        with pytest.raises(AuthorizationError):
            product_factory.deactivate("mallory", instance.instance_id, _now())

    def test_factory_role_can_deactivate(
        self, product_factory: ProductRegistryFactory, access: AccessControl,
    ) -> None:
        instance = product_factory.deploy_product_registry("acme", "acme-corp", FEE, now=_now())
        access.grant_role("admin", Role.FACTORY, "ops", _now())
        assert not product_factory.deactivate("ops", instance.instance_id, _now()).is_active


class TestCertificateFactory:
    def test_registry_mints_against_tenant_products(
        self,
        product_factory: ProductRegistryFactory,
        certificate_factory: CertificateRegistryFactory,
    ) -> None:
        products = product_factory.component(
            product_factory.deploy_product_registry("acme", "acme-corp", FEE, now=_now()).instance_id
        )
        _register(products)
        instance = certificate_factory.deploy_certificate_registry(
            "acme", "acme-certs", products, FEE, now=_now(),
        )
        certs = certificate_factory.component(instance.instance_id)
        cert = certs.mint_certificate(
            "acme", "acme", 1, CertificateType.QUALITY,
            _now() + timedelta(days=30), "Lab", "V-1", now=_now(),
        )
        assert certs.verify_certificate(cert.certificate_id, _now()).valid


class TestComplianceFactory:
    def test_engine_reports_counts(
        self,
        product_factory: ProductRegistryFactory,
        compliance_factory: ComplianceFactory,
    ) -> None:
        products = product_factory.component(
            product_factory.deploy_product_registry("acme", "acme-corp", FEE, now=_now()).instance_id
        )
        _register(products)
        instance = compliance_factory.deploy_compliance_contract(
            "acme", "pharmaceutical", products, FEE, now=_now(),
        )
        assert compliance_factory.get_instance_by_industry("pharmaceutical") == instance
        engine = compliance_factory.component(instance.instance_id)
        assert engine.industry == "pharmaceutical"
        engine.add_compliance_rule(
            "acme", "GMP-1", "Cold chain", "pharmaceutical", "2-8C", "WHO-GDP", 50, now=_now(),
        )
        engine.check_compliance("acme", 1, 1, now=_now())
        engine.check_compliance("acme", 1, 1, now=_now())

        record = compliance_factory.get_instance(instance.instance_id)
        assert (record.rule_count, record.check_count) == (1, 2)
        stats = compliance_factory.get_factory_stats()
        assert (stats.total_rules, stats.total_checks) == (1, 2)

    def test_only_instance_reports_counts(
        self,
        product_factory: ProductRegistryFactory,
        compliance_factory: ComplianceFactory,
    ) -> None:
        products = product_factory.component(
            product_factory.deploy_product_registry("acme", "acme-corp", FEE, now=_now()).instance_id
        )
        instance = compliance_factory.deploy_compliance_contract(
            "acme", "food", products, FEE, now=_now(),
        )
        with pytest.raises(AuthorizationError):
            compliance_factory.update_rule_count("acme", instance.instance_id, 99, _now())


class TestFees:
    def test_set_deployment_fee(self, product_factory: ProductRegistryFactory,
                                usd: StablecoinLedger) -> None:
        product_factory.set_deployment_fee("platform", Decimal("1"), _now())
        assert product_factory.deployment_fee == Decimal("1")
        with pytest.raises(InsufficientFundsError):
            product_factory.deploy_product_registry("acme", "acme-corp", FEE, now=_now())
        with pytest.raises(AuthorizationError):
            product_factory.set_deployment_fee("acme", Decimal("0"), _now())

    def test_malformed_fee_rejected(self, product_factory: ProductRegistryFactory) -> None:
        with pytest.raises(ValidationError):
            product_factory.set_deployment_fee("platform", "free", _now())
        with pytest.raises(ValidationError):
            product_factory.set_deployment_fee("platform", Decimal("-0.0000001"), _now())
        with pytest.raises(ValidationError):
            product_factory.deploy_product_registry("acme", "acme-corp", Decimal("NaN"), now=_now())
        assert product_factory.deployment_fee == FEE

    def test_zero_fee_deploys_free(self, product_factory: ProductRegistryFactory,
                                   usd: StablecoinLedger) -> None:
        product_factory.set_deployment_fee("platform", Decimal("0"), _now())
        product_factory.deploy_product_registry("acme", "acme-corp", Decimal("0"), now=_now())
        assert usd.balance_of("acme") == Decimal("10")

    def test_withdraw_fees(self, product_factory: ProductRegistryFactory,
                           usd: StablecoinLedger) -> None:
        product_factory.deploy_product_registry("acme", "acme-corp", FEE, now=_now())
        assert product_factory.withdraw_fees("platform", "vault", _now()) == FEE
        assert usd.balance_of("vault") == FEE
        with pytest.raises(StateConflictError):
            product_factory.withdraw_fees("platform", now=_now())

    def test_withdraw_owner_only(self, product_factory: ProductRegistryFactory) -> None:
        product_factory.deploy_product_registry("acme", "acme-corp", FEE, now=_now())
        with pytest.raises(AuthorizationError):
            product_factory.withdraw_fees("acme", now=_now())
