import pytest
import pytest_asyncio

from loan_channel.core.exceptions import NotFoundError, ValidationError
from loan_channel.database.models.payout_model import Payout, PayoutStatus
from loan_channel.database.models.user_model import Role
from loan_channel.services.loan_service import loan_application_service
from loan_channel.services.payout_service import payout_service


@pytest_asyncio.fixture
async def disbursed(factory):
    admin = await factory.admin()
    asm = await factory.member(Role.ASM, admin)
    rm = await factory.member(Role.RM, asm)
    partner = await factory.member(Role.PARTNER, rm)
    application = await loan_application_service.create_application(
        partner_id=partner.id, loan_type="HOME_LOAN_SALARIED", customer_profile=factory.profile("customer")
    )
    application, _ = await loan_application_service.submit(application.id, partner.id)
    for status in ("UNDER_REVIEW", "APPROVED"):
        application, _ = await loan_application_service.transition(application.id, rm.id, status)
    return {"rm": rm, "partner": partner, "application": application}


@pytest.mark.asyncio
async def test_payout_requires_disbursed_application(disbursed):
    with pytest.raises(ValidationError):
        await payout_service.record_payout(
            disbursed["application"].id, disbursed["partner"].id, disbursed["rm"].id, payout_percentage=2
        )


@pytest.mark.asyncio
async def test_payout_amount_from_percentage_and_upsert(disbursed):
    rm, partner, application = disbursed["rm"], disbursed["partner"], disbursed["application"]
    await loan_application_service.transition(application.id, rm.id, "DISBURSED", approved_loan_amount=500000)

    payout = await payout_service.record_payout(application.id, partner.id, rm.id, payout_percentage="1.5")
    assert payout.amount == 7500
    assert payout.pay_out_status == PayoutStatus.PENDING

    payout = await payout_service.record_payout(
        application.id, partner.id, rm.id, payout_percentage=2, pay_out_status="done", note="Paid via NEFT"
    )
    assert payout.amount == 10000
    assert payout.pay_out_status == PayoutStatus.DONE
    assert await Payout.find_all().count() == 1

    listed = await payout_service.list_payouts(partner)
    assert [p.id for p in listed] == [payout.id]


@pytest.mark.asyncio
async def test_payout_by_other_rm_is_refused(disbursed, factory):
    rm, partner, application = disbursed["rm"], disbursed["partner"], disbursed["application"]
    await loan_application_service.transition(application.id, rm.id, "DISBURSED", approved_loan_amount=100000)
    asm = await factory.member(Role.ASM, await factory.admin())
    other_rm = await factory.member(Role.RM, asm)

    with pytest.raises(NotFoundError):
        await payout_service.record_payout(application.id, partner.id, other_rm.id, payout_percentage=1)


@pytest.mark.asyncio
async def test_payout_needs_percentage_or_amount(disbursed):
    with pytest.raises(ValidationError):
        await payout_service.record_payout(
            disbursed["application"].id, disbursed["partner"].id, disbursed["rm"].id
        )
    with pytest.raises(ValidationError):
        await payout_service.record_payout(
            disbursed["application"].id, disbursed["partner"].id, disbursed["rm"].id, payout_percentage=150
        )
