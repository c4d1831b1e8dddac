import asyncio
from datetime import timedelta

import pytest
import pytest_asyncio

from loan_channel.core.exceptions import (
    ConflictError,
    InvalidStatusError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from loan_channel.database.models.loan_application_model import (
    ApplicationStatus,
    DocumentStatus,
    LoanApplication,
)
from loan_channel.database.models.user_model import Customer, Role
from loan_channel.services.loan_service import loan_application_service
from loan_channel.services.target_service import target_service
from loan_channel.utils.clock import utcnow

PAN = {"doc_type": "pan", "url": "https://files.example.com/pan.pdf"}


@pytest_asyncio.fixture
async def channel(factory):
    admin = await factory.admin()
    asm = await factory.member(Role.ASM, admin)
    rm = await factory.member(Role.RM, asm)
    partner = await factory.member(Role.PARTNER, rm)
    application = await loan_application_service.create_application(
        partner_id=partner.id,
        loan_type="personal",
        customer_profile=factory.profile("customer"),
        requested_amount="500000",
        docs=[PAN],
    )
    return {"admin": admin, "asm": asm, "rm": rm, "partner": partner, "application": application}


async def move(application, rm, *statuses, **kwargs):
    for status in statuses:
        application, _ = await loan_application_service.transition(application.id, rm.id, status, **kwargs)
    return application


async def verify_documents(application, partner, rm):
    for doc_type in application.required_doc_types():
        if application.find_doc(doc_type) is None:
            application = await loan_application_service.upload_document(
                application.id, partner.id, doc_type, f"https://files.example.com/{doc_type.lower()}.pdf"
            )
        application = await loan_application_service.review_document(application.id, rm.id, doc_type, "VERIFIED")
    return application


@pytest.mark.asyncio
async def test_create_application_snapshots_hierarchy(channel):
    application = channel["application"]

    assert application.app_no == "TLF0001"
    assert application.status == ApplicationStatus.DRAFT
    assert application.rm_id == channel["rm"].id
    assert application.asm_id == channel["asm"].id
    assert application.requested_amount == 500000
    assert application.docs[0].doc_type == "PAN"
    assert application.docs[0].status == DocumentStatus.PENDING
    assert len(application.stage_history) == 1
    assert application.stage_history[0].from_status is None


@pytest.mark.asyncio
async def test_one_open_application_per_customer(channel):
    application = channel["application"]

    with pytest.raises(ConflictError):
        await loan_application_service.create_application(
            partner_id=channel["partner"].id,
            loan_type="BUSINESS",
            customer_id=application.customer_id,
        )


@pytest.mark.asyncio
async def test_create_application_validates_loan_type(channel, factory):
    with pytest.raises(ValidationError):
        await loan_application_service.create_application(
            partner_id=channel["partner"].id,
            loan_type="CAR",
            customer_profile=factory.profile("customer"),
        )


@pytest.mark.asyncio
async def test_submit_notifies_everyone_but_the_partner(channel):
    application, event = await loan_application_service.submit(channel["application"].id, channel["partner"].id)

    assert application.status == ApplicationStatus.SUBMITTED
    assert application.stage_history[-1].note == "Partner submitted"
    recipients = {(r.user_id, r.role) for r in event.recipients}
    assert recipients == {
        (application.customer_id, Role.CUSTOMER),
        (channel["rm"].id, Role.RM),
        (channel["asm"].id, Role.ASM),
        (channel["admin"].id, Role.SUPER_ADMIN),
    }


@pytest.mark.asyncio
async def test_full_lifecycle_keeps_monotonic_history(channel):
    rm = channel["rm"]
    application, _ = await loan_application_service.submit(channel["application"].id, channel["partner"].id)

    application = await verify_documents(application, channel["partner"], rm)
    application = await move(application, rm, "DOC_COMPLETE", "UNDER_REVIEW", "APPROVED")
    application, event = await loan_application_service.transition(
        application.id, rm.id, "DISBURSED", note="Funds released", approved_loan_amount="450000"
    )

    assert application.status == ApplicationStatus.DISBURSED
    assert application.approved_loan_amount == 450000
    assert event.from_status == ApplicationStatus.APPROVED
    assert channel["rm"].id not in {r.user_id for r in event.recipients}

    history = (await LoanApplication.get(application.id)).stage_history
    assert [entry.to_status for entry in history] == [
        ApplicationStatus.DRAFT,
        ApplicationStatus.SUBMITTED,
        ApplicationStatus.DOC_COMPLETE,
        ApplicationStatus.UNDER_REVIEW,
        ApplicationStatus.APPROVED,
        ApplicationStatus.DISBURSED,
    ]
    for previous, entry in zip(history, history[1:]):
        assert entry.from_status == previous.to_status
        assert entry.at >= previous.at


@pytest.mark.asyncio
async def test_disbursal_requires_amount(channel):
    rm = channel["rm"]
    application, _ = await loan_application_service.submit(channel["application"].id, channel["partner"].id)
    application = await move(application, rm, "UNDER_REVIEW", "APPROVED")

    for bad in (None, "lots", "nan"):
        with pytest.raises(ValidationError):
            await loan_application_service.transition(application.id, rm.id, "DISBURSED", approved_loan_amount=bad)

    stored = await LoanApplication.get(application.id)
    assert stored.status == ApplicationStatus.APPROVED
    assert stored.approved_loan_amount is None
    assert len(stored.stage_history) == 4


@pytest.mark.asyncio
async def test_unknown_status_is_reported_before_ownership(channel):
    with pytest.raises(InvalidStatusError):
        await loan_application_service.transition(channel["application"].id, channel["partner"].id, "FINISHED")


@pytest.mark.asyncio
async def test_transition_by_other_rm_reads_as_missing(channel, factory):
    other_rm = await factory.member(Role.RM, channel["asm"])

    with pytest.raises(NotFoundError):
        await loan_application_service.transition(channel["application"].id, other_rm.id, "REJECTED")


@pytest.mark.asyncio
async def test_disallowed_edge_is_rejected(channel):
    with pytest.raises(InvalidTransitionError) as excinfo:
        await loan_application_service.transition(channel["application"].id, channel["rm"].id, "APPROVED")

    assert excinfo.value.details["from"] == "DRAFT"
    assert (await LoanApplication.get(channel["application"].id)).status == ApplicationStatus.DRAFT


@pytest.mark.asyncio
async def test_rejection_from_review_marks_application_and_customer(channel):
    rm = channel["rm"]
    application, _ = await loan_application_service.submit(channel["application"].id, channel["partner"].id)
    application = await move(application, rm, "UNDER_REVIEW")

    application, event = await loan_application_service.transition(
        application.id, rm.id, "REJECTED", note="insufficient income"
    )

    expected = event.at + timedelta(days=90)
    stored = await LoanApplication.get(application.id)
    assert stored.status == ApplicationStatus.REJECTED
    assert stored.approved_loan_amount is None
    assert stored.deleted_at == expected
    assert stored.stage_history[-1].to_status == ApplicationStatus.REJECTED
    assert stored.stage_history[-1].from_status == ApplicationStatus.UNDER_REVIEW
    assert stored.stage_history[-1].note == "insufficient income"
    customer = await Customer.get(application.customer_id)
    assert customer.deleted_at == expected

    with pytest.raises(InvalidTransitionError):
        await loan_application_service.transition(application.id, rm.id, "SUBMITTED")


@pytest.mark.asyncio
async def test_doc_complete_needs_every_required_document_verified(channel):
    rm, partner = channel["rm"], channel["partner"]
    application, _ = await loan_application_service.submit(channel["application"].id, partner.id)
    application = await loan_application_service.review_document(application.id, rm.id, "PAN", "VERIFIED")

    with pytest.raises(ValidationError) as excinfo:
        await loan_application_service.transition(application.id, rm.id, "DOC_COMPLETE")

    assert "PAN" not in excinfo.value.details["unverified"]
    assert "BANK_STATEMENT" in excinfo.value.details["unverified"]
    stored = await LoanApplication.get(application.id)
    assert stored.status == ApplicationStatus.SUBMITTED
    assert len(stored.stage_history) == 2

    application = await verify_documents(stored, partner, rm)
    application = await move(application, rm, "DOC_COMPLETE")
    assert application.status == ApplicationStatus.DOC_COMPLETE


@pytest.mark.asyncio
async def test_concurrent_transitions_from_same_state_apply_once(channel):
    rm = channel["rm"]
    application, _ = await loan_application_service.submit(channel["application"].id, channel["partner"].id)

    results = await asyncio.gather(
        loan_application_service.transition(application.id, rm.id, "UNDER_REVIEW"),
        loan_application_service.transition(application.id, rm.id, "UNDER_REVIEW"),
        return_exceptions=True,
    )

    failures = [result for result in results if isinstance(result, Exception)]
    assert len(failures) == 1
    assert isinstance(failures[0], InvalidTransitionError)
    stored = await LoanApplication.get(application.id)
    assert stored.status == ApplicationStatus.UNDER_REVIEW
    assert len(stored.stage_history) == 3
    assert [entry.to_status for entry in stored.stage_history].count(ApplicationStatus.UNDER_REVIEW) == 1


@pytest.mark.asyncio
async def test_document_review_and_reupload(channel):
    application = channel["application"]
    rm, partner = channel["rm"], channel["partner"]
    uploaded_at = application.docs[0].uploaded_at

    application = await loan_application_service.review_document(
        application.id, rm.id, "PAN", "REJECTED", remarks="Blurry scan"
    )
    doc = application.docs[0]
    assert doc.status == DocumentStatus.REJECTED
    assert doc.rejected_by == rm.id and doc.remarks == "Blurry scan"

    application = await loan_application_service.upload_document(
        application.id, partner.id, "pan", "https://files.example.com/pan-v2.pdf"
    )
    doc = application.docs[0]
    assert doc.status == DocumentStatus.UPDATED
    assert doc.url.endswith("pan-v2.pdf")
    assert doc.remarks is None and doc.rejected_at is None and doc.rejected_by is None
    assert doc.uploaded_at == uploaded_at

    application = await loan_application_service.upload_document(
        application.id, partner.id, "BANK_STATEMENT", "https://files.example.com/bank.pdf"
    )
    assert [d.doc_type for d in application.docs] == ["PAN", "BANK_STATEMENT"]
    assert application.docs[1].status == DocumentStatus.UPDATED
    assert not application.all_documents_verified()


@pytest.mark.asyncio
async def test_document_review_needs_remarks_to_reject(channel):
    with pytest.raises(ValidationError):
        await loan_application_service.review_document(
            channel["application"].id, channel["rm"].id, "PAN", "REJECTED"
        )


@pytest.mark.asyncio
async def test_uploads_refused_on_terminal_application(channel):
    application, _ = await loan_application_service.submit(channel["application"].id, channel["partner"].id)
    await loan_application_service.transition(application.id, channel["rm"].id, "REJECTED")

    with pytest.raises(ValidationError):
        await loan_application_service.upload_document(
            application.id, channel["partner"].id, "PAN", "https://files.example.com/late.pdf"
        )


@pytest.mark.asyncio
async def test_payout_eligibility_follows_disbursal(channel):
    rm = channel["rm"]
    application, _ = await loan_application_service.submit(channel["application"].id, channel["partner"].id)
    assert await loan_application_service.check_payout_eligibility(application.id) is False

    application = await move(application, rm, "UNDER_REVIEW", "APPROVED")
    await loan_application_service.transition(application.id, rm.id, "DISBURSED", approved_loan_amount=250000)

    assert await loan_application_service.check_payout_eligibility(application.id) is True


@pytest.mark.asyncio
async def test_viewing_is_scoped_to_involved_users(channel, factory):
    application = channel["application"]
    outsider = await factory.member(Role.PARTNER, channel["rm"])

    assert (await loan_application_service.get_application(application.id, channel["asm"])).id == application.id
    with pytest.raises(NotFoundError):
        await loan_application_service.get_application(application.id, outsider)
    assert await loan_application_service.list_applications(outsider) == []
    assert len(await loan_application_service.list_applications(channel["rm"], status="DRAFT")) == 1


@pytest.mark.asyncio
async def test_achievement_counts_disbursals_in_period(channel):
    now = utcnow()
    rm, partner = channel["rm"], channel["partner"]
    await target_service.assign_bulk(now.month, now.year, 1000000, channel["admin"].id)
    application, _ = await loan_application_service.submit(channel["application"].id, partner.id)
    application = await move(application, rm, "UNDER_REVIEW", "APPROVED")
    await loan_application_service.transition(application.id, rm.id, "DISBURSED", approved_loan_amount=300000)

    target = await target_service.refresh_achievement(partner.id, now.month, now.year)
    rm_target = await target_service.refresh_achievement(rm.id, now.month, now.year)

    assert target.achieved_value == 300000
    assert rm_target.achieved_value == 300000
