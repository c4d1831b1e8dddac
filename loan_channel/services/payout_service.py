import logging
from typing import Any, Dict, List, Optional

from loan_channel.core.exceptions import NotFoundError, ValidationError
from loan_channel.database.models.loan_application_model import LoanApplication
from loan_channel.database.models.payout_model import Payout, PayoutStatus
from loan_channel.database.models.user_model import Role, User
from loan_channel.services.loan_service import LoanApplicationService, loan_application_service
from loan_channel.utils.clock import utcnow
from loan_channel.utils.ids import as_object_id
from loan_channel.utils.period import parse_amount, round_money

logger = logging.getLogger(__name__)


class PayoutService:

    def __init__(self, applications: LoanApplicationService):
        self.applications = applications

    # Records (or updates) the partner's commission on a disbursed application
    async def record_payout(self, application_id: Any, partner_id: Any, actor_id: Any,
                            payout_percentage: Any = None, amount: Any = None,
                            note: Optional[str] = None, pay_out_status: Any = None) -> Payout:
        if payout_percentage is None and amount is None:
            raise ValidationError("Either payout_percentage or amount is required")
        percentage = parse_amount(payout_percentage, "payout_percentage") if payout_percentage is not None else None
        if percentage is not None and percentage > 100:
            raise ValidationError("payout_percentage cannot exceed 100")
        fixed_amount = parse_amount(amount, "amount") if amount is not None else None
        try:
            status = PayoutStatus(str(pay_out_status).upper()) if pay_out_status is not None else PayoutStatus.PENDING
        except ValueError:
            raise ValidationError(f"Invalid payout status: {pay_out_status!r}")

        actor_oid = as_object_id(actor_id, "User")
        partner_oid = as_object_id(partner_id, "Partner")
        application = await LoanApplication.get(as_object_id(application_id, "Application"))
        if application is None or application.rm_id != actor_oid or application.partner_id != partner_oid:
            logger.warning(f"Payout refused: application {application_id} not found for RM {actor_id}")
            raise NotFoundError(f"Application {application_id} not found")
        if not await self.applications.check_payout_eligibility(application.id):
            raise ValidationError(
                f"Application {application.app_no} is {application.status.value}, payouts need DISBURSED"
            )

        if percentage is not None:
            payout_amount = round_money((application.approved_loan_amount or 0) * percentage / 100)
        else:
            payout_amount = round_money(fixed_amount)

        now = utcnow()
        payout = await Payout.find_one({"application": application.id, "partner_id": partner_oid})
        if payout is None:
            payout = Payout(
                application=application.id,
                partner_id=partner_oid,
                amount=payout_amount,
                pay_out_status=status,
                note=note,
                added_by=actor_oid,
                created_at=now,
                updated_at=now,
            )
            await payout.insert()
        else:
            payout.amount = payout_amount
            payout.pay_out_status = status
            payout.note = note if note is not None else payout.note
            payout.added_by = actor_oid
            payout.updated_at = now
            await payout.save()

        logger.info(f"Payout {payout_amount} ({status.value}) recorded on {application.app_no} for partner {partner_oid}")
        return payout

    async def list_payouts(self, viewer: User, partner_id: Any = None) -> List[Payout]:
        query: Dict[str, Any] = {}
        if viewer.role == Role.PARTNER:
            query["partner_id"] = viewer.id
        elif partner_id is not None:
            query["partner_id"] = as_object_id(partner_id, "Partner")
        if viewer.role == Role.RM:
            query["added_by"] = viewer.id
        return await Payout.find(query).sort("-updated_at").to_list()


payout_service = PayoutService(loan_application_service)
