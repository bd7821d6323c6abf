"""Platform-wide views for admins."""

from beanie import PydanticObjectId

from marketplace.core.money import format_minor
from marketplace.core.roles import Role
from marketplace.models.dispute import Dispute
from marketplace.models.purchase import Purchase
from marketplace.models.recharge import Recharge
from marketplace.models.user import User
from marketplace.models.wallet import Wallet
from marketplace.models.wallet_transaction import WalletTransaction
from marketplace.models.withdrawal import WithdrawalRequest


async def platform_stats() -> dict:
    users_by_role = {r.value: await User.find(User.role == r.value).count() for r in Role}
    wallets = await Wallet.find_all().to_list()
    purchases = await Purchase.find_all().to_list()
    return {
        "users": {"total": sum(users_by_role.values()), "by_role": users_by_role},
        "wallets": {
            "count": len(wallets),
            "total_balance": format_minor(sum(w.balance_minor for w in wallets)),
            "frozen": sum(1 for w in wallets if w.status == "frozen"),
        },
        "sales": {
            "count": len(purchases),
            "gross": format_minor(sum(p.amount_minor for p in purchases)),
            "platform_earnings": format_minor(sum(p.markup_minor + p.platform_fee_minor for p in purchases)),
            "refunded": format_minor(sum(p.refunded_minor for p in purchases)),
        },
        "pending": {
            "recharges": await Recharge.find(Recharge.status == "pending").count(),
            "withdrawals": await WithdrawalRequest.find(WithdrawalRequest.status == "pending").count(),
            "disputes": await Dispute.find(Dispute.status == "open").count(),
        },
    }


async def list_transactions(
    wallet_id: PydanticObjectId | None = None,
    type: str | None = None,
    related_entity_type: str | None = None,
    limit: int = 50,
    offset: int = 0,
) -> tuple[list[WalletTransaction], int]:
    filters = []
    if wallet_id:
        filters.append(WalletTransaction.wallet_id == wallet_id)
    if type:
        filters.append(WalletTransaction.type == type)
    if related_entity_type:
        filters.append(WalletTransaction.related_entity_type == related_entity_type)
    total = await WalletTransaction.find(*filters).count()
    items = await WalletTransaction.find(*filters).sort(-WalletTransaction.created_at).skip(offset).limit(limit).to_list()
    return items, total
