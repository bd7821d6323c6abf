from marketplace.models.user import User
from marketplace.models.wallet import Wallet
from marketplace.models.wallet_transaction import WalletTransaction
from marketplace.models.recharge import Recharge
from marketplace.models.withdrawal import WithdrawalRequest
from marketplace.models.affiliate import AffiliateProfile, Referral
from marketplace.models.platform_config import PricingConfig, ReferralApprovalConfig
from marketplace.models.validator import PaymentValidatorProfile, ValidatorFundEntry, ValidatorTransfer
from marketplace.models.provider_profile import ProviderProfile
from marketplace.models.product import InventoryAccount, InventoryLicense, Product
from marketplace.models.purchase import Purchase
from marketplace.models.dispute import Dispute, DisputeMessage
from marketplace.models.audit_log import AuditLog

__all__ = [
    "User",
    "Wallet",
    "WalletTransaction",
    "Recharge",
    "WithdrawalRequest",
    "AffiliateProfile",
    "Referral",
    "PricingConfig",
    "ReferralApprovalConfig",
    "PaymentValidatorProfile",
    "ValidatorFundEntry",
    "ValidatorTransfer",
    "ProviderProfile",
    "Product",
    "InventoryAccount",
    "InventoryLicense",
    "Purchase",
    "Dispute",
    "DisputeMessage",
    "AuditLog",
]
