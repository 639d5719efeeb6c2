from .tenancy import Gym
from .catalog import LicensePlan, LegacyLicensePlan
from .licensing import LicenseRecord, LicenseConfigCache, DeviceClientCache, LicensePaymentHistory, PaymentPreference
from .payments import ProcessedPayment, AccountingTransaction, RevenueRollup
from .referrals import ReferralConfig, ReferralPendingClaim, ReferralApproval, ReferralHistoryEntry, ReferralRedemption
from .store import Product, ProductVariant, Order, OrderLine
from .communications import InboxMessage
from .devices import Device

__all__ = [
    'Gym',
    'LicensePlan', 'LegacyLicensePlan',
    'LicenseRecord', 'LicenseConfigCache', 'DeviceClientCache', 'LicensePaymentHistory', 'PaymentPreference',
    'ProcessedPayment', 'AccountingTransaction', 'RevenueRollup',
    'ReferralConfig', 'ReferralPendingClaim', 'ReferralApproval', 'ReferralHistoryEntry', 'ReferralRedemption',
    'Product', 'ProductVariant', 'Order', 'OrderLine',
    'InboxMessage',
    'Device',
]
