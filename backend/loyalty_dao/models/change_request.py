"""Loyalty change request and parameter models"""
import enum

from sqlalchemy import Column, String, DateTime, ForeignKey, Text, JSON
from sqlalchemy.orm import relationship

from loyalty_dao.models.database import Base, utcnow
from loyalty_dao.models.organization import new_id


class ChangeRequestStatus(str, enum.Enum):
    PENDING = "pending"  # no linked proposal yet
    PROPOSED = "proposed"
    APPROVED = "approved"
    REJECTED = "rejected"
    IMPLEMENTED = "implemented"


class LoyaltyChangeType(str, enum.Enum):
    """Privileged loyalty behaviors that may only change through governance"""
    POINT_RELEASE_DELAY = "point_release_delay"
    REFERRAL_PARAMETERS = "referral_parameters"
    NFT_EARNING_RATIOS = "nft_earning_ratios"
    LOYALTY_NETWORK_SETTINGS = "loyalty_network_settings"
    MERCHANT_LIMITS = "merchant_limits"
    INACTIVITY_TIMEOUT = "inactivity_timeout"
    SMS_OTP_SETTINGS = "sms_otp_settings"
    SUBSCRIPTION_PLANS = "subscription_plans"
    ASSET_INITIATIVE_SELECTION = "asset_initiative_selection"
    WALLET_MANAGEMENT = "wallet_management"
    PAYMENT_GATEWAY = "payment_gateway"
    EMAIL_NOTIFICATIONS = "email_notifications"
    REWARD_DISTRIBUTION_CAP = "reward_distribution_cap"

    @property
    def display_name(self) -> str:
        special = {
            LoyaltyChangeType.NFT_EARNING_RATIOS: "NFT Earning Ratios",
            LoyaltyChangeType.SMS_OTP_SETTINGS: "SMS OTP Settings",
        }
        return special.get(self, self.value.replace("_", " ").title())


class ChangeRequest(Base):
    """Request to change a privileged loyalty parameter, ratified by a proposal"""
    __tablename__ = "loyalty_change_requests"

    id = Column(String(36), primary_key=True, default=new_id)
    dao_id = Column(String(36), ForeignKey("dao_organizations.id"), nullable=False, index=True)
    change_type = Column(String(50), nullable=False, index=True)
    parameter_name = Column(String(100), nullable=False)
    old_value = Column(JSON, nullable=True)
    new_value = Column(JSON, nullable=True)
    reason = Column(Text, nullable=False)
    proposed_by = Column(String(36), ForeignKey("dao_members.id"), nullable=False)
    status = Column(String(20), nullable=False, index=True)
    proposal_id = Column(String(36), ForeignKey("dao_proposals.id"), nullable=True, unique=True)
    deferred_reason = Column(Text, nullable=True)
    created_at = Column(DateTime, default=utcnow)
    approved_at = Column(DateTime, nullable=True)
    implemented_at = Column(DateTime, nullable=True)

    # Relationships
    proposal = relationship("Proposal")

    def __repr__(self):
        return f"<ChangeRequest {self.parameter_name} ({self.status})>"


class LoyaltyParameter(Base):
    """Current value of a governed loyalty parameter"""
    __tablename__ = "loyalty_parameters"

    name = Column(String(100), primary_key=True)
    value = Column(JSON, nullable=True)
    updated_by_proposal = Column(String(36), nullable=True)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    def __repr__(self):
        return f"<LoyaltyParameter {self.name}={self.value!r}>"
