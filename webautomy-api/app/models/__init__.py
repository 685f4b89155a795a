from app.models.automation_rule import AutomationRule
from app.models.channel import Channel
from app.models.contact import Contact
from app.models.message import Message
from app.models.organization import Organization
from app.models.profile import Profile
from app.models.wallet import Wallet, WalletTransaction

__all__ = [
    "Organization",
    "Profile",
    "Wallet",
    "WalletTransaction",
    "Channel",
    "Contact",
    "Message",
    "AutomationRule",
]
