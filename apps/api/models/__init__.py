"""Models package."""

from .user import User
from .account import Account
from .credit_audit import CreditAuditEntry
from .generation_job import GenerationJob
from .ownership_record import OwnershipRecord
from .wallpaper import Wallpaper
from .receipt import Receipt
