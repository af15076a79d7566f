from app.models.cron_run import CronRun
from app.models.patient import Patient
from app.models.payment_credentials import PaymentCredentials
from app.models.payment_transaction import PaymentTransaction
from app.models.pharmacy import Pharmacy, PharmacyBackend
from app.models.prescription import Prescription
from app.models.side_effect import SideEffect
from app.models.system_log import SystemLog
from app.models.user import User

__all__ = [
    "CronRun",
    "Patient",
    "PaymentCredentials",
    "PaymentTransaction",
    "Pharmacy",
    "PharmacyBackend",
    "Prescription",
    "SideEffect",
    "SystemLog",
    "User",
]
