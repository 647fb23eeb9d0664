from classbook.models.tenant import Tenant
from classbook.models.user import User, UserRole
from classbook.models.payment_plan import PaymentPlan
from classbook.models.subscription import Subscription, SubscriptionStatus
from classbook.models.payment import Payment, PaymentMethod, PaymentStatus
from classbook.models.class_usage import ClassUsage, ClassUsageType
from classbook.models.schedule_config import ScheduleConfig
from classbook.models.schedule_exception import ScheduleException
from classbook.models.slot import Slot
from classbook.models.slot_generation import SlotGeneration
from classbook.models.recurring_reservation import (
    RecurringReservation, RecurringEndType, RecurringFrequency, RecurringStatus
)
from classbook.models.reservation import Reservation
from classbook.models.suspension import SubscriptionSuspension
