# Import every model so Base.metadata and relationship() string targets are complete
from app.models.school import School  # noqa: F401
from app.models.client import Client  # noqa: F401
from app.models.user import User  # noqa: F401
from app.models.booking import Booking  # noqa: F401
from app.models.booking_user import BookingUser  # noqa: F401
from app.models.booking_log import BookingLog  # noqa: F401
from app.models.voucher import Voucher  # noqa: F401
from app.models.voucher_log import VoucherLog  # noqa: F401
from app.models.payment import Payment  # noqa: F401
from app.models.email_log import EmailLog  # noqa: F401
