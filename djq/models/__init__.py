from djq.models.users import User, UserStatus
from djq.models.events import Event, EventStatus
from djq.models.slots import SlotStatus, TimeSlot
from djq.models.bookings import B2BInitiator, B2BRequest, B2BRequestStatus, BookingStatus, SlotBooking
