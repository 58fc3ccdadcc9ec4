from .error_messages import ErrorMessages
from .phone import hash_phone, is_valid_phone, normalize_phone
from .timezone_utils import TimezoneUtils
