"""
Rate limiting con slowapi para los endpoints que escriben (enviar, abrir conversación).
"""
from slowapi import Limiter
from slowapi.util import get_remote_address

from ..config import get_settings

SEND_LIMIT = "60/minute"
OPEN_CONVERSATION_LIMIT = "30/minute"

# Con RATE_LIMIT_ENABLED=false (tests) los decoradores no hacen nada
limiter = Limiter(key_func=get_remote_address, enabled=get_settings().rate_limit_enabled)
