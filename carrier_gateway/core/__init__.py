from carrier_gateway.core.config import settings
from carrier_gateway.core.database import get_db, Base
