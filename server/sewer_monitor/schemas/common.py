from datetime import datetime
from typing import Annotated

from pydantic import AfterValidator

from sewer_monitor.database import ensure_aware

# Datetime read back from storage; naive values (SQLite) are UTC.
UTCDateTime = Annotated[datetime, AfterValidator(ensure_aware)]
