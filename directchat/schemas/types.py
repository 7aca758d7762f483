from datetime import datetime
from typing import Annotated

from pydantic import AfterValidator

from directchat.core.clock import as_utc

# Timestamps read back from SQLite are naive; everything stored is UTC
UtcDatetime = Annotated[datetime, AfterValidator(as_utc)]
