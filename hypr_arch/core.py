from typing import Optional
from hypr_arch.utils.logger import RichAppLogger

# A global variable to hold the initialized logger wrapper
# It starts as None and is set by the CLI before anything else runs
app_logger: Optional[RichAppLogger] = None
