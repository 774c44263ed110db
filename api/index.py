from mangum import Mangum
import sys
import os

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from slotledger.api import create_app
from slotledger.config import Settings

# Lambda invocations are short-lived; pending payments are picked up by the
# manual verifier or by the status check with check_ledger=true. Every
# invocation must reach the same database, so DATABASE_URL has to name a
# shared server rather than a local SQLite file.
settings = Settings.from_env()
settings.reconciler_enabled = False

app = create_app(settings=settings, root_path="/api")

handler = Mangum(app, lifespan="off")
