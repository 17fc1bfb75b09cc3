import os
import tempfile
from pathlib import Path

# Settings are read at import time; keep tests off /data and the sync timers off.
os.environ["DB_PATH"] = str(Path(tempfile.mkdtemp()) / "fodsync-test.db")
os.environ["SYNC_ENABLED"] = "false"
os.environ["API_ENDPOINT"] = ""
