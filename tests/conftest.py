import os
import tempfile
from pathlib import Path

from dotenv import load_dotenv


# ---------------------------------------------------------
# Load .env from project root (same folder as app.py)
# ---------------------------------------------------------
ROOT = Path(__file__).resolve().parents[1]  # project root
load_dotenv(ROOT / ".env", override=False)

# ---------------------------------------------------------
# Make tests deterministic: no real AI calls, no background
# worker, no accounting sync, scratch DB + storage.
# ---------------------------------------------------------
_SCRATCH = Path(tempfile.mkdtemp(prefix="risk-tests-"))

os.environ["AI_ENABLED"] = "false"
os.environ["WORKER_ENABLED"] = "false"
os.environ["SYNC_ENABLED"] = "false"

if os.getenv("DATABASE_URL") is None:
    os.environ["DATABASE_URL"] = f"sqlite:///{_SCRATCH / 'app.db'}"
if os.getenv("STORAGE_ROOT") is None:
    os.environ["STORAGE_ROOT"] = str(_SCRATCH / "storage")
