import os
import tempfile

# Keep config-driven state (history file, job files, logs) out of the repo.
_STATE_ROOT = tempfile.mkdtemp(prefix="drugbind-tests-")
os.environ.setdefault("DRUGBIND_STATE_DIR", os.path.join(_STATE_ROOT, "state"))
os.environ.setdefault("DRUGBIND_LOG_DIR", os.path.join(_STATE_ROOT, "logs"))
os.environ.setdefault("DRUGBIND_SIMULATED", "1")
