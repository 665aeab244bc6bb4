import os
import tempfile

# skip_automator.config creates its data directory at import time.
os.environ.setdefault("SKIP_AUTOMATOR_HOME", tempfile.mkdtemp(prefix="skip_automator_test_"))
