import os
import sys
import tempfile
from pathlib import Path

import pytest

# Settings are read at import time; point them at throwaway locations first
os.environ.setdefault("UPLOAD_ROOT", tempfile.mkdtemp(prefix="wastage-uploads-"))
os.environ.setdefault("INWARD_CHALLAN_API_URL", "http://inward-challan.test")

# Add the backend directory so `wastage_service` imports resolve during tests
BACKEND_DIR = Path(__file__).resolve().parents[1]
if str(BACKEND_DIR) not in sys.path:
    sys.path.append(str(BACKEND_DIR))

TESTS_DIR = Path(__file__).resolve().parent
if str(TESTS_DIR) not in sys.path:
    sys.path.insert(0, str(TESTS_DIR))


@pytest.fixture
def anyio_backend():
    return "asyncio"
