# conftest.py (repo root)
# Repo root on sys.path so tests import campaign_lab.* and infra.* without an install
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parent
root_str = str(ROOT)

if root_str not in sys.path:
    sys.path.insert(0, root_str)
