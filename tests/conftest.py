import sys
from pathlib import Path


# Tests import ``agentcore`` from the checkout, installed or not
PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))
