import os
import warnings

# Unit tests always run on the in-process store without a go-live password
os.environ.update({
    "SIGNAL_STORE_BACKEND": "memory",
    "GO_LIVE_PASSWORD": "",
    "REMOTE_RECORDING_PATH": "",
})

warnings.filterwarnings("ignore", category=DeprecationWarning, module="aioice.*")

from tests.fixtures.store_fixtures import *  # noqa: E402, F403
