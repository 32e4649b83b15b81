# deploy/config.py
# NOTE:
# Do not hardcode private keys in the repo. Provide the deployer key via
# --private-key, PRIVATE_KEY, or the env var named by the chain config
# (e.g. TAIKO_PRIVATE_KEY) and keep it out of git.

from eth_utils import keccak

# Default chain (configs/chains/<name>.json)
DEFAULT_CHAIN = "taiko-hoodi"

# Primary RPC when neither --rpc, RPC_URL nor the chain config provide one.
RPC_URL = "https://rpc.hoodi.taiko.xyz"

# RPC timeouts (seconds). All RPC calls are clamped to this range.
RPC_TIMEOUT_MIN_S = 2.0
RPC_TIMEOUT_MAX_S = 20.0
RPC_DEFAULT_TIMEOUT_S = 10.0

# Retries for transient transport errors (per JSON-RPC call).
RPC_RETRY_COUNT = 2
RPC_BACKOFF_BASE_S = 0.5
RPC_RATE_LIMIT_BACKOFF_S = 1.0

# Confirmation policy. A wait that does not see a receipt within
# CONFIRM_TIMEOUT_S raises ConfirmationTimeout; the deployer re-waits on the
# same tx hash CONFIRM_RETRIES more times before giving up.
CONFIRM_TIMEOUT_S = 180.0
CONFIRM_RETRIES = 2
CONFIRM_POLL_INTERVAL_S = 2.0
CONFIRMATIONS = 1

# Gas: estimate * multiplier, fallback limit when estimation fails.
GAS_LIMIT_MULTIPLIER = 1.2
GAS_LIMIT_FALLBACK = 6_000_000

# Proxy used for every node (OpenZeppelin ERC1967Proxy(address,bytes)).
PROXY_ARTIFACT = "ERC1967Proxy"

# Initializer signatures. Selectors are derived from these in
# deploy.calldata; only the signatures are configuration.
INIT_NO_ARG_SIGNATURE = "initialize()"
INIT_SINGLE_ADDRESS_SIGNATURE = "initialize(address)"

# Read accessors exposed by every registry.
VERSION_ACCESSOR = "getVersion"
IDENTITY_BACKREF_ACCESSOR = "getIdentityRegistry"

# bytes32(uint256(keccak256("eip1967.proxy.implementation")) - 1)
ERC1967_IMPLEMENTATION_SLOT = int.from_bytes(keccak(text="eip1967.proxy.implementation"), "big") - 1

# Artifact search roots (relative to the project root), Hardhat first.
ARTIFACT_DIRS = [
    "artifacts",
    "out",
    "deploy/artifacts",
]

# Output
RUNS_DIR = "runs"
LOCK_NAME = "deploy_run.lock"
